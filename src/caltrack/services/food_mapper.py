"""Mapping of raw FDC food records into stored foods.

Shared by the online sync and the offline bulk build so both produce the same
names, categories and rounding.
"""

import math
import re
from collections.abc import Iterable
from typing import NamedTuple

from caltrack.api.fdc_models import RawFood, RawNutrient
from caltrack.domain.foods import FoodCategory, StoredFood

NUTRIENT_ENERGY = 1008
NUTRIENT_PROTEIN = 1003
NUTRIENT_FAT = 1004
NUTRIENT_CARBS = 1005
NUTRIENT_IDS = frozenset(
    {NUTRIENT_ENERGY, NUTRIENT_PROTEIN, NUTRIENT_FAT, NUTRIENT_CARBS}
)

DEFAULT_SERVING_GRAMS = 100
MAX_NAME_LENGTH = 80
ELLIPSIS = "..."

_MILLILITER_UNITS = frozenset(
    {"ml", "mlt", "milliliter", "milliliters", "millilitre", "millilitres"}
)
_TOKEN_SPLIT = re.compile(r"[\s,]+")

# First match wins.
_CATEGORY_KEYWORDS: tuple[tuple[FoodCategory, tuple[str, ...]], ...] = (
    (
        FoodCategory.PROTEIN,
        ("poultry", "beef", "pork", "lamb", "fish", "seafood", "meat"),
    ),
    (FoodCategory.DAIRY, ("dairy", "cheese", "milk", "yogurt")),
    (FoodCategory.GRAIN, ("cereal", "grain", "bread", "pasta", "baked", "rice")),
    (FoodCategory.FRUIT, ("fruit",)),
    (FoodCategory.VEGETABLE, ("vegetable", "legume")),
    (FoodCategory.SNACK, ("nut", "seed")),
    (FoodCategory.BEVERAGE, ("beverage",)),
    (FoodCategory.LEGUME, ("bean", "pea", "lentil")),
    (FoodCategory.RESTAURANT, ("restaurant", "fast food")),
)


class MacroValues(NamedTuple):
    """Energy and macronutrients per 100 g or ml."""

    energy: float = 0.0
    protein: float = 0.0
    fat: float = 0.0
    carbs: float = 0.0


def round_half_up(value: float, digits: int = 0) -> float:
    """Round like ``Math.round``: halves go up, not to even."""
    factor = 10**digits
    return math.floor(value * factor + 0.5) / factor


def extract_macros(nutrients: Iterable[RawNutrient]) -> MacroValues:
    """Pick energy, protein, fat and carbs from a nutrient list."""
    values = {nutrient_id: 0.0 for nutrient_id in NUTRIENT_IDS}
    for nutrient in nutrients:
        nutrient_id = nutrient.resolved_id()
        if nutrient_id in values:
            values[nutrient_id] = nutrient.resolved_value()
    return MacroValues(
        energy=values[NUTRIENT_ENERGY],
        protein=values[NUTRIENT_PROTEIN],
        fat=values[NUTRIENT_FAT],
        carbs=values[NUTRIENT_CARBS],
    )


def title_case(description: str) -> str:
    """Title-case a description and drop a doubled leading brand token."""
    tokens = [token for token in _TOKEN_SPLIT.split(description.lower()) if token]
    if len(tokens) >= 2 and tokens[0] == tokens[1]:
        tokens = tokens[1:]
    name = " ".join(token[0].upper() + token[1:] for token in tokens)
    if len(name) > MAX_NAME_LENGTH:
        name = name[: MAX_NAME_LENGTH - len(ELLIPSIS)].rstrip() + ELLIPSIS
    return name


def map_category(label: str | None) -> FoodCategory:
    """Map a free-text category label to a fixed category."""
    if not label:
        return FoodCategory.USDA
    lowered = label.lower()
    for category, keywords in _CATEGORY_KEYWORDS:
        if any(keyword in lowered for keyword in keywords):
            return category
    return FoodCategory.USDA


def serving_grams(serving_size: float | None) -> int:
    """Return the serving weight used as the scaling base."""
    if serving_size is not None and serving_size > 0:
        return int(round_half_up(serving_size))
    return DEFAULT_SERVING_GRAMS


def serving_label(grams: int, unit: str | None) -> str:
    if unit and unit.strip().lower() in _MILLILITER_UNITS:
        return f"{grams}ml"
    return f"{grams}g"


def build_food(  # noqa: PLR0913
    external_id: int,
    description: str,
    per_100: MacroValues,
    serving_size: float | None = None,
    serving_unit: str | None = None,
    category_label: str | None = None,
) -> StoredFood | None:
    """Build a stored food, or return None when it has no usable calories."""
    grams = serving_grams(serving_size)
    scale = grams / 100
    calories = int(round_half_up(per_100.energy * scale))
    if calories <= 0:
        return None
    name = title_case(description)
    return StoredFood(
        external_id=external_id,
        name=name,
        search_key=name.lower(),
        calories=calories,
        protein=round_half_up(per_100.protein * scale, 1),
        carbs=round_half_up(per_100.carbs * scale, 1),
        fat=round_half_up(per_100.fat * scale, 1),
        serving_label=serving_label(grams, serving_unit),
        serving_grams=grams,
        category=map_category(category_label),
    )


def map_raw_food(raw: RawFood) -> StoredFood | None:
    """Map one search result into a stored food."""
    return build_food(
        external_id=raw.fdc_id,
        description=raw.description,
        per_100=extract_macros(raw.food_nutrients),
        serving_size=raw.serving_size,
        serving_unit=raw.serving_size_unit,
        category_label=raw.food_category,
    )


def map_raw_foods(raws: Iterable[RawFood]) -> list[StoredFood]:
    """Map a page of search results, dropping unusable records."""
    foods = []
    for raw in raws:
        food = map_raw_food(raw)
        if food is not None:
            foods.append(food)
    return foods
