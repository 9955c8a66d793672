"""Food record domain models."""

from dataclasses import dataclass
from enum import StrEnum


class FoodCategory(StrEnum):
    """Fixed category set for stored foods."""

    PROTEIN = "protein"
    DAIRY = "dairy"
    GRAIN = "grain"
    FRUIT = "fruit"
    VEGETABLE = "vegetable"
    SNACK = "snack"
    BEVERAGE = "beverage"
    LEGUME = "legume"
    RESTAURANT = "restaurant"
    USDA = "usda"


CATEGORY_CODES: dict[FoodCategory, str] = {
    FoodCategory.PROTEIN: "p",
    FoodCategory.DAIRY: "d",
    FoodCategory.GRAIN: "g",
    FoodCategory.FRUIT: "f",
    FoodCategory.VEGETABLE: "v",
    FoodCategory.SNACK: "s",
    FoodCategory.BEVERAGE: "b",
    FoodCategory.LEGUME: "l",
    FoodCategory.RESTAURANT: "r",
    FoodCategory.USDA: "u",
}


@dataclass(frozen=True)
class StoredFood:
    """A food item as kept in the local store, macros per serving."""

    external_id: int
    name: str
    search_key: str
    calories: int
    protein: float
    carbs: float
    fat: float
    serving_label: str
    serving_grams: int
    category: FoodCategory

    def as_dict(self) -> dict[str, object]:
        return {
            "external_id": self.external_id,
            "name": self.name,
            "calories": self.calories,
            "protein": self.protein,
            "carbs": self.carbs,
            "fat": self.fat,
            "serving_label": self.serving_label,
            "serving_grams": self.serving_grams,
            "category": self.category.value,
        }
