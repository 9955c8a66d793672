"""Pydantic models for FoodData Central search payloads."""

import logging
import math

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

_logger = logging.getLogger(__name__)


class NutrientRef(BaseModel):
    """Nested nutrient reference used by food detail payloads."""

    id: int | None = None


class RawNutrient(BaseModel):
    """One nutrient amount attached to a food.

    Search results carry ``nutrientId``/``value``; detail payloads nest the id
    under ``nutrient`` and use ``amount``.
    """

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    nutrient_id: int | None = Field(default=None, alias="nutrientId")
    value: float | None = None
    amount: float | None = None
    nutrient: NutrientRef | None = None

    def resolved_id(self) -> int | None:
        if self.nutrient_id is not None:
            return self.nutrient_id
        if self.nutrient is not None:
            return self.nutrient.id
        return None

    def resolved_value(self) -> float:
        if self.value is not None:
            return self.value
        if self.amount is not None:
            return self.amount
        return 0.0


class RawFood(BaseModel):
    """Food record as returned by the FDC search API."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    fdc_id: int = Field(alias="fdcId")
    description: str = ""
    food_nutrients: list[RawNutrient] = Field(
        default_factory=list, alias="foodNutrients"
    )
    serving_size: float | None = Field(default=None, alias="servingSize")
    serving_size_unit: str | None = Field(default=None, alias="servingSizeUnit")
    food_category: str | None = Field(default=None, alias="foodCategory")
    data_type: str | None = Field(default=None, alias="dataType")


class SearchPage(BaseModel):
    """One page of ``/foods/search`` results."""

    model_config = ConfigDict(extra="ignore", populate_by_name=True)

    foods: list[RawFood] = Field(default_factory=list)
    total_hits: int = Field(default=0, alias="totalHits")
    total_pages: int | None = Field(default=None, alias="totalPages")
    current_page: int = Field(default=0, alias="currentPage")

    @field_validator("foods", mode="before")
    @classmethod
    def _drop_invalid_foods(cls, value: object) -> object:
        if not isinstance(value, list):
            return value
        foods = []
        for item in value:
            try:
                foods.append(RawFood.model_validate(item))
            except ValidationError as exc:
                _logger.warning(
                    "Skipping invalid FDC record: %s", exc.errors(include_url=False)
                )
        return foods

    def last_page(self, page_size: int) -> int | None:
        """Number of pages in the partition, or None when the page omits it."""
        if self.total_pages:
            return self.total_pages
        if self.total_hits:
            return math.ceil(self.total_hits / page_size)
        return None
