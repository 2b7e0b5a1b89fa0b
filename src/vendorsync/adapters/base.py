"""Canonical item model shared by every normalization adapter."""

from __future__ import annotations

from decimal import ROUND_HALF_UP, Decimal, InvalidOperation
from enum import Enum
from typing import Any, Callable, Dict, Iterable, Mapping, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel


class Category(str, Enum):
    FRAMES = "Frames"
    LENSES = "Lenses"
    ACCESSORIES = "Accessories"
    OTHER = "Other"


AttributeValue = Union[bool, int, float, str]


class NormalizedItem(BaseModel):
    """One vendor product in canonical form.

    ``price`` is in integer minor units (e.g. cents). Unknown categories map to
    ``Other``.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    sku: str = Field(min_length=1)
    name: str = Field(min_length=1)
    category: Category = Category.OTHER
    price: Optional[int] = Field(default=None, ge=0)
    currency: Optional[str] = None
    image_url: Optional[str] = None
    attributes: Dict[str, AttributeValue] = Field(default_factory=dict)

    @field_validator("sku", "name", mode="before")
    @classmethod
    def _strip_required(cls, value):
        if isinstance(value, (int, float)) and not isinstance(value, bool):
            value = str(value)
        if isinstance(value, str):
            return value.strip()
        return value

    @field_validator("image_url", mode="before")
    @classmethod
    def _strip_optional(cls, value):
        if isinstance(value, str):
            return value.strip() or None
        return value

    @field_validator("currency", mode="before")
    @classmethod
    def _lower_currency(cls, value):
        if isinstance(value, str):
            return value.strip().lower() or None
        return value

    @field_validator("category", mode="before")
    @classmethod
    def _coerce_category(cls, value):
        if value is None:
            return Category.OTHER
        if isinstance(value, Category):
            return value
        text = str(value).strip().lower()
        for category in Category:
            if category.value.lower() == text:
                return category
        return Category.OTHER

    @field_validator("price", mode="before")
    @classmethod
    def _reject_bool_price(cls, value):
        if isinstance(value, bool):
            raise ValueError("price must be an integer amount of minor units")
        return value


Adapter = Callable[[Any], Iterable[Union[NormalizedItem, Mapping[str, Any]]]]


def to_minor_units(amount: Any, exponent: int = 2) -> Optional[int]:
    """Convert a major-unit amount (``"12.50"``, ``12.5``) to integer minor units."""
    if amount is None or amount == "" or isinstance(amount, bool):
        return None
    try:
        value = Decimal(str(amount).replace(",", ".").strip())
    except InvalidOperation:
        return None
    scaled = (value * (Decimal(10) ** exponent)).quantize(Decimal(1), rounding=ROUND_HALF_UP)
    return int(scaled)


__all__ = ["Adapter", "AttributeValue", "Category", "NormalizedItem", "to_minor_units"]
