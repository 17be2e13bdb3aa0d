"""Typed identification result.

Field names are snake_case; the camelCase names the provider emits are
accepted as aliases and used when dumping ``by_alias=True``.
"""

from __future__ import annotations

from datetime import datetime, timezone
import math
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from rockid.normalize import parse_confidence, split_list

UNKNOWN = "Unknown"
NOT_AVAILABLE = "Information not available"


class _Group(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        frozen=True,
        extra="ignore",
        coerce_numbers_to_str=True,
    )


class PhysicalProperties(_Group):
    """Observable properties; color, hardness and luster always have a value."""

    color: str = UNKNOWN
    hardness: str = UNKNOWN  # Mohs scale
    luster: str = UNKNOWN
    streak: str | None = None
    transparency: str | None = None
    crystal_system: str | None = None
    cleavage: str | None = None
    fracture: str | None = None
    specific_gravity: str | None = None
    additional_properties: dict[str, Any] | None = None


class Element(_Group):
    name: str
    symbol: str
    percentage: float | None = None

    @field_validator("percentage", mode="before")
    @classmethod
    def parse_percentage(cls, v: Any) -> Any:
        """Accept ``"~46.7"`` / ``"46.7%"``; anything unreadable becomes None."""
        if v is None or isinstance(v, (int, float)):
            return v
        if isinstance(v, str):
            cleaned = v.strip().lstrip("~").rstrip("%").strip()
            try:
                return float(cleaned)
            except ValueError:
                return None
        return None


class ChemicalProperties(_Group):
    formula: str | None = None
    composition: str = NOT_AVAILABLE
    elements: list[Element] | None = None
    minerals_present: list[str] | None = None
    reactivity: str | None = None
    additional_properties: dict[str, Any] | None = None

    @field_validator("minerals_present", mode="before")
    @classmethod
    def split_text_list(cls, v: Any) -> Any:
        """A comma-separated string is read as a list."""
        return split_list(v) if isinstance(v, str) else v


class Formation(_Group):
    formation_type: str = UNKNOWN
    environment: str = NOT_AVAILABLE
    geological_age: str | None = None
    common_locations: list[str] | None = None
    associated_minerals: list[str] | None = None
    formation_process: str = NOT_AVAILABLE
    additional_info: dict[str, Any] | None = None

    @field_validator("common_locations", "associated_minerals", mode="before")
    @classmethod
    def split_text_lists(cls, v: Any) -> Any:
        return split_list(v) if isinstance(v, str) else v


class Uses(_Group):
    industrial: list[str] | None = None
    historical: list[str] | None = None
    modern: list[str] | None = None
    metaphysical: list[str] | None = None
    fun_facts: list[str] = Field(default_factory=list)
    additional_uses: dict[str, Any] | None = None

    @field_validator(
        "industrial", "historical", "modern", "metaphysical", "fun_facts", mode="before"
    )
    @classmethod
    def split_text_lists(cls, v: Any) -> Any:
        return split_list(v) if isinstance(v, str) else v


class IdentificationResult(_Group):
    """A validated identification.

    ``name`` and ``category`` are required and non-empty; ``confidence`` is
    clamped into [0, 1].
    """

    name: str = Field(min_length=1)
    category: str = Field(min_length=1)
    confidence: float = 0.70
    physical_properties: PhysicalProperties = Field(default_factory=PhysicalProperties)
    chemical_properties: ChemicalProperties = Field(default_factory=ChemicalProperties)
    formation: Formation = Field(default_factory=Formation)
    uses: Uses = Field(default_factory=Uses)
    identified_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("name", "category", mode="before")
    @classmethod
    def strip_text(cls, v: Any) -> Any:
        if isinstance(v, str):
            return v.strip()
        return v

    @field_validator("confidence", mode="before")
    @classmethod
    def clamp_confidence(cls, v: Any) -> Any:
        """Clamp into [0, 1]; unreadable or NaN values fall back to 0.70.

        Strings are read like flat answers, so ``"85%"`` is 0.85.
        """
        if v is None:
            return 0.70
        if isinstance(v, str):
            return parse_confidence(v)
        try:
            value = float(v)
        except (TypeError, ValueError):
            return 0.70
        if math.isnan(value):
            return 0.70
        return min(1.0, max(0.0, value))
