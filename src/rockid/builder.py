"""Map a `NormalizedRecord` into an `IdentificationResult`."""

from __future__ import annotations

from collections.abc import Mapping
import logging
from typing import TYPE_CHECKING, Any

from pydantic import ValidationError

from rockid.errors import (
    IdentificationFailedError,
    ParseError,
    RecordValidationError,
)
from rockid.normalize import RecordShape, split_list, synthesize_fun_fact
from rockid.records import IdentificationResult

if TYPE_CHECKING:
    from rockid.normalize import NormalizedRecord

log = logging.getLogger(__name__)

# Flat key -> (group, field). Unlisted flat keys are ignored.
_FLAT_LAYOUT: dict[str, tuple[str, str]] = {
    "color": ("physical_properties", "color"),
    "hardness": ("physical_properties", "hardness"),
    "luster": ("physical_properties", "luster"),
    "streak": ("physical_properties", "streak"),
    "transparency": ("physical_properties", "transparency"),
    "crystal_system": ("physical_properties", "crystal_system"),
    "cleavage": ("physical_properties", "cleavage"),
    "fracture": ("physical_properties", "fracture"),
    "specific_gravity": ("physical_properties", "specific_gravity"),
    "formula": ("chemical_properties", "formula"),
    "composition": ("chemical_properties", "composition"),
    "reactivity": ("chemical_properties", "reactivity"),
    "formation_type": ("formation", "formation_type"),
    "environment": ("formation", "environment"),
    "geological_age": ("formation", "geological_age"),
    "formation_process": ("formation", "formation_process"),
    "locations": ("formation", "common_locations"),
    "associated_minerals": ("formation", "associated_minerals"),
    "industrial_uses": ("uses", "industrial"),
    "historical_uses": ("uses", "historical"),
    "modern_uses": ("uses", "modern"),
    "fun_facts": ("uses", "fun_facts"),
}

_GROUPS = ("physical_properties", "chemical_properties", "formation", "uses")
_GROUP_ALIASES = {
    "physicalProperties": "physical_properties",
    "chemicalProperties": "chemical_properties",
}


class RecordBuilder:
    """Build typed results from normalized records.

    Stateless; one instance can serve concurrent calls.
    """

    def build(self, record: NormalizedRecord) -> IdentificationResult:
        """Return the typed result for *record*.

        Raises:
            IdentificationFailedError: *record* is an ErrorBlock.
            ParseError: *record* is Unparseable.
            RecordValidationError: name/category absent, or validation failed.
        """
        if record.shape is RecordShape.ERROR_BLOCK:
            raise IdentificationFailedError(
                record.error_message or "The rock could not be identified",
                suggestions=record.suggestions or None,
            )
        if record.shape is RecordShape.UNPARSEABLE:
            if record.parse_error is not None:
                raise ParseError(
                    f"Could not parse the identification: {record.parse_error}",
                    kind="repair-failed",
                    raw_text=record.text,
                )
            raise ParseError(
                "No identification found in the response",
                kind="no-candidate-found",
                raw_text=record.text,
            )

        if record.shape is RecordShape.FLAT_KEY_VALUE:
            payload = _from_flat(record)
        else:
            payload = _from_structured(record)

        missing = [
            key
            for key in ("name", "category")
            if not isinstance(payload.get(key), str) or not payload[key].strip()
        ]
        if missing:
            raise RecordValidationError(
                f"Missing required fields: {', '.join(missing)}"
            )

        uses = payload.setdefault("uses", {})
        facts = uses.get("funFacts", uses.get("fun_facts"))
        if isinstance(facts, str):
            facts = split_list(facts)
        if not facts:
            uses.pop("funFacts", None)
            uses["fun_facts"] = [
                synthesize_fun_fact(payload["name"], payload["category"])
            ]

        try:
            result = IdentificationResult.model_validate(payload)
        except ValidationError as e:
            log.debug("Identification result failed validation: %s", e)
            raise RecordValidationError(
                f"Invalid identification result ({e.error_count()} error(s))",
                hint=str(e),
            ) from e
        log.debug(
            "Built result %r (%s, confidence=%.2f)",
            result.name,
            result.category,
            result.confidence,
        )
        return result


def _from_flat(record: NormalizedRecord) -> dict[str, Any]:
    fields = dict(record)
    payload: dict[str, Any] = {group: {} for group in _GROUPS}
    for key in ("name", "category", "confidence"):
        if key in fields:
            payload[key] = fields[key]
    for key, (group, name) in _FLAT_LAYOUT.items():
        value = fields.get(key)
        if value not in (None, "", []):
            payload[group][name] = value
    # A generic USES list stands in for modern uses when none were given.
    if "modern" not in payload["uses"] and fields.get("uses"):
        payload["uses"]["modern"] = fields["uses"]
    return payload


def _from_structured(record: NormalizedRecord) -> dict[str, Any]:
    data = _prune(record.fields)
    payload: dict[str, Any] = {
        key: value for key, value in data.items() if key not in _GROUPS
    }
    for alias, group in _GROUP_ALIASES.items():
        payload.pop(alias, None)
        value = data.get(alias, data.get(group))
        payload[group] = dict(value) if isinstance(value, dict) else {}
    for group in ("formation", "uses"):
        value = data.get(group)
        payload[group] = dict(value) if isinstance(value, dict) else {}

    chemical = payload["chemical_properties"]
    if "elements" in chemical:
        chemical["elements"] = _usable_elements(chemical["elements"])
    return payload


def _usable_elements(elements: Any) -> list[dict[str, Any]]:
    if not isinstance(elements, list):
        return []
    return [
        e
        for e in elements
        if isinstance(e, dict)
        and isinstance(e.get("name"), str)
        and isinstance(e.get("symbol"), str)
    ]


def _prune(value: Any) -> Any:
    """Drop ``None`` entries so documented defaults apply."""
    if isinstance(value, Mapping):
        return {k: _prune(v) for k, v in value.items() if v is not None}
    if isinstance(value, list):
        return [_prune(v) for v in value if v is not None]
    return value
