"""Value types produced by the response normalizer."""

from __future__ import annotations

from collections.abc import Iterator, Mapping
import dataclasses
from enum import Enum
from types import MappingProxyType
from typing import Any


class RecordShape(str, Enum):
    """Which shape of provider answer a record was recovered from."""

    STRUCTURED = "structured"
    FLAT_KEY_VALUE = "flat_key_value"
    ERROR_BLOCK = "error_block"
    UNPARSEABLE = "unparseable"


@dataclasses.dataclass(frozen=True)
class NormalizedRecord(Mapping[str, Any]):
    """Immutable field mapping tagged with its `RecordShape`.

    Attributes:
        shape: The detected shape.
        fields: Field name to value. Values are str, int/float, lists of str,
            or (Structured only) nested mappings/lists from the parsed JSON.
        text: Best-effort text: canonical JSON for Structured, the stripped
            input otherwise. Always safe to show as a raw fallback.
        error_message: Provider-reported message (ErrorBlock only).
        suggestions: Provider-reported suggestions, in order (ErrorBlock only).
        applied_repairs: Names of repair passes that changed the text.
        parse_error: Why the repaired candidate still failed strict parsing
            (Unparseable only; None when no candidate was found).
    """

    shape: RecordShape
    fields: Mapping[str, Any] = dataclasses.field(default_factory=dict)
    text: str = ""
    error_message: str | None = None
    suggestions: tuple[str, ...] = ()
    applied_repairs: tuple[str, ...] = ()
    parse_error: str | None = None

    def __post_init__(self) -> None:
        """Freeze the field mapping and enforce ErrorBlock exclusivity."""
        if self.shape is RecordShape.ERROR_BLOCK and (
            "name" in self.fields or "category" in self.fields
        ):
            raise ValueError("error records never carry name/category")
        object.__setattr__(self, "fields", MappingProxyType(dict(self.fields)))

    def __getitem__(self, key: str) -> Any:
        return self.fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self.fields)

    def __len__(self) -> int:
        return len(self.fields)

    @property
    def is_error(self) -> bool:
        return self.shape is RecordShape.ERROR_BLOCK
