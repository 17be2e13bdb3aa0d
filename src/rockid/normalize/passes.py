"""Ordered repair passes for malformed JSON emitted by the provider.

Each pass is a small, pure ``str -> str`` function targeting one known
malformation. `REPAIR_PASSES` fixes the order: later passes assume earlier
ones already ran (comma insertion runs before trailing-comma stripping, for
example), so the order is part of the module's contract.
"""

from __future__ import annotations

import dataclasses
import logging
import re
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Callable, Sequence

log = logging.getLogger(__name__)


@dataclasses.dataclass(frozen=True)
class RepairPass:
    """A named, pure text transformation.

    Attributes:
        name: Unique pass name, reported in ``applied_repairs``.
        apply: The transformation itself.
    """

    name: str
    apply: Callable[[str], str]

    def __post_init__(self) -> None:
        """Validate the pass at construction time."""
        if not self.name or not isinstance(self.name, str):
            raise ValueError(f"Repair pass name must be non-empty string, got {self.name}")
        if not callable(self.apply):
            raise ValueError(f"Repair pass {self.name}: apply must be callable")


# --- Helpers ---

_STRING_LITERAL = re.compile(r'"(?:[^"\\]|\\.)*"', re.DOTALL)


def _outside_strings(text: str, fix: Callable[[str], str]) -> str:
    """Apply *fix* only to the parts of *text* outside JSON string literals."""
    out: list[str] = []
    pos = 0
    for match in _STRING_LITERAL.finditer(text):
        out.append(fix(text[pos : match.start()]))
        out.append(match.group(0))
        pos = match.end()
    out.append(fix(text[pos:]))
    return "".join(out)


# --- Passes ---

_USEES_KEY = re.compile(r'(?<![\w"])"?usees"?(?=\s*:)')


def rename_usees_key(text: str) -> str:
    """``"usees":`` (quoted or bare) -> ``"uses":``."""
    return _USEES_KEY.sub('"uses"', text)


_ESCAPED_KEY = re.compile(r'"\\?"([^"\\]+)\\?""\s*:')


def collapse_escaped_key_quotes(text: str) -> str:
    """``"\\"key\\"":`` and ``""key"":`` -> ``"key":``."""
    return _ESCAPED_KEY.sub(r'"\1":', text)


_BARE_KEY = re.compile(r"([{,])\s*([A-Za-z_]\w*)\s*:")


def quote_bare_keys(text: str) -> str:
    """``{key:`` / ``, key:`` -> ``{"key":`` outside string values."""
    return _outside_strings(text, lambda part: _BARE_KEY.sub(r'\1"\2":', part))


_MISSING_COMMA = re.compile(r"}(\s*)\Z")


def insert_missing_commas(text: str) -> str:
    """``} "next"`` -> ``}, "next"`` where ``}`` closes an object."""
    out: list[str] = []
    pos = 0
    for match in _STRING_LITERAL.finditer(text):
        # Only a brace ending the gap right before a string literal qualifies.
        out.append(_MISSING_COMMA.sub(r"},\1", text[pos : match.start()]))
        out.append(match.group(0))
        pos = match.end()
    out.append(text[pos:])
    return "".join(out)


_TRAILING_COMMA = re.compile(r",\s*([}\]])")


def strip_trailing_commas(text: str) -> str:
    """``, }`` / ``, ]`` -> ``}`` / ``]`` outside string values."""
    return _outside_strings(text, lambda part: _TRAILING_COMMA.sub(r"\1", part))


_LEADING_COLON = re.compile(
    r'"(environment|geologicalAge|formationProcess)"\s*:\s*"\s*:\s*'
)


def strip_leading_colon_values(text: str) -> str:
    """``"environment": ": text"`` -> ``"environment": "text"``."""
    return _LEADING_COLON.sub(r'"\1": "', text)


_QUOTED_PERCENTAGE = re.compile(r'"percentage"\s*:\s*"\s*(\d+(?:\.\d+)?)\s*"')


def coerce_quoted_percentages(text: str) -> str:
    """``"percentage": "46.7"`` -> ``"percentage": 46.7``."""
    return _QUOTED_PERCENTAGE.sub(r'"percentage": \1', text)


_NULL_ELEMENTS = re.compile(
    r'"elements"\s*:\s*\[\s*\{\s*"name"\s*:\s*null\s*,\s*"symbol"\s*:\s*null\s*,'
    r'\s*"percentage"\s*:\s*null\s*\}\s*\]'
)
_BLANK_LIST = re.compile(r'"([^"\\]+)"\s*:\s*\[\s*"\s*"\s*\]')


def collapse_placeholder_lists(text: str) -> str:
    """All-null ``elements`` placeholder and ``[""]`` lists -> ``[]``."""
    text = _NULL_ELEMENTS.sub('"elements": []', text)
    return _BLANK_LIST.sub(r'"\1": []', text)


REPAIR_PASSES: tuple[RepairPass, ...] = (
    RepairPass("rename_usees_key", rename_usees_key),
    RepairPass("collapse_escaped_key_quotes", collapse_escaped_key_quotes),
    RepairPass("quote_bare_keys", quote_bare_keys),
    RepairPass("insert_missing_commas", insert_missing_commas),
    RepairPass("strip_trailing_commas", strip_trailing_commas),
    RepairPass("strip_leading_colon_values", strip_leading_colon_values),
    RepairPass("coerce_quoted_percentages", coerce_quoted_percentages),
    RepairPass("collapse_placeholder_lists", collapse_placeholder_lists),
)


def apply_repairs(
    text: str, passes: Sequence[RepairPass] = REPAIR_PASSES
) -> tuple[str, tuple[str, ...]]:
    """Run *passes* in order; return the result and the names that changed it."""
    applied: list[str] = []
    for repair in passes:
        fixed = repair.apply(text)
        if fixed != text:
            applied.append(repair.name)
            text = fixed
    if applied:
        log.debug("Applied repair passes: %s", ", ".join(applied))
    return text, tuple(applied)
