"""Turn arbitrary provider text into a `NormalizedRecord`.

Pipeline: strip noise -> detect shape -> (Structured) repair and parse, or
(FlatKeyValue) split lines and coerce scalars. The function is pure and
stateless; both the backend handler and the client call it.
"""

from __future__ import annotations

import json
import logging
import math
import re
from typing import Any

from rockid.errors import MissingRequiredFieldsError

from .extraction import find_json_object, strip_noise
from .passes import apply_repairs
from .types import NormalizedRecord, RecordShape

log = logging.getLogger(__name__)

ERROR_MARKER = "ERROR:"
NAME_MARKER = "NAME:"

DEFAULT_CONFIDENCE = 0.70
REQUIRED_FIELDS: tuple[str, ...] = ("name", "category")

#: Flat fields holding comma-separated lists.
LIST_FIELDS: frozenset[str] = frozenset(
    {
        "locations",
        "uses",
        "historical_uses",
        "industrial_uses",
        "modern_uses",
        "associated_minerals",
    }
)
#: Numbered flat fields (``FUN_FACT1``...) and the list each collects into.
NUMBERED_FIELDS: dict[str, str] = {
    "fun_fact": "fun_facts",
    "location": "locations",
    "use": "uses",
}
SENTINEL_VALUES: frozenset[str] = frozenset(
    {"unknown", "not applicable", "n/a", "none"}
)

_SUGGESTION_LINE = re.compile(r"^\s*SUGGESTION(\d+)\s*:\s*(.*)$")
_MARKER_LINE = re.compile(r"^\s*[A-Z][A-Z0-9_]*\s*:")
_NUMBERED_KEY = re.compile(r"^([a-z_]+?)_?(\d+)$")


def normalize(text: str) -> NormalizedRecord:
    """Normalize one provider answer.

    Returns an Unparseable record (never raises) when no usable candidate is
    found or repairs are not enough for a strict parse.

    Raises:
        MissingRequiredFieldsError: A Structured or FlatKeyValue answer lacks
            ``name`` or ``category`` after all repairs.
    """
    stripped = strip_noise(text)
    if ERROR_MARKER in stripped:
        return _error_block(stripped)
    if NAME_MARKER in stripped:
        return _flat_key_value(stripped)
    return _structured(stripped)


# --- ErrorBlock ---


def _error_block(text: str) -> NormalizedRecord:
    _, _, after = text.partition(ERROR_MARKER)
    message_lines: list[str] = []
    head, *rest = after.splitlines() or [""]
    message_lines.append(head.strip())
    for line in rest:
        if _MARKER_LINE.match(line):
            break
        message_lines.append(line.strip())
    message = " ".join(part for part in message_lines if part)

    numbered: list[tuple[int, int, str]] = []
    for order, line in enumerate(text.splitlines()):
        match = _SUGGESTION_LINE.match(line)
        if match and match.group(2).strip():
            numbered.append((int(match.group(1)), order, match.group(2).strip()))
    suggestions = tuple(s for _, _, s in sorted(numbered))

    return NormalizedRecord(
        shape=RecordShape.ERROR_BLOCK,
        text=text,
        error_message=message or "The rock could not be identified",
        suggestions=suggestions,
    )


def _json_error_block(data: dict[str, Any], text: str) -> NormalizedRecord:
    error = data.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    suggestions = data.get("suggestions")
    return NormalizedRecord(
        shape=RecordShape.ERROR_BLOCK,
        text=text,
        error_message=str(error) if error else "The rock could not be identified",
        suggestions=tuple(str(s) for s in suggestions if s)
        if isinstance(suggestions, list)
        else (),
    )


# --- Structured ---


def _structured(text: str) -> NormalizedRecord:
    candidate = find_json_object(text)
    if candidate is None:
        log.debug("No JSON object candidate in %d chars of text", len(text))
        return NormalizedRecord(shape=RecordShape.UNPARSEABLE, text=text)

    repaired, applied = apply_repairs(candidate)
    try:
        data = json.loads(repaired)
    except ValueError as e:
        log.debug("Repaired candidate still invalid: %s", e)
        # The candidate may end early at a brace inside a broken string.
        return NormalizedRecord(
            shape=RecordShape.UNPARSEABLE,
            text=text[text.find("{") :],
            applied_repairs=applied,
            parse_error=str(e),
        )

    canonical = json.dumps(data, ensure_ascii=False)
    if data.get("error"):
        return _json_error_block(data, canonical)
    _require(data, canonical)
    return NormalizedRecord(
        shape=RecordShape.STRUCTURED,
        fields=data,
        text=canonical,
        applied_repairs=applied,
    )


# --- FlatKeyValue ---


def _flat_key_value(text: str) -> NormalizedRecord:
    raw: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.partition(":")
        key = key.strip()
        if not sep or not key:
            continue
        raw[key.lower()] = value.strip()

    fields: dict[str, Any] = {}
    numbered: dict[str, list[tuple[int, str]]] = {}
    for key, value in raw.items():
        match = _NUMBERED_KEY.match(key)
        if match and match.group(1) in NUMBERED_FIELDS:
            numbered.setdefault(NUMBERED_FIELDS[match.group(1)], []).append(
                (int(match.group(2)), value)
            )
        elif key in LIST_FIELDS:
            fields[key] = split_list(value)
        elif key == "confidence":
            fields[key] = parse_confidence(value)
        else:
            fields[key] = value

    fields.setdefault("confidence", DEFAULT_CONFIDENCE)
    for target, items in numbered.items():
        collected = [v for _, v in sorted(items, key=lambda item: item[0]) if _meaningful(v)]
        fields[target] = [*fields.get(target, []), *collected]

    _require(fields, text)

    if not fields.get("fun_facts"):
        fields["fun_facts"] = [synthesize_fun_fact(fields["name"], fields["category"])]

    return NormalizedRecord(shape=RecordShape.FLAT_KEY_VALUE, fields=fields, text=text)


def split_list(value: str) -> list[str]:
    """Split a comma-separated value, dropping empty and sentinel items."""
    return [item.strip() for item in value.split(",") if _meaningful(item)]


def parse_confidence(value: str | None) -> float:
    """Parse a confidence value, defaulting to 0.70 and clamping to [0, 1].

    ``"85%"`` is read as a percentage.
    """
    if value is None:
        return DEFAULT_CONFIDENCE
    cleaned = value.strip()
    scale = 1.0
    if cleaned.endswith("%"):
        cleaned = cleaned[:-1].strip()
        scale = 100.0
    try:
        confidence = float(cleaned) / scale
    except ValueError:
        return DEFAULT_CONFIDENCE
    if math.isnan(confidence):
        return DEFAULT_CONFIDENCE
    return min(1.0, max(0.0, confidence))


def synthesize_fun_fact(name: str, category: str) -> str:
    """Return the generic fact used when the provider supplied none."""
    noun = category.strip().lower() or "rock"
    return f"This {noun} has been identified as {name} with limited information available."


def _meaningful(value: str) -> bool:
    stripped = value.strip()
    return bool(stripped) and stripped.lower() not in SENTINEL_VALUES


def _require(fields: dict[str, Any], text: str) -> None:
    missing = [
        key
        for key in REQUIRED_FIELDS
        if not isinstance(fields.get(key), str) or not fields[key].strip()
    ]
    if missing:
        raise MissingRequiredFieldsError(missing, raw_text=text)
