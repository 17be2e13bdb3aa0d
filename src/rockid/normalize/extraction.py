"""Noise stripping and candidate extraction.

These helpers are pure and know nothing about record shapes; the normalizer
composes them.
"""

from __future__ import annotations

import re

_HTML_COMMENT = re.compile(r"<!--.*?-->", re.DOTALL)
# An optional language tag is only consumed when it ends its own line.
_FENCED_BLOCK = re.compile(r"```(?:[\w+-]*[ \t]*\r?\n)?(.*?)```", re.DOTALL)
_STRAY_FENCE = re.compile(r"```[\w+-]*")


def strip_noise(text: str) -> str:
    """Remove HTML comments and markdown fences, keeping fenced content.

    When a closed fenced block exists, its content (of the first block) is
    returned and everything around it is dropped. Unclosed fence markers are
    removed in place.
    """
    text = _HTML_COMMENT.sub("", text)
    fenced = extract_fenced(text)
    if fenced is not None:
        return fenced
    return _STRAY_FENCE.sub("", text).strip()


def extract_fenced(text: str) -> str | None:
    """Return the trimmed content of the first closed fenced block, if any."""
    match = _FENCED_BLOCK.search(text)
    if match is None:
        return None
    return match.group(1).strip()


def find_json_object(text: str) -> str | None:
    """Return the first balanced ``{ ... }`` span in *text*.

    Braces inside JSON string literals are ignored. If the string-aware scan
    cannot close the first object (for example because of a stray quote in
    malformed output) a plain depth count is tried; that span can end inside a
    string, so callers must parse it before trusting it. Returns None when the
    first opening brace never balances.
    """
    start = text.find("{")
    if start < 0:
        return None
    end = _balanced_end(text, start, string_aware=True)
    if end is None:
        end = _balanced_end(text, start, string_aware=False)
    if end is None:
        return None
    return text[start : end + 1]


def _balanced_end(text: str, start: int, *, string_aware: bool) -> int | None:
    depth = 0
    in_string = False
    escaped = False
    for i in range(start, len(text)):
        ch = text[i]
        if in_string:
            if escaped:
                escaped = False
            elif ch == "\\":
                escaped = True
            elif ch == '"':
                in_string = False
            continue
        if ch == '"' and string_aware:
            in_string = True
        elif ch == "{":
            depth += 1
        elif ch == "}":
            depth -= 1
            if depth == 0:
                return i
    return None
