"""Image transport encoding.

Every raw image byte travels as ``%XX`` inside the form body; the backend
decodes it and names the stored file by its content hash.
"""

from __future__ import annotations

import hashlib
from urllib.parse import unquote_to_bytes


def percent_encode(data: bytes) -> str:
    """Encode each byte as ``%XX`` (uppercase hex)."""
    return "".join(f"%{b:02X}" for b in data)


def percent_decode(text: str) -> bytes:
    """Decode a ``%XX`` string back to bytes.

    Characters outside an escape pass through as their UTF-8 bytes; a string
    without any ``%`` is treated as already-raw data. A ``%`` that is not
    followed by two hex digits is kept literally.
    """
    return unquote_to_bytes(text)


def content_digest(data: bytes) -> str:
    """Hex digest identifying *data* by content."""
    return hashlib.md5(data, usedforsecurity=False).hexdigest()


def content_name(data: bytes, *, suffix: str = ".jpg") -> str:
    """File name derived from the content hash, e.g. ``'9e10...c3.jpg'``."""
    return f"{content_digest(data)}{suffix}"
