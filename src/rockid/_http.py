"""Small HTTP-related constants and status classification shared across rockid.

This module is intentionally tiny to avoid circular imports and drift.
"""

from __future__ import annotations

from enum import Enum


class ResponseStatus(str, Enum):
    """Coarse classification of a network outcome."""

    SUCCESS = "success"
    CLIENT_ERROR = "client_error"
    SERVER_ERROR = "server_error"
    TRANSPORT_FAILURE = "transport_failure"


def classify_status(status_code: int | None) -> ResponseStatus:
    """Map an HTTP status code onto a `ResponseStatus`.

    2xx is success, 4xx is a permanent client error, 5xx is a transient
    server error. Anything else (including no status at all) is treated as a
    transport failure.
    """
    if status_code is None:
        return ResponseStatus.TRANSPORT_FAILURE
    if 200 <= status_code <= 299:
        return ResponseStatus.SUCCESS
    if 400 <= status_code <= 499:
        return ResponseStatus.CLIENT_ERROR
    if 500 <= status_code <= 599:
        return ResponseStatus.SERVER_ERROR
    return ResponseStatus.TRANSPORT_FAILURE
