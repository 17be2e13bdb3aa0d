"""Shared transport-side error helpers.

Transports map client exceptions into `NetworkError` once, here, so the
dispatcher can decide on retries from stable metadata instead of matching
substrings.
"""

from __future__ import annotations

import asyncio
import ssl

import httpx
import openai

from rockid.errors import NetworkError, _walk_exception_chain

# (exception type, friendly description, transient)
_TRANSPORT_RULES: tuple[tuple[type[BaseException], str, bool], ...] = (
    (httpx.TimeoutException, "Connection timed out", True),
    (TimeoutError, "Connection timed out", True),
    (ssl.SSLError, "Secure connection failed", True),
    (httpx.ConnectError, "Cannot connect to server", True),
    (httpx.RemoteProtocolError, "Network connection lost", True),
    (httpx.ReadError, "Network connection lost", True),
    (httpx.WriteError, "Network connection lost", True),
    (httpx.ProxyError, "Cannot connect to server", True),
    (ConnectionError, "Network connection lost", True),
    (httpx.UnsupportedProtocol, "Malformed request", False),
    (httpx.LocalProtocolError, "Malformed request", False),
    (httpx.InvalidURL, "Invalid URL configuration", False),
    (openai.APITimeoutError, "Connection timed out", True),
    (openai.APIConnectionError, "Cannot connect to server", True),
)


_DNS_MARKERS = ("nodename", "name or service not known", "name resolution")


def _is_dns_failure(exc: BaseException) -> bool:
    text = str(exc).lower()
    return any(marker in text for marker in _DNS_MARKERS)


def describe_transport_error(exc: BaseException) -> tuple[str, bool]:
    """Return ``(friendly description, transient)`` for a transport exception.

    Unknown exceptions are permanent: retrying an unexplained failure only
    adds latency.
    """
    for e in _walk_exception_chain(exc):
        for exc_type, description, transient in _TRANSPORT_RULES:
            if isinstance(e, exc_type):
                if _is_dns_failure(e):
                    return "Server lookup failed", True
                return description, transient
    return str(exc) or type(exc).__name__, False


def wrap_transport_error(
    exc: BaseException, *, transport: str, message: str | None = None
) -> NetworkError:
    """Map a client exception into `NetworkError` with a stable ``transient`` flag."""
    if isinstance(exc, asyncio.CancelledError):
        raise exc
    if isinstance(exc, NetworkError):
        return exc

    description, transient = describe_transport_error(exc)
    msg = message or f"{transport} request failed"
    return NetworkError(f"{msg}: {description}", transient=transient)
