"""Request-integrity check shared by the client and the backend.

The digest is computed over the serialized ``messages`` field concatenated
with a value both sides know. That value ships inside the client, so this
rejects tampered or stray requests but is not an authentication boundary.
"""

from __future__ import annotations

from dataclasses import dataclass
import hashlib
import hmac
from typing import Protocol, runtime_checkable

from rockid.errors import AuthError, ConfigurationError


@runtime_checkable
class IntegrityCheck(Protocol):
    """Compute and verify a digest over a request payload."""

    def sign(self, payload: str) -> str:
        """Return the digest for *payload*."""
        ...

    def verify(self, payload: str, digest: str | None) -> bool:
        """Return True when *digest* matches *payload*."""
        ...


@dataclass(frozen=True)
class SharedValueDigest:
    """``md5(payload + shared_value)`` as lowercase hex, wire-compatible with deployed clients."""

    shared_value: str

    def __post_init__(self) -> None:
        """Reject an empty shared value."""
        if not self.shared_value:
            raise ConfigurationError(
                "Integrity check needs a non-empty shared value",
                hint="Set ROCKID_SHARED_SECRET or pass Config(shared_secret=...).",
            )

    def sign(self, payload: str) -> str:
        data = f"{payload}{self.shared_value}".encode()
        return hashlib.md5(data, usedforsecurity=False).hexdigest()

    def verify(self, payload: str, digest: str | None) -> bool:
        if not digest:
            return False
        return hmac.compare_digest(self.sign(payload), digest.strip().lower())

    def __repr__(self) -> str:
        return "SharedValueDigest(shared_value='[REDACTED]')"


def require_valid(check: IntegrityCheck, payload: str, digest: str | None) -> None:
    """Raise `AuthError` unless *digest* matches *payload*."""
    if not check.verify(payload, digest):
        raise AuthError(
            "Authentication failed",
            suggestions=("Ensure you're using the correct API key",),
        )
