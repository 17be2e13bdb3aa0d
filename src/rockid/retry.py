"""Bounded retry policy, per-call retry state and retry classification.

Design goals:
- Explicit state (policy + attempt counter) owned by exactly one call
- No brittle substring matching for retry decisions
- Backoff is ``base * 2**attempt`` plus bounded jitter
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import random
from typing import TYPE_CHECKING

import httpx

from rockid.errors import (
    AuthError,
    DispatchCancelledError,
    NetworkError,
    NoConnectionError,
    UpstreamError,
    _walk_exception_chain,
)

if TYPE_CHECKING:
    from collections.abc import Callable


@dataclass(frozen=True)
class RetryPolicy:
    """Bounded retry policy with exponential backoff and additive jitter."""

    #: Retries after the first attempt; total attempts is ``max_retries + 1``.
    max_retries: int = 3
    base_delay_s: float = 2.0
    backoff_multiplier: float = 2.0
    #: Upper bound of the uniform jitter added to every delay.
    jitter_s: float = 1.0

    def __post_init__(self) -> None:
        """Validate invariants to keep retry behavior predictable."""
        if self.max_retries < 0:
            raise ValueError("RetryPolicy.max_retries must be >= 0")
        if self.base_delay_s < 0:
            raise ValueError("RetryPolicy.base_delay_s must be >= 0")
        if self.backoff_multiplier < 1:
            raise ValueError("RetryPolicy.backoff_multiplier must be >= 1")
        if self.jitter_s < 0:
            raise ValueError("RetryPolicy.jitter_s must be >= 0")

    def base_delay_for(self, attempt: int) -> float:
        """Deterministic part of the delay before retry number *attempt* (0-based)."""
        return self.base_delay_s * (self.backoff_multiplier ** max(0, attempt))


def compute_backoff_delay(
    policy: RetryPolicy,
    *,
    attempt: int,
    rand: Callable[[], float] = random.random,
) -> float:
    """Return ``base * multiplier**attempt + uniform(0, jitter)`` in seconds."""
    delay = policy.base_delay_for(attempt)
    if policy.jitter_s > 0:
        delay += rand() * policy.jitter_s
    return delay


@dataclass
class RetryState:
    """Retry bookkeeping for a single identification call.

    ``attempt`` counts retries already consumed and never exceeds
    ``max_retries``.
    """

    max_retries: int
    attempt: int = 0
    last_error: BaseException | None = None
    next_delay_s: float | None = None

    @property
    def exhausted(self) -> bool:
        return self.attempt >= self.max_retries

    def record_failure(self, exc: BaseException) -> None:
        """Remember the latest classified failure."""
        self.last_error = exc
        self.next_delay_s = None

    def consume(self, delay_s: float) -> int:
        """Reserve the next retry and return its 0-based index."""
        if self.exhausted:
            raise RuntimeError("retry budget already exhausted")
        index = self.attempt
        self.attempt += 1
        self.next_delay_s = delay_s
        return index


def _is_transient_transport_error(exc: BaseException) -> bool:
    for e in _walk_exception_chain(exc):
        if isinstance(e, (TimeoutError, asyncio.TimeoutError)):
            return True
        if isinstance(e, (httpx.TimeoutException, httpx.TransportError)):
            return True
    return False


def should_retry(exc: BaseException) -> bool:
    """Return True when a dispatch failure should be retried.

    Contract:
    - Cancellation is never retried.
    - ``NoConnectionError`` and ``AuthError`` are never retried.
    - ``NetworkError`` is retried only when it is transient.
    - ``UpstreamError`` is retried only when marked retryable.
    - Raw timeouts / transport errors are retried as a pragmatic fallback.
    """
    if isinstance(exc, (asyncio.CancelledError, DispatchCancelledError)):
        return False
    if isinstance(exc, (NoConnectionError, AuthError)):
        return False
    if isinstance(exc, NetworkError):
        return exc.transient
    if isinstance(exc, UpstreamError):
        return exc.retryable is True
    return _is_transient_transport_error(exc)
