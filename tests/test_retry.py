"""Retry policy, backoff, classification and the keyed retry scheduler."""

from __future__ import annotations

import asyncio

from hypothesis import given
from hypothesis import strategies as st
import httpx
import pytest

from rockid._scheduler import CancellationToken, RetryScheduler
from rockid.errors import (
    AuthError,
    DispatchCancelledError,
    NetworkError,
    NoConnectionError,
    UpstreamError,
)
from rockid.retry import RetryPolicy, RetryState, compute_backoff_delay, should_retry

pytestmark = pytest.mark.unit


# =============================================================================
# Policy and backoff
# =============================================================================


def test_default_policy() -> None:
    policy = RetryPolicy()

    assert policy.max_retries == 3
    assert policy.base_delay_s == 2.0
    assert policy.jitter_s == 1.0


@pytest.mark.parametrize(
    "kwargs",
    [
        {"max_retries": -1},
        {"base_delay_s": -0.1},
        {"backoff_multiplier": 0.5},
        {"jitter_s": -1.0},
    ],
)
def test_policy_rejects_invalid_values(kwargs: dict[str, float]) -> None:
    with pytest.raises(ValueError, match="RetryPolicy"):
        RetryPolicy(**kwargs)


def test_backoff_doubles_and_adds_jitter() -> None:
    policy = RetryPolicy(base_delay_s=2.0, jitter_s=1.0)

    delays = [compute_backoff_delay(policy, attempt=n, rand=lambda: 0.5) for n in range(3)]

    assert delays == [2.5, 4.5, 8.5]


@given(
    attempt=st.integers(min_value=0, max_value=6),
    jitter=st.floats(min_value=0, max_value=0.999),
)
def test_backoff_stays_within_bounds(attempt: int, jitter: float) -> None:
    policy = RetryPolicy(base_delay_s=2.0, jitter_s=1.0)

    delay = compute_backoff_delay(policy, attempt=attempt, rand=lambda: jitter)

    base = 2.0 * 2**attempt
    assert base <= delay < base + 1.0


def test_retry_state_consumes_until_exhausted() -> None:
    state = RetryState(max_retries=2)

    assert state.consume(1.0) == 0
    assert state.consume(2.0) == 1
    assert state.exhausted
    assert state.next_delay_s == 2.0
    with pytest.raises(RuntimeError, match="exhausted"):
        state.consume(4.0)


# =============================================================================
# Classification
# =============================================================================


@pytest.mark.parametrize(
    ("exc", "expected"),
    [
        (NetworkError("x", transient=True), True),
        (NetworkError("x", transient=False), False),
        (NoConnectionError(), False),
        (AuthError("x"), False),
        (DispatchCancelledError("x"), False),
        (asyncio.CancelledError(), False),
        (UpstreamError("x", status_code=503, retryable=True), True),
        (UpstreamError("x", status_code=400, retryable=False), False),
        (UpstreamError("x"), False),
        (asyncio.TimeoutError(), True),
        (httpx.ConnectError("refused"), True),
        (ValueError("bad"), False),
    ],
)
def test_should_retry(exc: BaseException, expected: bool) -> None:
    assert should_retry(exc) is expected


def test_should_retry_follows_cause_chain() -> None:
    wrapped = RuntimeError("wrapper")
    wrapped.__cause__ = httpx.ReadTimeout("slow")

    assert should_retry(wrapped) is True


# =============================================================================
# Cancellation token and scheduler
# =============================================================================


def test_token_runs_callbacks_once() -> None:
    token = CancellationToken()
    calls: list[str] = []
    token.add_callback(lambda: calls.append("a"))

    token.cancel()
    token.cancel()
    token.add_callback(lambda: calls.append("late"))

    assert calls == ["a", "late"]
    with pytest.raises(DispatchCancelledError):
        token.raise_if_cancelled()


def test_removed_callback_does_not_run() -> None:
    token = CancellationToken()
    calls: list[str] = []

    def record() -> None:
        calls.append("removed")

    token.add_callback(record)
    token.remove_callback(record)
    token.remove_callback(record)
    token.cancel()

    assert calls == []


@pytest.mark.asyncio
async def test_scheduler_wait_elapses() -> None:
    scheduler = RetryScheduler()

    await scheduler.wait("call-1", 0.0)

    assert not scheduler.pending("call-1")


@pytest.mark.asyncio
async def test_scheduler_cancel_interrupts_wait() -> None:
    scheduler = RetryScheduler()
    waiter = asyncio.ensure_future(scheduler.wait("call-1", 30.0))
    await asyncio.sleep(0)

    assert scheduler.pending("call-1")
    assert scheduler.cancel("call-1") is True
    with pytest.raises(DispatchCancelledError):
        await asyncio.wait_for(waiter, timeout=5)
    assert not scheduler.pending("call-1")


@pytest.mark.asyncio
async def test_scheduler_cancel_without_pending_retry() -> None:
    assert RetryScheduler().cancel("nope") is False


@pytest.mark.asyncio
async def test_scheduler_rejects_second_wait_for_same_call() -> None:
    scheduler = RetryScheduler()
    waiter = asyncio.ensure_future(scheduler.wait("call-1", 30.0))
    await asyncio.sleep(0)

    with pytest.raises(RuntimeError, match="already scheduled"):
        await scheduler.wait("call-1", 1.0)

    scheduler.cancel("call-1")
    with pytest.raises(DispatchCancelledError):
        await waiter
