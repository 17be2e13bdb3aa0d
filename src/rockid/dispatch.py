"""Resilient request dispatch: connectivity gate, classification, bounded retry.

The dispatcher drives one `Transport` attempt at a time. Before every attempt
it reads the shared connectivity monitor; between attempts it waits on a
keyed, cancellable delay from `RetryScheduler` rather than recursing, so a
long retry chain neither grows a call stack nor pins a thread.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
import json
import logging
import random
from typing import TYPE_CHECKING, Any
import uuid

from rockid._http import ResponseStatus
from rockid._scheduler import CancellationToken, RetryScheduler
from rockid.connectivity import ConnectivityMonitor
from rockid.errors import (
    AuthError,
    DispatchCancelledError,
    NetworkError,
    NoConnectionError,
    RockIdError,
    UpstreamError,
)
from rockid.retry import RetryPolicy, RetryState, compute_backoff_delay, should_retry

if TYPE_CHECKING:
    from collections.abc import Callable

    from rockid.providers.base import Transport
    from rockid.providers.models import IdentificationRequest, RawResponse

logger = logging.getLogger(__name__)


@dataclass
class DispatchHandle:
    """A dispatched call running in the background."""

    call_id: str
    token: CancellationToken
    task: asyncio.Task[RawResponse]

    def cancel(self) -> None:
        """Cancel the pending retry (if any) and abort the in-flight attempt."""
        self.token.cancel()

    def done(self) -> bool:
        return self.task.done()

    def __await__(self) -> Any:
        return self.task.__await__()


class RequestDispatcher:
    """Send identification requests with connectivity checks and bounded retry."""

    def __init__(
        self,
        transport: Transport,
        *,
        monitor: ConnectivityMonitor | None = None,
        policy: RetryPolicy | None = None,
        timeout_s: float = 30.0,
        scheduler: RetryScheduler | None = None,
        on_retry: Callable[[RetryState], None] | None = None,
        rand: Callable[[], float] = random.random,
    ) -> None:
        """Initialize the dispatcher.

        Args:
            transport: Performs one network attempt.
            monitor: Shared connectivity monitor; a fresh one assumes online.
            policy: Retry budget and backoff; defaults to 3 retries, 2s base.
            timeout_s: Per-attempt timeout when `send` is given none.
            scheduler: Keyed delay scheduler, shareable across dispatchers.
            on_retry: Called with the call's `RetryState` when a retry is scheduled.
            rand: Source of jitter in [0, 1).
        """
        self.transport = transport
        self.monitor = monitor if monitor is not None else ConnectivityMonitor()
        self.policy = policy if policy is not None else RetryPolicy()
        self.timeout_s = timeout_s
        self.scheduler = scheduler if scheduler is not None else RetryScheduler()
        self._on_retry = on_retry
        self._rand = rand

    async def send(
        self,
        request: IdentificationRequest,
        *,
        timeout: float | None = None,
        token: CancellationToken | None = None,
        call_id: str | None = None,
    ) -> RawResponse:
        """Return the first successful `RawResponse` or raise a classified error.

        Raises:
            NoConnectionError: Connectivity is known unavailable before an attempt.
            DispatchCancelledError: *token* was cancelled.
            AuthError: The receiver rejected the request-integrity check (401).
            UpstreamError: A permanent non-2xx answer (4xx).
            NetworkError: A permanent transport failure, or transient failures
                that outlived the retry budget.
        """
        token = token if token is not None else CancellationToken()
        call_id = call_id or uuid.uuid4().hex
        per_attempt_timeout = timeout if timeout is not None else self.timeout_s

        def cancel_retry() -> None:
            self.scheduler.cancel(call_id)

        token.add_callback(cancel_retry)
        try:
            return await self._run(request, per_attempt_timeout, token, call_id)
        finally:
            token.remove_callback(cancel_retry)

    async def _run(
        self,
        request: IdentificationRequest,
        per_attempt_timeout: float,
        token: CancellationToken,
        call_id: str,
    ) -> RawResponse:
        state = RetryState(max_retries=self.policy.max_retries)
        while True:
            token.raise_if_cancelled()
            if not self.monitor.is_available:
                raise NoConnectionError(attempts=state.attempt)

            logger.debug(
                "Attempt %d/%d (call=%s, transport=%s)",
                state.attempt + 1,
                self.policy.max_retries + 1,
                call_id,
                self.transport.name,
            )
            try:
                response = await self._attempt(request, per_attempt_timeout, token)
                failure = _classify_response(response)
            except NetworkError as exc:
                failure = exc
            if failure is None:
                if state.attempt:
                    logger.info("Request succeeded after %d attempt(s)", state.attempt + 1)
                return response

            state.record_failure(failure)
            if not should_retry(failure) or state.exhausted:
                final = _final_error(failure, state)
                if final is failure:
                    raise failure
                raise final from failure

            delay = compute_backoff_delay(
                self.policy, attempt=state.attempt, rand=self._rand
            )
            state.consume(delay)
            logger.warning(
                "%s; retrying in %.1fs (retry %d/%d)",
                failure.message,
                delay,
                state.attempt,
                state.max_retries,
            )
            if self._on_retry is not None:
                self._on_retry(state)
            token.raise_if_cancelled()
            await self.scheduler.wait(call_id, delay)

    async def _attempt(
        self,
        request: IdentificationRequest,
        timeout: float,
        token: CancellationToken,
    ) -> RawResponse:
        loop = asyncio.get_running_loop()
        task = loop.create_task(self.transport.send(request, timeout=timeout))

        def abort() -> None:
            if not task.done():
                loop.call_soon_threadsafe(task.cancel)

        token.add_callback(abort)
        try:
            return await task
        except asyncio.CancelledError:
            if token.cancelled:
                raise DispatchCancelledError("Identification was cancelled") from None
            raise
        finally:
            token.remove_callback(abort)

    def submit(
        self,
        request: IdentificationRequest,
        *,
        timeout: float | None = None,
        on_complete: Callable[[RawResponse | None, BaseException | None], None]
        | None = None,
        loop: asyncio.AbstractEventLoop | None = None,
    ) -> DispatchHandle:
        """Run `send` as a background task on the running loop.

        *on_complete* receives ``(response, None)`` or ``(None, error)``; it
        runs on *loop* when given (thread-safe hand-off), else on the running
        loop.
        """
        token = CancellationToken()
        call_id = uuid.uuid4().hex
        task = asyncio.get_running_loop().create_task(
            self.send(request, timeout=timeout, token=token, call_id=call_id)
        )
        if on_complete is not None:
            task.add_done_callback(_deliver(on_complete, loop))
        return DispatchHandle(call_id=call_id, token=token, task=task)


def _deliver(
    on_complete: Callable[[RawResponse | None, BaseException | None], None],
    loop: asyncio.AbstractEventLoop | None,
) -> Callable[[asyncio.Task[RawResponse]], None]:
    def done(task: asyncio.Task[RawResponse]) -> None:
        response: RawResponse | None = None
        error: BaseException | None
        if task.cancelled():
            error = DispatchCancelledError("Identification was cancelled")
        else:
            error = task.exception()
            if error is None:
                response = task.result()
        if loop is None or loop is asyncio.get_running_loop():
            on_complete(response, error)
        else:
            loop.call_soon_threadsafe(on_complete, response, error)

    return done


def _error_details(response: RawResponse) -> tuple[str | None, tuple[str, ...] | None]:
    """Pull ``error``/``suggestions`` from a JSON error body when present."""
    try:
        body = json.loads(response.text)
    except ValueError:
        return None, None
    if not isinstance(body, dict):
        return None, None
    error = body.get("error")
    if isinstance(error, dict):
        error = error.get("message")
    suggestions = body.get("suggestions")
    return (
        error if isinstance(error, str) and error else None,
        tuple(s for s in suggestions if isinstance(s, str))
        if isinstance(suggestions, list)
        else None,
    )


def _classify_response(response: RawResponse) -> RockIdError | None:
    """Return None on success, else the error this response represents."""
    status = response.status
    if status is ResponseStatus.SUCCESS:
        return None
    detail, suggestions = _error_details(response)
    code = response.status_code
    if code == 401:
        return AuthError(detail or "Authentication failed", suggestions=suggestions)
    if status is ResponseStatus.CLIENT_ERROR:
        return UpstreamError(
            detail or f"Request error (HTTP {code})",
            status_code=code,
            retryable=False,
            suggestions=suggestions
            or ("There was a problem with your request. Please try again.",),
        )
    if status is ResponseStatus.SERVER_ERROR:
        return UpstreamError(
            f"Server temporarily unavailable (HTTP {code})",
            status_code=code,
            retryable=True,
        )
    return NetworkError(
        f"Unexpected server response (HTTP {code})", transient=False, status_code=code
    )


def _final_error(failure: RockIdError, state: RetryState) -> RockIdError:
    attempts = state.attempt + 1
    if isinstance(failure, UpstreamError) and failure.retryable:
        return NetworkError(
            "Server is temporarily unavailable. Please try again later.",
            transient=True,
            status_code=failure.status_code,
            attempts=attempts,
        )
    if isinstance(failure, NetworkError):
        if failure.transient:
            return NetworkError(
                f"{failure.message} (after {attempts} attempts)",
                transient=True,
                status_code=failure.status_code,
                attempts=attempts,
                suggestions=failure.suggestions,
            )
        failure.attempts = attempts
    return failure
