"""Cooperative cancellation and keyed, cancellable retry delays.

A retry delay is a timer handle on the running event loop resolving a
future; it is registered under the owning call's id so cancelling a call
reliably cancels its pending retry instead of leaking a timer.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
import threading
from typing import TYPE_CHECKING

from rockid.errors import DispatchCancelledError

if TYPE_CHECKING:
    from collections.abc import Callable


class CancellationToken:
    """Thread-safe cancellation flag with callbacks."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._cancelled = False
        self._callbacks: list[Callable[[], None]] = []

    @property
    def cancelled(self) -> bool:
        with self._lock:
            return self._cancelled

    def cancel(self) -> None:
        """Flip the flag and run registered callbacks once."""
        with self._lock:
            if self._cancelled:
                return
            self._cancelled = True
            callbacks, self._callbacks = self._callbacks, []
        for cb in callbacks:
            cb()

    def add_callback(self, cb: Callable[[], None]) -> None:
        """Run *cb* on cancellation (immediately if already cancelled)."""
        with self._lock:
            if not self._cancelled:
                self._callbacks.append(cb)
                return
        cb()

    def remove_callback(self, cb: Callable[[], None]) -> None:
        """Forget *cb*; a no-op when it already ran or was never added."""
        with self._lock:
            if cb in self._callbacks:
                self._callbacks.remove(cb)

    def raise_if_cancelled(self) -> None:
        if self.cancelled:
            raise DispatchCancelledError("Identification was cancelled")


def _resolve(fut: asyncio.Future[None]) -> None:
    if not fut.done():
        fut.set_result(None)


@dataclass
class RetryScheduler:
    """Pending retry delays keyed by call id."""

    _pending: dict[str, tuple[asyncio.TimerHandle, asyncio.Future[None]]] = field(
        default_factory=dict
    )

    def pending(self, call_id: str) -> bool:
        """Whether *call_id* currently has a scheduled retry."""
        return call_id in self._pending

    async def wait(self, call_id: str, delay_s: float) -> None:
        """Wait *delay_s* seconds unless the call is cancelled first.

        Raises ``DispatchCancelledError`` when `cancel` fires for *call_id*.
        """
        if call_id in self._pending:
            raise RuntimeError(f"retry already scheduled for call {call_id}")
        loop = asyncio.get_running_loop()
        fut: asyncio.Future[None] = loop.create_future()
        handle = loop.call_later(max(0.0, delay_s), _resolve, fut)
        self._pending[call_id] = (handle, fut)
        try:
            await fut
        except asyncio.CancelledError:
            handle.cancel()
            raise DispatchCancelledError("Identification was cancelled") from None
        finally:
            self._pending.pop(call_id, None)

    def cancel(self, call_id: str) -> bool:
        """Cancel the pending retry for *call_id*; return True if one existed."""
        entry = self._pending.get(call_id)
        if entry is None:
            return False
        handle, fut = entry
        handle.cancel()
        if not fut.done():
            fut.get_loop().call_soon_threadsafe(fut.cancel)
        return True
