"""Long-lived connectivity monitor shared by every identification call.

Reads of the last-known status are lock-guarded and safe from any thread.
Writes happen only through `ConnectivityMonitor.update`, which is the
monitor's own update callback (platform hook or the `run` probe loop).
"""

from __future__ import annotations

import asyncio
from enum import Enum
import logging
import threading
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from collections.abc import Awaitable, Callable

logger = logging.getLogger(__name__)


class ConnectivityStatus(str, Enum):
    """Last-known network path status."""

    SATISFIED = "satisfied"
    UNSATISFIED = "unsatisfied"
    UNKNOWN = "unknown"


class ConnectivityMonitor:
    """Thread-safe holder of the last-known connectivity status.

    ``UNKNOWN`` counts as available: the dispatcher only short-circuits when
    connectivity is *known* to be down.
    """

    def __init__(
        self, initial: ConnectivityStatus = ConnectivityStatus.UNKNOWN
    ) -> None:
        self._lock = threading.Lock()
        self._status = initial
        self._stopped = asyncio.Event()

    @property
    def status(self) -> ConnectivityStatus:
        with self._lock:
            return self._status

    @property
    def is_available(self) -> bool:
        return self.status is not ConnectivityStatus.UNSATISFIED

    def update(self, status: ConnectivityStatus | bool) -> None:
        """Record a new status; the single write path."""
        if isinstance(status, bool):
            status = (
                ConnectivityStatus.SATISFIED if status else ConnectivityStatus.UNSATISFIED
            )
        with self._lock:
            previous, self._status = self._status, status
        if previous is not status:
            logger.info("Network status: %s", status.value)

    async def run(
        self,
        probe: Callable[[], Awaitable[bool]],
        *,
        interval_s: float = 5.0,
    ) -> None:
        """Continuously probe connectivity until `stop` is called.

        Probe exceptions count as "unavailable"; cancellation propagates.
        """
        self._stopped.clear()
        while not self._stopped.is_set():
            try:
                ok = await probe()
            except asyncio.CancelledError:
                raise
            except Exception as exc:
                logger.debug("Connectivity probe failed: %s", exc)
                ok = False
            self.update(bool(ok))
            try:
                await asyncio.wait_for(self._stopped.wait(), timeout=interval_s)
            except asyncio.TimeoutError:
                continue

    def stop(self) -> None:
        """Stop a running `run` loop after its current probe."""
        self._stopped.set()


def always_online() -> ConnectivityMonitor:
    """Return a monitor pinned to ``SATISFIED`` (tests, CLIs, servers)."""
    return ConnectivityMonitor(ConnectivityStatus.SATISFIED)
