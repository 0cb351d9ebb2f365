"""Sliding-window rate limiter keyed by tenant.

Each tenant owns a deque of admission timestamps inside the trailing window.
Windows are created on first use, pruned on every admit, and dropped by a
time-based sweep once they hold no timestamps.
"""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, Deque, Dict

from modgate.util.logger import get_logger

logger = get_logger("rate_limiter")


class RateLimiter:
    """
    Per-tenant sliding-window limiter.

    Args:
        max_requests: Admissions allowed per tenant inside one window.
        window_seconds: Length of the trailing window.
        clock: Monotonic time source, injectable for tests.
    """

    def __init__(
        self,
        max_requests: int = 100,
        window_seconds: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        if max_requests <= 0:
            raise ValueError("max_requests must be positive")
        if window_seconds <= 0:
            raise ValueError("window_seconds must be positive")
        self._max_requests = max_requests
        self._window_seconds = window_seconds
        self._clock = clock
        self._windows: Dict[str, Deque[float]] = {}
        self._sweep_task: asyncio.Task | None = None

    @property
    def max_requests(self) -> int:
        return self._max_requests

    @property
    def window_seconds(self) -> float:
        return self._window_seconds

    def _prune(self, window: Deque[float], now: float) -> None:
        cutoff = now - self._window_seconds
        while window and window[0] <= cutoff:
            window.popleft()

    def admit(self, tenant_id: str) -> bool:
        """Admit one request for ``tenant_id`` if its window has room.

        Rejected requests do not consume a slot. The read-prune-append sequence
        has no await point, so it is atomic on the event loop.
        """
        now = self._clock()
        window = self._windows.get(tenant_id)
        if window is None:
            window = deque()
            self._windows[tenant_id] = window

        self._prune(window, now)
        if len(window) >= self._max_requests:
            logger.debug("[RATE LIMITER] Tenant %s rejected (%d in window)", tenant_id, len(window))
            return False

        window.append(now)
        return True

    def remaining(self, tenant_id: str) -> int:
        """Slots left for ``tenant_id`` in the current window."""
        window = self._windows.get(tenant_id)
        if window is None:
            return self._max_requests
        self._prune(window, self._clock())
        return max(0, self._max_requests - len(window))

    def sweep(self) -> int:
        """Prune every window and drop tenants with no timestamps left.

        Returns:
            Number of tenants removed.
        """
        now = self._clock()
        removed = 0
        for tenant_id in list(self._windows):
            window = self._windows[tenant_id]
            self._prune(window, now)
            if not window:
                del self._windows[tenant_id]
                removed += 1
        if removed:
            logger.debug("[RATE LIMITER] Swept %d idle tenants", removed)
        return removed

    def tracked_tenants(self) -> int:
        return len(self._windows)

    # ---------------------------------------------------------------
    # Periodic sweep lifecycle
    # ---------------------------------------------------------------

    async def _sweep_loop(self, interval: float) -> None:
        try:
            while True:
                await asyncio.sleep(interval)
                self.sweep()
        except asyncio.CancelledError:
            logger.debug("[RATE LIMITER] Sweep loop cancelled")
            raise

    def start(self, sweep_interval_seconds: float = 60.0) -> None:
        """Start the background sweep task if not already running."""
        if self._sweep_task and not self._sweep_task.done():
            logger.warning("[RATE LIMITER] Sweep task already running")
            return
        self._sweep_task = asyncio.create_task(self._sweep_loop(sweep_interval_seconds))
        logger.info("[RATE LIMITER] Sweeping every %.1fs", sweep_interval_seconds)

    async def shutdown(self) -> None:
        """Stop the sweep task."""
        if self._sweep_task and not self._sweep_task.done():
            self._sweep_task.cancel()
            try:
                await self._sweep_task
            except asyncio.CancelledError:
                pass
        self._sweep_task = None
        logger.info("[RATE LIMITER] Shutdown complete")
