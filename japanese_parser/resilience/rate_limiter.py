"""
Rate limiter implementation using a fixed window counter.

Bounds the number of admitted requests per client in each window. Stale
windows are removed by a periodic sweep so that many distinct client
identifiers do not grow memory without bound.
"""

import asyncio
import contextlib
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from japanese_parser.observability.logging import get_logger
from japanese_parser.observability.metrics import rate_limit_windows, rate_limited_total


logger = get_logger(__name__)

DEFAULT_CLIENT_ID = "default"


@dataclass
class ClientWindow:
    """Request counter for one client within the current window."""
    client_id: str
    window_start_ms: float
    count: int = 1

    def age_ms(self, now_ms: float) -> float:
        return now_ms - self.window_start_ms


class RateLimiter:
    """
    Fixed window rate limiter.

    The first request from a client opens a window; up to ``max_requests``
    requests are admitted until the window is older than ``window_ms``, at
    which point the next request opens a fresh one. Rejected requests do not
    consume budget.
    """

    def __init__(
        self,
        max_requests: int = 60,
        window_ms: float = 60_000,
        sweep_interval_ms: float = 300_000,
        clock: Optional[Callable[[], float]] = None
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be at least 1")
        if window_ms <= 0:
            raise ValueError("window_ms must be positive")

        self.max_requests = max_requests
        self.window_ms = window_ms
        self.sweep_interval_ms = sweep_interval_ms

        # Seconds since epoch; resolved at construction so frozen clocks apply
        self._clock = clock or time.time
        self._windows: Dict[str, ClientWindow] = {}
        self._lock = asyncio.Lock()
        self._sweep_task: Optional[asyncio.Task] = None

    def _now_ms(self) -> float:
        return self._clock() * 1000.0

    async def is_rate_limited(self, client_id: str = DEFAULT_CLIENT_ID) -> bool:
        """
        Record a request from ``client_id`` and report whether it is rejected.

        Args:
            client_id: Caller identifier; absent callers share ``"default"``

        Returns:
            True if the request must be rejected, False if it was admitted
        """
        async with self._lock:
            now = self._now_ms()
            window = self._windows.get(client_id)

            if window is None or window.age_ms(now) > self.window_ms:
                self._windows[client_id] = ClientWindow(client_id, now, 1)
                rate_limit_windows.set(len(self._windows))
                return False

            if window.count >= self.max_requests:
                rate_limited_total.inc()
                logger.warning(
                    "Rate limit exceeded",
                    client_id=client_id,
                    max_requests=self.max_requests,
                    window_ms=self.window_ms,
                )
                return True

            window.count += 1
            return False

    async def allow_request(self, client_id: str = DEFAULT_CLIENT_ID) -> bool:
        """Check if request is allowed for the given client."""
        return not await self.is_rate_limited(client_id)

    async def get_remaining_requests(self, client_id: str = DEFAULT_CLIENT_ID) -> int:
        """Get number of remaining requests for the client in its current window."""
        async with self._lock:
            window = self._windows.get(client_id)
            if window is None or window.age_ms(self._now_ms()) > self.window_ms:
                return self.max_requests
            return max(0, self.max_requests - window.count)

    async def clear_key(self, client_id: str) -> None:
        """Clear rate limit data for a specific client."""
        async with self._lock:
            self._windows.pop(client_id, None)
            rate_limit_windows.set(len(self._windows))

    async def sweep(self) -> int:
        """
        Remove windows older than the window duration.

        Returns:
            Number of windows removed
        """
        async with self._lock:
            now = self._now_ms()
            expired = [
                client_id for client_id, window in self._windows.items()
                if window.age_ms(now) > self.window_ms
            ]
            for client_id in expired:
                del self._windows[client_id]
            rate_limit_windows.set(len(self._windows))

        if expired:
            logger.debug("Swept expired rate limit windows", removed=len(expired))
        return len(expired)

    async def _sweep_loop(self) -> None:
        while True:
            await asyncio.sleep(self.sweep_interval_ms / 1000.0)
            await self.sweep()

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is None or self._sweep_task.done():
            self._sweep_task = asyncio.create_task(
                self._sweep_loop(), name="rate-limiter-sweep"
            )

    async def stop(self) -> None:
        """Cancel the periodic sweep and wait for it to finish."""
        task, self._sweep_task = self._sweep_task, None
        if task is not None:
            task.cancel()
            with contextlib.suppress(asyncio.CancelledError):
                await task

    @property
    def is_running(self) -> bool:
        return self._sweep_task is not None and not self._sweep_task.done()

    async def get_stats(self) -> Dict[str, Any]:
        """Get rate limiter statistics."""
        async with self._lock:
            now = self._now_ms()
            active = [
                window for window in self._windows.values()
                if window.age_ms(now) <= self.window_ms
            ]
            return {
                "max_requests": self.max_requests,
                "window_ms": self.window_ms,
                "tracked_clients": len(self._windows),
                "active_clients": len(active),
                "total_active_requests": sum(window.count for window in active)
            }
