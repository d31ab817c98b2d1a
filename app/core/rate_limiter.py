"""Sliding-window rate limiter for quota-constrained upstream APIs."""

from __future__ import annotations

import asyncio
import time
from collections import deque
from typing import Callable, Deque

from app.core.config import settings
from app.core.logging import get_logger

log = get_logger("rate_limiter")


class RateLimiter:
    """Allows at most ``max_requests`` calls per rolling ``window_ms``.

    Callers over the limit are delayed, never rejected. The lock makes waiting
    callers leave in arrival order.
    """

    def __init__(
        self,
        max_requests: int,
        window_ms: int,
        clock: Callable[[], float] = time.monotonic,
        name: str = "default",
    ):
        if max_requests < 1:
            raise ValueError("max_requests must be >= 1")
        self.max_requests = max_requests
        self.window = window_ms / 1000.0
        self.name = name
        self._clock = clock
        self._requests: Deque[float] = deque()
        self._lock = asyncio.Lock()

    def _prune(self, now: float) -> None:
        while self._requests and now - self._requests[0] >= self.window:
            self._requests.popleft()

    async def throttle(self) -> None:
        """Suspend until a call fits in the window, then record it."""
        async with self._lock:
            while True:
                now = self._clock()
                self._prune(now)
                if len(self._requests) < self.max_requests:
                    self._requests.append(now)
                    return

                wait = self.window - (now - self._requests[0])
                log.debug(f"Limiter {self.name} full, waiting {wait:.3f}s")
                await asyncio.sleep(max(wait, 0.0))

    @property
    def in_window(self) -> int:
        self._prune(self._clock())
        return len(self._requests)

    def reset(self) -> None:
        self._requests.clear()


coingecko_limiter = RateLimiter(
    settings.COINGECKO_RATE_LIMIT,
    settings.COINGECKO_RATE_WINDOW_MS,
    name="coingecko",
)
