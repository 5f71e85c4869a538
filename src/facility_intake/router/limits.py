"""Per-provider concurrency and request-rate limits.

A :class:`ProviderGate` owns one provider's bookkeeping: a semaphore capping
in-flight calls and a sliding one-minute window of dispatch timestamps.
Callers over either limit wait; nothing is rejected.
"""

from __future__ import annotations

import asyncio
from collections import deque
from collections.abc import AsyncIterator, Awaitable, Callable
from contextlib import asynccontextmanager
import logging
import time

from facility_intake.constants import RATE_LIMIT_WINDOW
from facility_intake.core.types import ProviderConfig

log = logging.getLogger(__name__)

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimiter:
    """Sliding-window limiter for requests per minute.

    The timestamp is recorded when a request is admitted, so every window of
    ``window_seconds`` contains at most ``requests_per_minute`` dispatches.
    """

    def __init__(
        self,
        requests_per_minute: int,
        *,
        window_seconds: float = RATE_LIMIT_WINDOW,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if requests_per_minute < 1:
            raise ValueError("requests_per_minute must be at least 1")
        self.requests_per_minute = requests_per_minute
        self.window_seconds = window_seconds
        self._clock = clock
        self._sleep = sleep
        self._timestamps: deque[float] = deque()
        self._lock = asyncio.Lock()

    async def acquire(self) -> float:
        """Wait until a request may be dispatched.

        Returns:
            Seconds spent waiting.
        """
        waited = 0.0
        # FIFO admission: waiters queue on the lock in arrival order.
        async with self._lock:
            while True:
                now = self._clock()
                self._evict(now)
                if len(self._timestamps) < self.requests_per_minute:
                    self._timestamps.append(now)
                    return waited
                delay = self.window_seconds - (now - self._timestamps[0])
                log.debug("Rate limit reached; waiting %.2fs", delay)
                await self._sleep(delay)
                waited += delay

    def _evict(self, now: float) -> None:
        while self._timestamps and now - self._timestamps[0] >= self.window_seconds:
            self._timestamps.popleft()

    @property
    def recent_requests(self) -> int:
        self._evict(self._clock())
        return len(self._timestamps)


class ProviderGate:
    """Concurrency cap plus rate limit for a single provider."""

    def __init__(
        self,
        config: ProviderConfig,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        self.max_concurrent = config.max_concurrent
        self._semaphore = asyncio.Semaphore(config.max_concurrent)
        self._limiter = RateLimiter(
            config.rate_limit_per_minute, clock=clock, sleep=sleep
        )
        self._in_flight = 0

    @asynccontextmanager
    async def slot(self) -> AsyncIterator[None]:
        """Hold one concurrency slot and one rate-limit admission."""
        async with self._semaphore:
            await self._limiter.acquire()
            self._in_flight += 1
            try:
                yield
            finally:
                self._in_flight -= 1

    @property
    def in_flight(self) -> int:
        return self._in_flight

    @property
    def limiter(self) -> RateLimiter:
        return self._limiter
