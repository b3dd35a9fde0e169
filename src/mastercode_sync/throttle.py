"""Request pacing for the push batch: a minimum-interval rate limiter and a
retry policy with exponential backoff.

Both take injectable ``clock``/``sleep`` callables so tests can run them on
virtual time.
"""

from __future__ import annotations

import asyncio
import logging
import math
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

logger = logging.getLogger(__name__)

T = TypeVar("T")

Clock = Callable[[], float]
Sleep = Callable[[float], Awaitable[None]]


class RateLimitConfigError(ValueError):
    pass


class RateLimiter:
    """Strict minimum-interval scheduler shared by concurrent workers.

    Each ``wait()`` reserves the earliest free slot (``max(now, next slot)``)
    and pushes the next slot ``min_interval`` further out before suspending,
    so no two callers ever get slots closer than ``min_interval`` apart.
    """

    def __init__(
        self,
        events_per_second: float,
        *,
        clock: Clock = time.monotonic,
        sleep: Sleep = asyncio.sleep,
    ) -> None:
        if not events_per_second or events_per_second <= 0:
            raise RateLimitConfigError(
                f"rate limit must be positive, got {events_per_second!r}"
            )
        self.min_interval_ms = math.ceil(1000 / events_per_second)
        self._clock = clock
        self._sleep = sleep
        self._next_available: float | None = None
        self._lock = asyncio.Lock()

    @property
    def min_interval(self) -> float:
        return self.min_interval_ms / 1000.0

    async def reserve(self) -> float:
        """Reserve a start slot and return it (clock seconds)."""
        async with self._lock:
            now = self._clock()
            slot = now if self._next_available is None else max(now, self._next_available)
            self._next_available = slot + self.min_interval
        return slot

    async def wait(self) -> float:
        slot = await self.reserve()
        delay = slot - self._clock()
        if delay > 0:
            await self._sleep(delay)
        return slot


@dataclass(frozen=True)
class RetryPolicy:
    """``retries`` extra attempts after the first; backoff doubles each time."""

    retries: int = 3
    initial_backoff_ms: int = 500

    @property
    def attempts(self) -> int:
        return self.retries + 1

    def delay_before(self, attempt: int) -> float:
        """Seconds to wait before 1-based ``attempt``; none before the first."""
        if attempt <= 1:
            return 0.0
        return self.initial_backoff_ms * 2 ** (attempt - 2) / 1000.0

    async def run(
        self,
        fn: Callable[[], Awaitable[T]],
        *,
        sleep: Sleep = asyncio.sleep,
        on_retry: Callable[[int, float, BaseException], None] | None = None,
    ) -> T:
        attempt = 1
        while True:
            delay = self.delay_before(attempt)
            if delay > 0:
                await sleep(delay)
            try:
                return await fn()
            except Exception as exc:
                if attempt >= self.attempts:
                    raise
                next_delay = self.delay_before(attempt + 1)
                logger.warning(
                    "Attempt %d/%d failed (%s); retrying in %.0fms",
                    attempt,
                    self.attempts,
                    exc,
                    next_delay * 1000,
                )
                if on_retry is not None:
                    on_retry(attempt, next_delay, exc)
                attempt += 1
