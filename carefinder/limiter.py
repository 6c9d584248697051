"""Reservoir rate limiter guarding calls to paid or quota-limited services.

One instance per downstream dependency. A call is dispatched only when all
of the following hold:

- fewer than ``max_concurrent`` calls are in flight,
- the reservoir has quota left (it is reset to ``refresh_amount`` every
  ``refresh_interval`` seconds),
- at least ``min_time`` seconds passed since the previous dispatch.

Waiting calls are dispatched in FIFO order. At most ``high_water`` calls
may wait at once; beyond that ``schedule`` fails immediately with
``CapacityExceededError``.
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TypeVar

from carefinder.constants import RATE_LIMIT_RETRY_AFTER
from carefinder.errors import CapacityExceededError, RateLimitExceededError
from carefinder.logging import get_logger

_logger = get_logger(__name__)

T = TypeVar("T")


@dataclass(frozen=True)
class LimiterSettings:
    min_time: float
    max_concurrent: int
    reservoir: int
    refresh_amount: int
    refresh_interval: float
    high_water: int


@dataclass(frozen=True)
class LimiterStatus:
    running: int
    queued: int
    reservoir: int


def _is_rate_limited(exc: BaseException) -> bool:
    if isinstance(exc, RateLimitExceededError):
        return True
    return getattr(exc, "status_code", None) == 429 or getattr(exc, "status", None) == 429


class RateLimiter:
    def __init__(
        self,
        name: str,
        settings: LimiterSettings,
        clock: Callable[[], float] = time.monotonic,
    ):
        if settings.max_concurrent < 1:
            raise ValueError(f"max_concurrent must be >= 1, got {settings.max_concurrent}")
        if settings.refresh_interval <= 0:
            raise ValueError(f"refresh_interval must be > 0, got {settings.refresh_interval}")
        self.name = name
        self.settings = settings
        self._clock = clock

        self._reservoir = settings.reservoir
        self._next_refresh = clock() + settings.refresh_interval
        self._last_dispatch: float | None = None
        self._running = 0
        self._queued = 0
        self._closed = False

        # asyncio.Lock wakes waiters in FIFO order, which gives the queue its ordering
        self._dispatch_lock = asyncio.Lock()
        self._slot_freed = asyncio.Event()

    @property
    def running(self) -> int:
        return self._running

    @property
    def queued(self) -> int:
        return self._queued

    @property
    def reservoir(self) -> int:
        self._refill()
        return self._reservoir

    def status(self) -> LimiterStatus:
        return LimiterStatus(running=self.running, queued=self.queued, reservoir=self.reservoir)

    def close(self) -> None:
        self._closed = True

    def _refill(self) -> None:
        now = self._clock()
        if now < self._next_refresh:
            return
        interval = self.settings.refresh_interval
        missed = int((now - self._next_refresh) // interval) + 1
        self._next_refresh += missed * interval
        self._reservoir = self.settings.refresh_amount

    async def _wait_for_slot(self) -> None:
        while self._running >= self.settings.max_concurrent:
            self._slot_freed.clear()
            await self._slot_freed.wait()

    async def _wait_for_quota(self) -> None:
        self._refill()
        while self._reservoir <= 0:
            delay = max(self._next_refresh - self._clock(), 0.0)
            _logger.warning("Rate limiter %s depleted, waiting %.2fs for refill", self.name, delay)
            await asyncio.sleep(delay)
            self._refill()

    async def _wait_for_spacing(self) -> None:
        if self._last_dispatch is None or self.settings.min_time <= 0:
            return
        delay = self._last_dispatch + self.settings.min_time - self._clock()
        if delay > 0:
            await asyncio.sleep(delay)

    async def _acquire(self) -> None:
        async with self._dispatch_lock:
            await self._wait_for_slot()
            await self._wait_for_quota()
            await self._wait_for_spacing()
            self._reservoir -= 1
            self._running += 1
            self._last_dispatch = self._clock()

    def _release(self) -> None:
        self._running -= 1
        self._slot_freed.set()

    async def schedule(self, fn: Callable[..., Awaitable[T]], *args, **kwargs) -> T:
        """Run ``fn(*args, **kwargs)`` once the limiter admits it.

        Exceptions raised by ``fn`` propagate unchanged. Provider 429s get a
        ``retry_after`` attribute (seconds) attached when missing.
        """
        if self._closed:
            raise RuntimeError(f"Rate limiter {self.name} is closed")
        if self._queued >= self.settings.high_water:
            raise CapacityExceededError(
                f"Rate limiter {self.name} queue is full ({self._queued}/{self.settings.high_water})",
                limiter=self.name,
                queued=self._queued,
                high_water=self.settings.high_water,
            )

        self._queued += 1
        try:
            await self._acquire()
        finally:
            self._queued -= 1

        try:
            return await fn(*args, **kwargs)
        except Exception as e:
            _logger.error("Rate limited call failed (%s): %s", self.name, e)
            if _is_rate_limited(e) and getattr(e, "retry_after", None) is None:
                e.retry_after = RATE_LIMIT_RETRY_AFTER
            raise
        finally:
            self._release()
