from __future__ import annotations

import asyncio
import time
from dataclasses import dataclass
from typing import Optional

from loguru import logger

from ..metrics.registry import LIMITER_TOKENS, LIMITER_WAIT_SECONDS
from .types import ClockFn, SleepFn


@dataclass(frozen=True)
class RateLimiterStats:
    name: str
    available_tokens: float
    capacity: float
    refill_per_second: float
    requests_total: int
    requests_delayed: int

    @property
    def usage_percent(self) -> float:
        return (1 - self.available_tokens / self.capacity) * 100 if self.capacity else 0.0

    @property
    def delay_rate(self) -> float:
        return self.requests_delayed / self.requests_total * 100 if self.requests_total else 0.0


class RateLimiter:
    """Token bucket shared by every component that calls the sink.

    Refill is computed lazily from elapsed clock time on each access; there is
    no background ticker. ``acquire`` never fails, it only delays.
    """

    def __init__(
        self,
        capacity: float,
        refill_per_second: float,
        *,
        initial_tokens: Optional[float] = None,
        name: str = "sink",
        clock: ClockFn = time.monotonic,
        sleep: SleepFn = asyncio.sleep,
    ):
        if capacity <= 0:
            raise ValueError("capacity must be > 0")
        if refill_per_second <= 0:
            raise ValueError("refill_per_second must be > 0")

        self.name = name
        self.capacity = float(capacity)
        self.refill_per_second = float(refill_per_second)
        self._clock = clock
        self._sleep = sleep

        start = self.capacity if initial_tokens is None else float(initial_tokens)
        self._tokens = min(self.capacity, max(0.0, start))
        self._last_refill = clock()

        self._requests_total = 0
        self._requests_delayed = 0

        # Serializes token mutation across interleaved coroutines
        self._lock = asyncio.Lock()

    def _refill(self) -> None:
        now = self._clock()
        elapsed = now - self._last_refill
        if elapsed > 0:
            self._tokens = min(self.capacity, self._tokens + elapsed * self.refill_per_second)
            self._last_refill = now
        LIMITER_TOKENS.set(self._tokens)

    def available_tokens(self) -> float:
        """Current token count after lazy refill."""
        self._refill()
        return self._tokens

    async def acquire(self, n: float = 1) -> None:
        """Suspend until ``n`` tokens are available, then consume them."""
        if n > self.capacity:
            logger.warning(
                f"RateLimiter[{self.name}] request for {n} tokens exceeds capacity "
                f"{self.capacity}; clamping"
            )
            n = self.capacity

        async with self._lock:
            self._requests_total += 1
            waited = 0.0
            self._refill()
            while self._tokens < n:
                wait = (n - self._tokens) / self.refill_per_second
                if waited == 0.0:
                    self._requests_delayed += 1
                    logger.debug(
                        f"RateLimiter[{self.name}] waiting {wait * 1000:.0f}ms "
                        f"for {n} tokens (have {self._tokens:.2f})"
                    )
                await self._sleep(wait)
                waited += wait
                self._refill()
            self._tokens -= n
            LIMITER_TOKENS.set(self._tokens)
            if waited:
                LIMITER_WAIT_SECONDS.observe(waited)

    def stats(self) -> RateLimiterStats:
        return RateLimiterStats(
            name=self.name,
            available_tokens=self.available_tokens(),
            capacity=self.capacity,
            refill_per_second=self.refill_per_second,
            requests_total=self._requests_total,
            requests_delayed=self._requests_delayed,
        )
