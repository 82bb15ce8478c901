from __future__ import annotations

import asyncio
from collections import deque
from dataclasses import dataclass
from typing import Deque, Optional, Set

from loguru import logger

from ..errors import SinkError, SinkThrottledError
from ..metrics.registry import RETRY_ATTEMPTS_TOTAL, RETRY_DROPS_TOTAL, RETRY_QUEUE_DEPTH
from .dispatch import groups_for, send_group
from .dlq import DeadLetterQueue
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent, feedback_bus
from .rate_limiter import RateLimiter
from .types import DropCallback, RetryItem, SinkClient, SleepFn


@dataclass(frozen=True)
class RetryConfig:
    max_retries: int = 3
    batch_size: int = 5  # items replayed per pass
    low_water_mark: float = 2  # tokens needed before a pass starts
    high_water_mark: int = 50  # backlog size that signals HARD backpressure
    item_delay_ms: int = 1000
    backoff_base_ms: int = 5000
    backoff_per_item_ms: int = 500
    backoff_max_ms: int = 15000
    replay_cost: float = 1


class RetryQueue:
    """FIFO of throttled sink calls, replayed when the limiter has capacity.

    Enqueueing starts the processing task if none is running; there is at
    most one task per queue. Items that keep getting throttled go to the tail
    and are dropped once ``retry_count`` exceeds ``max_retries``. Drops are
    logged, counted, reported to ``on_drop`` and written to the DLQ when one
    is configured.
    """

    def __init__(
        self,
        client: SinkClient,
        limiter: RateLimiter,
        config: Optional[RetryConfig] = None,
        *,
        on_drop: Optional[DropCallback] = None,
        dlq: Optional[DeadLetterQueue] = None,
        bus: Optional[FeedbackBus] = None,
        queue_id: str = "retry",
        sleep: SleepFn = asyncio.sleep,
    ):
        self._client = client
        self._limiter = limiter
        self._cfg = config or RetryConfig()
        self._on_drop = on_drop
        self._dlq = dlq
        self._bus = bus or feedback_bus()
        self._queue_id = queue_id
        self._sleep = sleep

        self._items: Deque[RetryItem] = deque()
        self._processing = False
        self._task: Optional[asyncio.Task] = None
        self._high_fired = False
        self._signals: Set[asyncio.Task] = set()

    @property
    def size(self) -> int:
        return len(self._items)

    @property
    def is_processing(self) -> bool:
        return self._processing

    def backoff_ms(self) -> int:
        return min(
            self._cfg.backoff_base_ms + len(self._items) * self._cfg.backoff_per_item_ms,
            self._cfg.backoff_max_ms,
        )

    def enqueue(self, item: RetryItem) -> None:
        """Append ``item`` at the tail and make sure the processing task runs."""
        self._items.append(item)
        RETRY_QUEUE_DEPTH.set(len(self._items))
        logger.debug(
            f"RetryQueue[{self._queue_id}] queued {item.operation_kind.value} "
            f"for {item.sink_key} (size={len(self._items)})"
        )
        loop = asyncio.get_running_loop()
        if not self._processing:
            self._processing = True
            self._task = loop.create_task(self._run())
        elif not self._high_fired and len(self._items) >= self._cfg.high_water_mark:
            # the loop may be asleep in a backoff; signal the crossing now
            signal = loop.create_task(self._maybe_signal())
            self._signals.add(signal)
            signal.add_done_callback(self._signals.discard)

    async def _run(self) -> None:
        try:
            while True:
                await self._maybe_signal()
                if not self._items:
                    break
                tokens = self._limiter.available_tokens()
                if tokens < self._cfg.low_water_mark:
                    wait_ms = self.backoff_ms()
                    logger.warning(
                        f"RetryQueue[{self._queue_id}] low on tokens ({tokens:.2f}); "
                        f"backing off {wait_ms}ms with {len(self._items)} queued"
                    )
                    await self._sleep(wait_ms / 1000)
                    continue
                throttled = await self._process_pass()
                if throttled and self._items:
                    await self._sleep(self.backoff_ms() / 1000)
            logger.info(f"RetryQueue[{self._queue_id}] drained")
        finally:
            self._processing = False
            self._task = None
            RETRY_QUEUE_DEPTH.set(len(self._items))

    async def _process_pass(self) -> int:
        """Replay one batch; returns how many items were throttled again."""
        n = min(self._cfg.batch_size, len(self._items))
        batch = [self._items.popleft() for _ in range(n)]
        RETRY_QUEUE_DEPTH.set(len(self._items))
        logger.info(
            f"RetryQueue[{self._queue_id}] replaying {n} item(s) ({len(self._items)} remaining)"
        )
        throttled = 0
        for i, item in enumerate(batch):
            if i and self._cfg.item_delay_ms:
                await self._sleep(self._cfg.item_delay_ms / 1000)
            if not await self._attempt(item):
                throttled += 1
        return throttled

    async def _attempt(self, item: RetryItem) -> bool:
        """False only when the item went back to the tail."""
        item.retry_count += 1
        if item.retry_count > self._cfg.max_retries:
            await self._drop(item, "max_retries")
            return True

        try:
            await self._limiter.acquire(self._cfg.replay_cost)
            for group in groups_for(item.data):
                await send_group(self._client, item.sink_key, group)
        except SinkThrottledError as exc:
            RETRY_ATTEMPTS_TOTAL.labels(outcome="throttled").inc()
            logger.warning(
                f"RetryQueue[{self._queue_id}] still throttled for {item.sink_key} "
                f"(attempt {item.retry_count}/{self._cfg.max_retries}): {exc}"
            )
            self._items.append(item)
            RETRY_QUEUE_DEPTH.set(len(self._items))
            return False
        except SinkError as exc:
            RETRY_ATTEMPTS_TOTAL.labels(outcome="error").inc()
            logger.error(
                f"RetryQueue[{self._queue_id}] non-recoverable error for {item.sink_key}: {exc}"
            )
            await self._drop(item, "error")
            return True

        RETRY_ATTEMPTS_TOTAL.labels(outcome="success").inc()
        logger.info(
            f"RetryQueue[{self._queue_id}] replayed {len(item.data)} op(s) for {item.sink_key} "
            f"on attempt {item.retry_count}"
        )
        return True

    async def _drop(self, item: RetryItem, reason: str) -> None:
        RETRY_DROPS_TOTAL.labels(reason=reason).inc()
        logger.error(
            f"RetryQueue[{self._queue_id}] giving up on {item.operation_kind.value} "
            f"for {item.sink_key} after {item.retry_count} attempt(s) ({reason}); "
            f"{len(item.data)} op(s) dropped"
        )
        if self._dlq is not None:
            try:
                await self._dlq.save(item, reason)
            except OSError as exc:
                logger.error(f"DLQ write failed: {exc}")
        if self._on_drop is not None:
            try:
                await self._on_drop(item, reason)
            except Exception as exc:
                logger.warning(f"on_drop hook failed (ignored): {type(exc).__name__}: {exc}")

    async def _maybe_signal(self) -> None:
        size = len(self._items)
        if not self._high_fired and size >= self._cfg.high_water_mark:
            self._high_fired = True
            await self._bus.publish(
                FeedbackEvent(
                    queue_id=self._queue_id,
                    queue_size=size,
                    high_watermark=self._cfg.high_water_mark,
                    level=BackpressureLevel.HARD,
                    reason="high_watermark",
                )
            )
        elif self._high_fired and size <= self._cfg.high_water_mark // 2:
            self._high_fired = False
            await self._bus.publish(
                FeedbackEvent(
                    queue_id=self._queue_id,
                    queue_size=size,
                    high_watermark=self._cfg.high_water_mark,
                    level=BackpressureLevel.OK,
                    reason="drained" if size == 0 else "recovered",
                )
            )

    async def drain(self, timeout: Optional[float] = None) -> None:
        """Wait until the processing task has emptied the queue."""
        task = self._task
        if task is None:
            return
        await asyncio.wait_for(asyncio.shield(task), timeout=timeout)

    async def close(self) -> None:
        """Cancel the processing task; queued items stay in memory."""
        task = self._task
        if task is None:
            return
        task.cancel()
        try:
            await task
        except asyncio.CancelledError:
            pass
        if self._items:
            logger.warning(
                f"RetryQueue[{self._queue_id}] closed with {len(self._items)} item(s) pending"
            )
