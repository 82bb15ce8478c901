from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Dict, List, Optional

from loguru import logger

from ..errors import SinkError, SinkThrottledError, classify_sink_error
from ..metrics.registry import BATCH_FLUSH_SIZE, BATCH_FLUSHES_TOTAL
from .dispatch import Group, groups_for, send_group
from .grouping import UpdateGroup
from .rate_limiter import RateLimiter
from .retry_queue import RetryQueue
from .types import Operation, RetryItem, Row, SinkClient


@dataclass(frozen=True)
class BatchConfig:
    """Size/time flush thresholds and the immediate-execution cutoff."""

    batch_size: int = 20  # flush synchronously when a key holds this many ops
    batch_timeout_ms: int = 10000  # or this long after the first buffered op
    immediate_threshold: float = 5  # tokens above which non-batchable ops skip the buffer
    flush_cost: float = 2  # tokens per flush
    direct_cost: float = 1  # tokens per direct write


@dataclass
class Batch:
    operations: List[Operation] = field(default_factory=list)
    flushing: bool = False
    timer: Optional[asyncio.Task] = None
    idle: asyncio.Event = field(default_factory=asyncio.Event)

    def __post_init__(self) -> None:
        self.idle.set()


class BatchSink:
    """
    Per-sink-key write buffer in front of a rate-limited SinkClient.

    Usage:
        sink = BatchSink(client, limiter, retry_queue, BatchConfig(batch_size=20))
        if not await sink.add_to_batch(op):
            await sink.write_direct(op)
        ...
        await sink.flush_all_batches()  # on shutdown

    Nothing here raises to callers: throttled sink calls go to the retry
    queue, other failures are logged and the data is dropped.
    """

    def __init__(
        self,
        client: SinkClient,
        limiter: RateLimiter,
        retry_queue: RetryQueue,
        config: Optional[BatchConfig] = None,
    ):
        self._client = client
        self._limiter = limiter
        self._retry = retry_queue
        self._cfg = config or BatchConfig()
        self._batches: Dict[str, Batch] = {}

    @property
    def config(self) -> BatchConfig:
        return self._cfg

    def pending(self, sink_key: Optional[str] = None) -> int:
        """Buffered operation count for one key, or across all keys."""
        if sink_key is not None:
            batch = self._batches.get(sink_key)
            return len(batch.operations) if batch else 0
        return sum(len(b.operations) for b in self._batches.values())

    def is_flushing(self, sink_key: str) -> bool:
        batch = self._batches.get(sink_key)
        return bool(batch and batch.flushing)

    def timer_armed(self, sink_key: str) -> bool:
        batch = self._batches.get(sink_key)
        return bool(batch and batch.timer is not None)

    # --------------------------- write path

    async def add_to_batch(self, op: Operation) -> bool:
        """Buffer ``op``; False means the caller should execute it directly."""
        try:
            tokens = self._limiter.available_tokens()
            if tokens > self._cfg.immediate_threshold and not op.batchable:
                logger.debug(
                    f"Executing {op.kind.value} for {op.sink_key} immediately "
                    f"(tokens: {tokens:.2f})"
                )
                return False

            batch = self._batches.get(op.sink_key)
            if batch is None:
                batch = self._batches[op.sink_key] = Batch()

            batch.operations.append(op)
            size = len(batch.operations)
            logger.debug(f"Buffered {op.kind.value} for {op.sink_key} (size: {size})")

            if size >= self._cfg.batch_size:
                self._cancel_timer(batch)
                await self.flush(op.sink_key, trigger="size")
            elif size == 1 and batch.timer is None:
                self._arm_timer(op.sink_key, batch)
            return True
        except Exception as exc:
            # op is already buffered when only the flush failed; flush logs its own errors
            logger.error(f"add_to_batch failed for {op.sink_key}: {type(exc).__name__}: {exc}")
            return True

    async def write_direct(self, op: Operation) -> bool:
        """Immediate single-operation write; True when the sink accepted it."""
        try:
            await self._limiter.acquire(self._cfg.direct_cost)
            for group in groups_for([op]):
                await send_group(self._client, op.sink_key, group)
            return True
        except SinkThrottledError as exc:
            logger.warning(
                f"Direct {op.kind.value} throttled for {op.sink_key}, queued for retry: {exc}"
            )
            self._retry.enqueue(RetryItem.of([op]))
        except SinkError as exc:
            logger.error(f"Direct {op.kind.value} failed for {op.sink_key}; dropped: {exc}")
        return False

    async def read_rows(self, sink_key: str, section: str, *, cost: float = 1) -> List[Row]:
        """Read a whole section through the limiter. Raises classified SinkError."""
        if cost > 0:
            await self._limiter.acquire(cost)
        try:
            return await self._client.read_rows(sink_key, section)
        except Exception as exc:
            err = classify_sink_error(exc)
            if err is exc:
                raise
            raise err from exc

    # --------------------------- timers

    def _arm_timer(
        self, sink_key: str, batch: Batch, delay: Optional[float] = None, trigger: str = "timer"
    ) -> None:
        if delay is None:
            delay = self._cfg.batch_timeout_ms / 1000
        batch.timer = asyncio.get_running_loop().create_task(
            self._flush_after(sink_key, delay, trigger)
        )

    @staticmethod
    def _cancel_timer(batch: Batch) -> None:
        if batch.timer is not None:
            batch.timer.cancel()
            batch.timer = None

    async def _flush_after(self, sink_key: str, delay: float, trigger: str) -> None:
        await asyncio.sleep(delay)
        batch = self._batches.get(sink_key)
        if batch is None:
            return
        # Detach before flushing so a size trigger can no longer cancel this task mid-flush
        batch.timer = None
        await self.flush(sink_key, trigger=trigger)

    # --------------------------- flushing

    async def flush(self, sink_key: str, *, trigger: str = "manual") -> int:
        """Flush one key; returns the number of operations taken from the buffer.

        A no-op returning 0 while another flush of the same key is in flight.
        """
        batch = self._batches.get(sink_key)
        if batch is None or batch.flushing:
            return 0

        batch.flushing = True
        batch.idle.clear()
        ops, batch.operations = batch.operations, []
        try:
            if not ops:
                return 0
            BATCH_FLUSHES_TOTAL.labels(trigger=trigger).inc()
            BATCH_FLUSH_SIZE.observe(len(ops))
            logger.info(f"Flushing batch for {sink_key} ({len(ops)} ops, trigger={trigger})")

            groups = groups_for(ops)
            await self._limiter.acquire(self._cfg.flush_cost)
            failed = 0
            for group in groups:
                if not await self._send(sink_key, group):
                    failed += 1
            if failed:
                logger.warning(
                    f"Flush for {sink_key} finished with {failed}/{len(groups)} failed group(s)"
                )
            else:
                logger.info(f"Flushed {len(ops)} ops for {sink_key} in {len(groups)} call(s)")
            return len(ops)
        finally:
            batch.flushing = False
            batch.idle.set()
            # ops that arrived mid-flush still need a deadline; a full batch goes now
            if len(batch.operations) >= self._cfg.batch_size:
                self._cancel_timer(batch)
                self._arm_timer(sink_key, batch, delay=0, trigger="size")
            elif batch.operations and batch.timer is None:
                self._arm_timer(sink_key, batch)

    async def _send(self, sink_key: str, group: Group) -> bool:
        label = (
            f"range {group.target.section}!{group.target.range}"
            if isinstance(group, UpdateGroup)
            else f"section {group.section}"
        )
        try:
            await send_group(self._client, sink_key, group)
            logger.debug(f"Wrote {len(group.rows)} row(s) to {label} of {sink_key}")
            return True
        except SinkThrottledError as exc:
            logger.warning(
                f"Throttled writing {label} of {sink_key}; "
                f"{len(group.ops)} op(s) to retry queue: {exc}"
            )
            self._retry.enqueue(RetryItem.of(group.ops))
        except SinkError as exc:
            logger.error(
                f"Failed writing {label} of {sink_key}; {len(group.rows)} row(s) dropped: {exc}"
            )
        return False

    async def flush_all_batches(self) -> int:
        """Flush every known key, waiting out in-flight flushes; returns ops flushed."""
        logger.info(f"Flushing all batches ({len(self._batches)} key(s))")
        total = 0
        for sink_key in list(self._batches):
            batch = self._batches[sink_key]
            await batch.idle.wait()
            self._cancel_timer(batch)
            total += await self.flush(sink_key, trigger="drain")
        logger.info(f"All batches flushed ({total} ops)")
        return total

    async def close(self) -> None:
        """Drain every batch and cancel leftover timers."""
        await self.flush_all_batches()
        for batch in self._batches.values():
            self._cancel_timer(batch)
