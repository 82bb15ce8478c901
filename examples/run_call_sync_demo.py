"""
Demo script for the call-sync write path and reconciliation.

Logs a burst of calls into an in-memory sink that throttles now and then,
lets the retry queue recover, then reconciles statuses without a call store
and prints a report.
"""

import asyncio
import random

from loguru import logger

from call_sync import layout
from call_sync.coordinator import (
    BatchConfig,
    BatchSink,
    FeedbackBus,
    RateLimiter,
    RetryConfig,
    RetryQueue,
)
from call_sync.models import CallLogEntry, CallStatus
from call_sync.reconcile import PollConfig, ReconciliationPoller
from call_sync.reports import build_report
from call_sync.sinks import MemorySinkClient
from call_sync.writer import CallLogWriter

KEY = "demo-sheet"
SECTION = "Call Logs"


class RandomStatusProvider:
    """Pretends every call finished a little while ago."""

    async def get_status(self, external_id: str) -> CallStatus:
        await asyncio.sleep(0.01)
        status = random.choice(["completed", "completed", "no-answer", "failed"])
        return CallStatus(status=status, duration_seconds=round(random.uniform(5, 300), 1))


async def on_feedback(event):
    logger.warning(f"⚠️  Retry backlog {event.level.value}: {event.queue_size} item(s)")


async def main():
    client = MemorySinkClient(throttle_next=2)
    client.rows(KEY, SECTION).append(list(layout.HEADER))

    limiter = RateLimiter(capacity=20, refill_per_second=10)
    bus = FeedbackBus()
    bus.subscribe(on_feedback)
    retry_cfg = RetryConfig(item_delay_ms=100, backoff_base_ms=200, high_water_mark=2)
    retry_queue = RetryQueue(client, limiter, retry_cfg, bus=bus)
    sink = BatchSink(client, limiter, retry_queue, BatchConfig(batch_size=10, batch_timeout_ms=200))
    writer = CallLogWriter(sink, KEY, SECTION)

    logger.info("🚀 Logging 25 calls")
    for i in range(25):
        await writer.log_call(CallLogEntry(call_id=f"call-{i:03d}", user_id=f"user-{i % 3}"))

    await sink.flush_all_batches()
    await retry_queue.drain(timeout=10)
    logger.info(f"Sink holds {len(client.rows(KEY, SECTION)) - 1} call row(s)")

    poller = ReconciliationPoller(
        None,
        RandomStatusProvider(),
        writer,
        limiter,
        PollConfig(sub_batch_size=5, inter_batch_delay_ms=100, fallback_rows=25),
    )
    changed = await poller.poll_call_updates()
    await retry_queue.drain(timeout=10)
    logger.info(f"Reconciled {changed} call(s); limiter {limiter.stats()}")

    report = await build_report(writer)
    logger.info(f"📊 {report.model_dump_json()}")

    await sink.close()
    await retry_queue.close()
    logger.info("✅ Demo complete")


if __name__ == "__main__":
    asyncio.run(main())
