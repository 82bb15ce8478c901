"""
Component wiring from SyncSettings.

One RateLimiter is shared by the BatchSink, the RetryQueue and the poller.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Optional

from loguru import logger

from .config import SyncSettings
from .coordinator import (
    BatchSink,
    CallStore,
    DeadLetterQueue,
    RateLimiter,
    RetryQueue,
    SinkClient,
    StatusProvider,
)
from .providers import HttpStatusProvider
from .reconcile import ReconciliationPoller
from .sinks import MemorySinkClient, SheetsSinkClient
from .store import PgCallStore
from .writer import CallLogWriter

LOCAL_SINK_KEY = "local"


@dataclass
class SyncRuntime:
    limiter: RateLimiter
    client: SinkClient
    retry_queue: RetryQueue
    sink: BatchSink
    writer: CallLogWriter
    store: Optional[CallStore] = None
    provider: Optional[StatusProvider] = None
    poller: Optional[ReconciliationPoller] = None
    dlq: Optional[DeadLetterQueue] = None

    async def aclose(self) -> None:
        """Drain buffered writes and the retry backlog, then release clients."""
        await self.sink.close()
        await self.retry_queue.drain()
        for res in (self.client, self.provider, self.store):
            aclose = getattr(res, "aclose", None)
            if aclose is not None:
                await aclose()


def build_runtime(
    settings: SyncSettings,
    *,
    client: Optional[SinkClient] = None,
    store: Optional[CallStore] = None,
    provider: Optional[StatusProvider] = None,
) -> SyncRuntime:
    if client is None:
        if settings.SHEETS_TOKEN and settings.SHEET_ID:
            client = SheetsSinkClient(settings.SHEETS_TOKEN)
        else:
            logger.warning("No sheet credentials configured; writing to an in-memory sink")
            client = MemorySinkClient()
    if store is None and settings.DATABASE_URL:
        store = PgCallStore({"dsn": settings.DATABASE_URL})
    if provider is None and settings.STATUS_API_KEY:
        provider = HttpStatusProvider(settings.STATUS_API_URL, settings.STATUS_API_KEY)

    limiter = RateLimiter(settings.CAPACITY, settings.REFILL_PER_SECOND)
    dlq = DeadLetterQueue(settings.DLQ_PATH) if settings.DLQ_PATH else None
    retry_queue = RetryQueue(client, limiter, settings.retry_config(), dlq=dlq)
    sink = BatchSink(client, limiter, retry_queue, settings.batch_config())
    writer = CallLogWriter(sink, settings.SHEET_ID or LOCAL_SINK_KEY, settings.SHEET_SECTION)

    poller = None
    if provider is not None:
        poller = ReconciliationPoller(store, provider, writer, limiter, settings.poll_config())

    return SyncRuntime(
        limiter=limiter,
        client=client,
        retry_queue=retry_queue,
        sink=sink,
        writer=writer,
        store=store,
        provider=provider,
        poller=poller,
        dlq=dlq,
    )
