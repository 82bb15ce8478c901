"""
Reconciliation poller.

Pulls call records whose update status is Pending/Error/blank from the
CallStore, asks the StatusProvider for their real status, writes the result
back to the store and emits batchable row updates into the BatchSink.

When the CallStore is unreachable (or its schema is missing) the cycle falls
back to the sink itself: the last few call-log rows are re-read and the ones
still pending are refreshed, with updates going to the sink only.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Sequence, Tuple

from loguru import logger

from .. import layout
from ..coordinator.rate_limiter import RateLimiter
from ..coordinator.types import CallStore, SleepFn, StatusProvider
from ..errors import CallStoreError, CallStoreUnavailable, SinkError, StatusProviderError
from ..metrics.registry import POLL_CYCLES_TOTAL, POLL_RECORDS_TOTAL
from ..models import CallRecord, CallStatus, UpdateStatus
from ..utils import chunked
from ..writer import CallLogWriter


class PollerState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    PROCESSING = "per_batch_processing"


@dataclass(frozen=True)
class PollConfig:
    page_size: int = 100
    sub_batch_size: int = 5
    inter_batch_delay_ms: int = 2000
    token_floor: float = 10  # wait for this many tokens before a cycle starts
    read_cost: float = 5  # tokens charged for the cycle's bulk read
    fallback_rows: int = 5  # trailing call-log rows re-checked without a store


@dataclass(frozen=True)
class SheetRow:
    """A call-log row picked up by the fallback path."""

    sheet_row: int
    call_id: str
    status: str


class ReconciliationPoller:
    """
    Periodic status reconciliation between a CallStore and the sink.

    Usage:
        poller = ReconciliationPoller(store, provider, writer, limiter)
        changed = await poller.poll_call_updates()
        # or
        await poller.run_forever(interval=300)

    ``poll_call_updates`` returns the number of records whose status changed.
    Without a store (``store=None``) every cycle takes the sink fallback path.
    """

    def __init__(
        self,
        store: Optional[CallStore],
        provider: StatusProvider,
        writer: CallLogWriter,
        limiter: RateLimiter,
        config: Optional[PollConfig] = None,
        *,
        sleep: SleepFn = asyncio.sleep,
    ):
        self._store = store
        self._provider = provider
        self._writer = writer
        self._limiter = limiter
        self._cfg = config or PollConfig()
        self._sleep = sleep

        self._state = PollerState.IDLE
        self._cycle: Optional[asyncio.Task] = None
        self._stopped = asyncio.Event()

    @property
    def state(self) -> PollerState:
        return self._state

    # --------------------------- one cycle

    async def poll_call_updates(self) -> int:
        await self._wait_for_capacity()
        self._state = PollerState.FETCHING
        try:
            await self._limiter.acquire(self._cfg.read_cost)
            if self._store is None:
                logger.info("No CallStore configured; reconciling from sink rows")
                return await self._poll_fallback()
            try:
                records = await self._store.find_needing_refresh(self._cfg.page_size)
            except CallStoreUnavailable as exc:
                logger.warning(f"CallStore unavailable ({exc}); reconciling from sink rows instead")
                return await self._poll_fallback()

            POLL_CYCLES_TOTAL.labels(path="store").inc()
            logger.info(f"Found {len(records)} call(s) needing a status refresh")
            if not records:
                return 0

            rows = await self._locate_rows(records)
            self._state = PollerState.PROCESSING
            changed = await self._run_sub_batches(
                records, lambda r: self._refresh_record(r, rows.get(r.id)), path="store"
            )
            await self._writer.sink.flush_all_batches()

            stats = self._limiter.stats()
            logger.info(
                f"Reconciliation finished: {changed}/{len(records)} changed "
                f"(tokens: {stats.available_tokens:.2f}, usage: {stats.usage_percent:.1f}%)"
            )
            return changed
        finally:
            self._state = PollerState.IDLE

    async def _wait_for_capacity(self) -> None:
        tokens = self._limiter.available_tokens()
        floor = self._cfg.token_floor
        if tokens < floor:
            wait = (floor - tokens) / self._limiter.refill_per_second
            logger.info(f"Waiting {wait:.2f}s for rate limit tokens ({tokens:.2f}/{floor})")
            await self._sleep(wait)

    async def _run_sub_batches(
        self,
        items: Sequence[Any],
        refresh: Callable[[Any], Awaitable[bool]],
        *,
        path: str,
    ) -> int:
        changed = 0
        delay = self._cfg.inter_batch_delay_ms / 1000
        for i, batch in enumerate(chunked(items, self._cfg.sub_batch_size)):
            if i and delay:
                await self._sleep(delay)
            logger.debug(f"Processing sub-batch {i + 1} ({len(batch)} record(s), path={path})")
            results = await asyncio.gather(
                *(refresh(item) for item in batch), return_exceptions=True
            )
            for item, res in zip(batch, results):
                if isinstance(res, BaseException):
                    POLL_RECORDS_TOTAL.labels(path=path, outcome="failed").inc()
                    logger.error(
                        f"Unexpected error reconciling {item}: {type(res).__name__}: {res}"
                    )
                elif res:
                    changed += 1
        return changed

    # --------------------------- store path

    async def _locate_rows(self, records: List[CallRecord]) -> Dict[str, int]:
        """Map call id -> sheet row, with at most one section read per cycle."""
        rows = {r.id: r.sink_row for r in records if r.sink_row}
        if all(r.sink_row for r in records):
            return rows
        try:
            section = await self._writer.read_section(cost=0)
        except SinkError as exc:
            logger.warning(f"Row lookup failed, sink updates skipped for unplaced calls: {exc}")
            return rows
        for offset, row in enumerate(section[1:]):
            call_id = layout.cell(row, layout.CALL_ID)
            if call_id:
                rows.setdefault(call_id, layout.FIRST_DATA_ROW + offset)
        return rows

    async def _refresh_record(self, record: CallRecord, sheet_row: Optional[int]) -> bool:
        try:
            result = await self._provider.get_status(record.id)
        except StatusProviderError as exc:
            POLL_RECORDS_TOTAL.labels(path="store", outcome="error").inc()
            logger.warning(f"Status lookup failed for call {record.id}: {exc}")
            await self._update_store(
                record.id,
                {"update_status": UpdateStatus.ERROR.value, "error_message": str(exc)},
            )
            if sheet_row:
                await self._writer.mark_error(sheet_row, str(exc))
            return False

        changed = record.differs_from(result)
        fields: Dict[str, Any] = {
            "status": result.status,
            "duration_seconds": result.duration_seconds,
            "update_status": UpdateStatus.UPDATED.value,
            "error_message": result.error_message,
        }
        if result.transcript is not None:
            fields["transcript"] = result.transcript
        if result.recording_url is not None:
            fields["recording_url"] = result.recording_url
        if sheet_row and record.sink_row != sheet_row:
            fields["sink_row"] = sheet_row
        await self._update_store(record.id, fields)

        if sheet_row:
            await self._writer.update_call(sheet_row, result)
        else:
            logger.debug(f"Call {record.id} has no sink row; store updated only")
        POLL_RECORDS_TOTAL.labels(path="store", outcome="updated" if changed else "unchanged").inc()
        return changed

    async def _update_store(self, call_id: str, fields: Dict[str, Any]) -> None:
        try:
            await self._store.update(call_id, fields)
        except CallStoreError as exc:
            logger.error(f"CallStore update failed for call {call_id}: {exc}")

    # --------------------------- fallback path

    async def _poll_fallback(self) -> int:
        POLL_CYCLES_TOTAL.labels(path="fallback").inc()
        try:
            section = await self._writer.read_section(cost=0)
        except SinkError as exc:
            logger.error(f"Fallback reconciliation could not read the call log: {exc}")
            return 0

        candidates = self._fallback_candidates(section)
        logger.info(
            f"Fallback reconciliation: {len(candidates)} pending row(s) "
            f"in the last {self._cfg.fallback_rows}"
        )
        if not candidates:
            return 0

        self._state = PollerState.PROCESSING
        changed = await self._run_sub_batches(candidates, self._refresh_row, path="fallback")
        await self._writer.sink.flush_all_batches()
        logger.info(f"Fallback reconciliation finished: {changed}/{len(candidates)} changed")
        return changed

    def _fallback_candidates(self, section: List[List[str]]) -> List[SheetRow]:
        data = section[1:]
        start = max(0, len(data) - self._cfg.fallback_rows)
        out: List[SheetRow] = []
        for offset in range(start, len(data)):
            row = data[offset]
            if not UpdateStatus.needs_refresh(layout.cell(row, layout.UPDATE_STATUS)):
                continue
            call_id = layout.cell(row, layout.CALL_ID)
            if not call_id or call_id == "N/A":
                continue
            status = layout.cell(row, layout.STATUS)
            out.append(SheetRow(layout.FIRST_DATA_ROW + offset, call_id, status))
        return out

    async def _refresh_row(self, row: SheetRow) -> bool:
        try:
            result: CallStatus = await self._provider.get_status(row.call_id)
        except StatusProviderError as exc:
            POLL_RECORDS_TOTAL.labels(path="fallback", outcome="error").inc()
            logger.warning(
                f"Status lookup failed for call {row.call_id} (row {row.sheet_row}): {exc}"
            )
            await self._writer.mark_error(row.sheet_row, str(exc))
            return False

        await self._writer.update_call(row.sheet_row, result)
        changed = result.status != row.status.strip().lower()
        outcome = "updated" if changed else "unchanged"
        POLL_RECORDS_TOTAL.labels(path="fallback", outcome=outcome).inc()
        return changed

    # --------------------------- scheduling

    async def run_forever(self, interval: float) -> None:
        """Start a cycle every ``interval`` seconds until ``stop()``.

        A tick that finds the previous cycle still running is skipped.
        """
        self._stopped.clear()
        logger.info(f"Reconciliation poller started (interval={interval}s)")
        try:
            while not self._stopped.is_set():
                if self._cycle is not None and not self._cycle.done():
                    logger.warning("Previous reconciliation cycle still running; skipping tick")
                else:
                    self._cycle = asyncio.get_running_loop().create_task(self._guarded_cycle())
                try:
                    await asyncio.wait_for(self._stopped.wait(), timeout=interval)
                except asyncio.TimeoutError:
                    pass
        finally:
            if self._cycle is not None and not self._cycle.done():
                await self._cycle
            logger.info("Reconciliation poller stopped")

    def stop(self) -> None:
        self._stopped.set()

    async def _guarded_cycle(self) -> Tuple[bool, int]:
        try:
            return True, await self.poll_call_updates()
        except Exception as exc:
            logger.error(f"Reconciliation cycle failed: {type(exc).__name__}: {exc}")
            return False, 0
