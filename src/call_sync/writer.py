from __future__ import annotations

from dataclasses import dataclass
from typing import List

from loguru import logger

from . import layout
from .coordinator import AppendOp, BatchSink, Operation, UpdateOp, UpdateTarget
from .models import CallLogEntry, CallStatus


@dataclass(frozen=True)
class WriteResult:
    batched: bool = False
    written: bool = False

    @property
    def accepted(self) -> bool:
        """Buffered or written; a throttled direct write is neither."""
        return self.batched or self.written


class CallLogWriter:
    """Write path for the call-log section of one sink key.

    Offers each operation to the BatchSink and writes directly when the sink
    declines to buffer it. Never raises.
    """

    def __init__(self, sink: BatchSink, sink_key: str, section: str):
        self._sink = sink
        self.sink_key = sink_key
        self.section = section

    @property
    def sink(self) -> BatchSink:
        return self._sink

    async def _submit(self, op: Operation) -> WriteResult:
        if await self._sink.add_to_batch(op):
            return WriteResult(batched=True)
        return WriteResult(written=await self._sink.write_direct(op))

    async def log_call(self, entry: CallLogEntry, *, batchable: bool = True) -> WriteResult:
        """Append a new call row with update status Pending."""
        op = AppendOp(
            sink_key=self.sink_key,
            section=self.section,
            rows=(layout.entry_row(entry),),
            batchable=batchable,
        )
        result = await self._submit(op)
        logger.debug(f"Logged call {entry.call_id} (batched={result.batched})")
        return result

    def status_update(
        self, sheet_row: int, result: CallStatus, *, batchable: bool = True
    ) -> UpdateOp:
        return UpdateOp(
            sink_key=self.sink_key,
            target=UpdateTarget(self.section, layout.status_range(sheet_row)),
            values=layout.status_values(result),
            batchable=batchable,
        )

    def error_update(self, sheet_row: int, message: str, *, batchable: bool = True) -> UpdateOp:
        return UpdateOp(
            sink_key=self.sink_key,
            target=UpdateTarget(self.section, layout.error_range(sheet_row)),
            values=layout.error_values(message),
            batchable=batchable,
        )

    async def update_call(
        self, sheet_row: int, result: CallStatus, *, batchable: bool = True
    ) -> WriteResult:
        """Overwrite the reconciled block of ``sheet_row`` with ``result``."""
        return await self._submit(self.status_update(sheet_row, result, batchable=batchable))

    async def mark_error(
        self, sheet_row: int, message: str, *, batchable: bool = True
    ) -> WriteResult:
        return await self._submit(self.error_update(sheet_row, message, batchable=batchable))

    async def read_section(self, *, cost: float = 1) -> List[List[str]]:
        """Full call-log section, header first. May raise SinkError."""
        return await self._sink.read_rows(self.sink_key, self.section, cost=cost)
