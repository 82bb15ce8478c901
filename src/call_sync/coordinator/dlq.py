"""
File-based dead letter store (NDJSON) for retry items dropped for good.

One JSON object per line. ``replay`` reads records back, oldest first, and
``DLQRecord.to_retry_item`` rebuilds a RetryItem so an operator can requeue.
"""

from __future__ import annotations

import asyncio
import json
import time
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, List

from loguru import logger

from .types import AppendOp, Operation, OperationKind, RetryItem, UpdateOp, UpdateTarget


def _op_to_dict(op: Operation) -> Dict[str, Any]:
    d = asdict(op)
    d["kind"] = op.kind.value
    return d


def _op_from_dict(d: Dict[str, Any]) -> Operation:
    if d["kind"] == OperationKind.UPDATE.value:
        return UpdateOp(
            sink_key=d["sink_key"],
            target=UpdateTarget(**d["target"]),
            values=list(d["values"]),
            batchable=d.get("batchable", True),
        )
    return AppendOp(
        sink_key=d["sink_key"],
        section=d["section"],
        rows=tuple(list(r) for r in d["rows"]),
        batchable=d.get("batchable", True),
    )


@dataclass
class DLQRecord:
    sink_key: str
    operation_kind: str
    retry_count: int
    reason: str
    operations: List[Dict[str, Any]]
    ts: float = field(default_factory=time.time)

    def to_retry_item(self) -> RetryItem:
        """Fresh RetryItem (retry_count reset) carrying the same operations."""
        return RetryItem.of([_op_from_dict(d) for d in self.operations])


class DeadLetterQueue:
    def __init__(self, path: str | Path, *, mkdirs: bool = True):
        self.path = Path(path)
        if mkdirs:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        self._lock = asyncio.Lock()

    async def save(self, item: RetryItem, reason: str) -> None:
        rec = DLQRecord(
            sink_key=item.sink_key,
            operation_kind=item.operation_kind.value,
            retry_count=item.retry_count,
            reason=reason,
            operations=[_op_to_dict(op) for op in item.data],
        )
        line = json.dumps(asdict(rec), default=str) + "\n"
        async with self._lock:
            await asyncio.to_thread(self._append, line)
        logger.debug(f"DLQ saved {len(item.data)} op(s) for {item.sink_key} ({reason})")

    def _append(self, line: str) -> None:
        with self.path.open("a", encoding="utf-8") as f:
            f.write(line)

    async def replay(self, max_records: int = 100) -> List[DLQRecord]:
        if not self.path.exists():
            return []
        text = await asyncio.to_thread(self.path.read_text, "utf-8")
        out: List[DLQRecord] = []
        for line in text.splitlines():
            if len(out) >= max_records:
                break
            if not line.strip():
                continue
            try:
                out.append(DLQRecord(**json.loads(line)))
            except (ValueError, TypeError) as exc:
                logger.warning(f"Skipping malformed DLQ line: {exc}")
        return out
