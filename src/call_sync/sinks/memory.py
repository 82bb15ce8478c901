from __future__ import annotations

from dataclasses import dataclass, field
from typing import Dict, List, Optional, Sequence, Tuple

from loguru import logger

from ..coordinator.types import Row, UpdateTarget
from ..errors import SinkError, SinkThrottledError
from ..utils import parse_a1


@dataclass
class SinkCall:
    method: str  # "append" | "update" | "read"
    sink_key: str
    section: str
    range: Optional[str] = None
    rows: List[Row] = field(default_factory=list)


class MemorySinkClient:
    """
    In-memory SinkClient: one list of rows per (sink key, section).

    Useful for dry runs and tests. ``throttle_next`` / ``fail_next`` make the
    next N write calls raise SinkThrottledError / SinkError; every accepted or
    rejected write is recorded in ``calls``.
    """

    def __init__(self, *, throttle_next: int = 0, fail_next: int = 0):
        self.sections: Dict[Tuple[str, str], List[Row]] = {}
        self.calls: List[SinkCall] = []
        self.throttle_next = throttle_next
        self.fail_next = fail_next

    def _check_faults(self) -> None:
        if self.throttle_next > 0:
            self.throttle_next -= 1
            raise SinkThrottledError("Rate limit exceeded", status_code=429)
        if self.fail_next > 0:
            self.fail_next -= 1
            raise SinkError("Internal error encountered.", status_code=500)

    def rows(self, sink_key: str, section: str) -> List[Row]:
        return self.sections.setdefault((sink_key, section), [])

    def writes(self) -> List[SinkCall]:
        return [c for c in self.calls if c.method != "read"]

    async def append_rows(self, sink_key: str, section: str, rows: Sequence[Row]) -> None:
        self.calls.append(SinkCall("append", sink_key, section, rows=[list(r) for r in rows]))
        self._check_faults()
        self.rows(sink_key, section).extend(list(r) for r in rows)
        logger.debug(f"memory sink: appended {len(rows)} row(s) to {sink_key}/{section}")

    async def update_range(self, sink_key: str, target: UpdateTarget, rows: Sequence[Row]) -> None:
        self.calls.append(
            SinkCall("update", sink_key, target.section, target.range, [list(r) for r in rows])
        )
        self._check_faults()
        col, first_row = parse_a1(target.range)
        table = self.rows(sink_key, target.section)
        for i, values in enumerate(rows):
            idx = first_row - 1 + i
            while len(table) <= idx:
                table.append([])
            row = table[idx]
            if len(row) < col + len(values):
                row.extend([""] * (col + len(values) - len(row)))
            row[col : col + len(values)] = list(values)

    async def read_rows(self, sink_key: str, section: str) -> List[Row]:
        self.calls.append(SinkCall("read", sink_key, section))
        return [list(r) for r in self.rows(sink_key, section)]
