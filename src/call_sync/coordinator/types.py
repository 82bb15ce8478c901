"""
Shared types for the sync coordinator: operations, retry items and the
collaborator protocols the core talks to.
"""

from __future__ import annotations

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Awaitable, Callable, List, Protocol, Sequence, Tuple, Union

from ..models import CallRecord, CallStatus

Row = List[str]


class OperationKind(str, Enum):
    APPEND = "append"
    UPDATE = "update"


@dataclass(frozen=True)
class UpdateTarget:
    """Addressable location of an update: section (tab), A1 range, row offset."""

    section: str
    range: str
    row_index: int = 0

    @property
    def range_key(self) -> Tuple[str, str]:
        return (self.section, self.range)


@dataclass(frozen=True)
class AppendOp:
    sink_key: str
    section: str
    rows: Tuple[Row, ...]
    batchable: bool = True
    enqueued_at: float = field(default_factory=time.monotonic)

    kind = OperationKind.APPEND


@dataclass(frozen=True)
class UpdateOp:
    sink_key: str
    target: UpdateTarget
    values: Row
    batchable: bool = True
    enqueued_at: float = field(default_factory=time.monotonic)

    kind = OperationKind.UPDATE


Operation = Union[AppendOp, UpdateOp]


@dataclass
class RetryItem:
    """One failed sink call awaiting replay.

    ``data`` holds the original operations of the failed call; they share a
    sink key and a kind.
    """

    operation_kind: OperationKind
    data: Tuple[Operation, ...]
    retry_count: int = 0
    enqueued_at: float = field(default_factory=time.monotonic)

    @property
    def sink_key(self) -> str:
        return self.data[0].sink_key

    @classmethod
    def of(cls, ops: Sequence[Operation]) -> "RetryItem":
        if not ops:
            raise ValueError("RetryItem needs at least one operation")
        return cls(operation_kind=ops[0].kind, data=tuple(ops))


class SinkClient(Protocol):
    """Tabular sink with append and range-update calls.

    Implementations raise SinkThrottledError when rate limited and SinkError
    for anything else.
    """

    async def append_rows(self, sink_key: str, section: str, rows: Sequence[Row]) -> None: ...

    async def update_range(
        self, sink_key: str, target: UpdateTarget, rows: Sequence[Row]
    ) -> None: ...

    async def read_rows(self, sink_key: str, section: str) -> List[Row]: ...


class StatusProvider(Protocol):
    async def get_status(self, external_id: str) -> CallStatus: ...


class CallStore(Protocol):
    async def find_needing_refresh(self, limit: int) -> List[CallRecord]: ...

    async def update(self, id: str, fields: dict) -> None: ...


DropCallback = Callable[[RetryItem, str], Awaitable[None]]
SleepFn = Callable[[float], Awaitable[None]]
ClockFn = Callable[[], float]
