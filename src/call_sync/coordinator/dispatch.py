from __future__ import annotations

import time
from typing import List, Sequence, Union

from ..errors import SinkThrottledError, classify_sink_error
from ..metrics.registry import SINK_WRITE_LATENCY, SINK_WRITES_TOTAL
from .grouping import AppendGroup, UpdateGroup, plan_flush
from .types import Operation, SinkClient

Group = Union[UpdateGroup, AppendGroup]


async def send_group(client: SinkClient, sink_key: str, group: Group) -> None:
    """Issue one sink call for ``group``.

    Raises SinkThrottledError or SinkError; anything else the client raises is
    classified into one of the two.
    """
    kind = "update" if isinstance(group, UpdateGroup) else "append"
    t0 = time.perf_counter()
    try:
        if isinstance(group, UpdateGroup):
            await client.update_range(sink_key, group.target, group.rows)
        else:
            await client.append_rows(sink_key, group.section, group.rows)
    except Exception as exc:
        err = classify_sink_error(exc)
        status = "throttled" if isinstance(err, SinkThrottledError) else "failure"
        SINK_WRITES_TOTAL.labels(kind=kind, status=status).inc()
        if err is exc:
            raise
        raise err from exc
    finally:
        SINK_WRITE_LATENCY.labels(kind=kind).observe(time.perf_counter() - t0)
    SINK_WRITES_TOTAL.labels(kind=kind, status="success").inc()


def groups_for(ops: Sequence[Operation]) -> List[Group]:
    """Plan ``ops`` into sink calls, updates first."""
    updates, appends = plan_flush(ops)
    return [*updates, *appends]
