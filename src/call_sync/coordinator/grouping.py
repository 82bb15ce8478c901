"""
Flush planning: turns a snapshot of buffered operations into sink calls.

Updates run before appends. Updates are grouped per (section, range) and
coalesced per row index, last write wins; update groups are sent in order of
their latest write. Appends are grouped per section with rows concatenated
in enqueue order.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Dict, List, Sequence, Tuple

from .types import AppendOp, Operation, OperationKind, Row, UpdateOp, UpdateTarget


@dataclass
class UpdateGroup:
    target: UpdateTarget
    rows: List[Row]
    ops: List[UpdateOp]


@dataclass
class AppendGroup:
    section: str
    rows: List[Row]
    ops: List[AppendOp]


def sort_operations(ops: Sequence[Operation]) -> List[Operation]:
    """All updates before all appends; ascending ``enqueued_at`` within a kind.

    ``sorted`` is stable, so equal timestamps keep their arrival order.
    """
    return sorted(
        ops, key=lambda op: (0 if op.kind is OperationKind.UPDATE else 1, op.enqueued_at)
    )


def group_updates(ops: Sequence[UpdateOp]) -> List[UpdateGroup]:
    """Groups come out in order of their latest write.

    Overlapping ranges on one row (a status block and an error block) then
    resolve in write order. ``ops`` must already be sorted.
    """
    by_range: Dict[Tuple[str, str], Dict[int, UpdateOp]] = {}
    contributors: Dict[Tuple[str, str], List[UpdateOp]] = {}
    last_write: Dict[Tuple[str, str], int] = {}
    for pos, op in enumerate(ops):
        key = op.target.range_key
        by_range.setdefault(key, {})[op.target.row_index] = op
        contributors.setdefault(key, []).append(op)
        last_write[key] = pos

    groups = []
    for key in sorted(by_range, key=last_write.__getitem__):
        rows_by_index = by_range[key]
        ordered = [rows_by_index[i] for i in sorted(rows_by_index)]
        if not ordered:
            continue
        section, rng = key
        groups.append(
            UpdateGroup(
                target=UpdateTarget(section, rng, ordered[0].target.row_index),
                rows=[list(op.values) for op in ordered],
                ops=contributors[key],
            )
        )
    return groups


def group_appends(ops: Sequence[AppendOp]) -> List[AppendGroup]:
    by_section: Dict[str, AppendGroup] = {}
    for op in ops:
        group = by_section.get(op.section)
        if group is None:
            group = by_section[op.section] = AppendGroup(section=op.section, rows=[], ops=[])
        group.rows.extend(list(r) for r in op.rows)
        group.ops.append(op)
    return [g for g in by_section.values() if g.rows]


def plan_flush(ops: Sequence[Operation]) -> Tuple[List[UpdateGroup], List[AppendGroup]]:
    ordered = sort_operations(ops)
    updates = [op for op in ordered if isinstance(op, UpdateOp)]
    appends = [op for op in ordered if isinstance(op, AppendOp)]
    return group_updates(updates), group_appends(appends)
