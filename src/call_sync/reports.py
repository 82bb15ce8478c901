"""Call summary reports over the call-log section."""

from __future__ import annotations

from collections import Counter
from datetime import datetime
from typing import List, Optional, Sequence

from loguru import logger

from . import layout
from .models import CallReport
from .utils import parse_datetime, to_float
from .writer import CallLogWriter


def _row_time(row: Sequence[str]) -> Optional[datetime]:
    raw = layout.cell(row, layout.TIMESTAMP)
    if not raw:
        return None
    try:
        return parse_datetime(raw)
    except ValueError:
        return None


def generate_call_report(
    rows: List[List[str]],
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> CallReport:
    """
    Summarize call-log rows (header first) between ``start`` and ``end``
    inclusive, optionally for one user.

    Rows whose timestamp cannot be parsed are left out once a date bound is
    given.
    """
    start = parse_datetime(start) if start else None
    end = parse_datetime(end) if end else None

    selected = []
    for row in rows[1:]:
        if user_id and layout.cell(row, layout.USER_ID) != user_id:
            continue
        if start or end:
            ts = _row_time(row)
            if ts is None or (start and ts < start) or (end and ts > end):
                continue
        selected.append(row)

    by_status = Counter(layout.cell(row, layout.STATUS) or "unknown" for row in selected)
    seconds = sum(to_float(layout.cell(row, layout.DURATION)) for row in selected)
    return CallReport(
        total_calls=len(selected),
        total_minutes=round(seconds / 60, 2),
        calls_by_status=dict(by_status),
        start=start,
        end=end,
        user_id=user_id,
    )


async def build_report(
    writer: CallLogWriter,
    start: Optional[datetime] = None,
    end: Optional[datetime] = None,
    user_id: Optional[str] = None,
) -> CallReport:
    rows = await writer.read_section()
    report = generate_call_report(rows, start, end, user_id)
    logger.info(f"Call report: {report.total_calls} call(s), {report.total_minutes} min")
    return report
