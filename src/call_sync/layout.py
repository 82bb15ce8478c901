"""
Column layout of the call-log section in the sink.

Row 1 is the header; data rows start at sheet row 2. Reconciliation rewrites
the STATUS..LAST_UPDATED block of a row in one range update.
"""

from __future__ import annotations

from typing import List, Sequence

from .models import CallLogEntry, CallStatus, UpdateStatus
from .utils import column_letter, utc_now

HEADER = [
    "Timestamp",
    "User ID",
    "Call ID",
    "Phone Number",
    "Call Status",
    "Duration (s)",
    "Error Message",
    "Recording URL",
    "Transcript",
    "Update Status",
    "Last Updated",
]

TIMESTAMP = 0
USER_ID = 1
CALL_ID = 2
PHONE_NUMBER = 3
STATUS = 4
DURATION = 5
ERROR_MESSAGE = 6
RECORDING_URL = 7
TRANSCRIPT = 8
UPDATE_STATUS = 9
LAST_UPDATED = 10

FIRST_DATA_ROW = 2


def cell(row: Sequence[str], index: int) -> str:
    """Sheets omits trailing blank cells, so short rows are padded on read."""
    return row[index] if index < len(row) and row[index] is not None else ""


def entry_row(entry: CallLogEntry) -> List[str]:
    ts = (entry.created_at or utc_now()).isoformat()
    return [
        ts,
        entry.user_id or "N/A",
        entry.call_id,
        entry.phone_number or "N/A",
        entry.status,
        "0",
        "",
        "",
        "",
        UpdateStatus.PENDING.value,
        ts,
    ]


def status_range(sheet_row: int) -> str:
    """A1 range covering the reconciled block of one row, e.g. ``E5:K5``."""
    return f"{column_letter(STATUS)}{sheet_row}:{column_letter(LAST_UPDATED)}{sheet_row}"


def status_values(result: CallStatus) -> List[str]:
    duration = "" if result.duration_seconds is None else f"{result.duration_seconds:g}"
    return [
        result.status,
        duration,
        result.error_message or "",
        result.recording_url or "",
        result.transcript or "",
        UpdateStatus.UPDATED.value,
        utc_now().isoformat(),
    ]


def error_range(sheet_row: int) -> str:
    """Range written when a status lookup fails; status and duration are kept."""
    return f"{column_letter(ERROR_MESSAGE)}{sheet_row}:{column_letter(LAST_UPDATED)}{sheet_row}"


def error_values(message: str) -> List[str]:
    return [message, "", "", UpdateStatus.ERROR.value, utc_now().isoformat()]
