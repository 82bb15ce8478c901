"""
Custom exceptions for call-sync.

Provides structured error handling so the write path and the retry queue can
branch on throttled vs. other sink failures.
"""

from __future__ import annotations

from typing import Optional

THROTTLE_STATUS_CODES = {429}
THROTTLE_MARKERS = ("rate limit", "ratelimitexceeded", "rate_limit_exceeded", "quota exceeded")


class CallSyncError(Exception):
    """Base operational error for call-sync."""

    pass


class SinkError(CallSyncError):
    """Sink call failed for a reason other than throttling."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class SinkThrottledError(SinkError):
    """Sink rejected the request because the request rate was exceeded."""

    pass


class StatusProviderError(CallSyncError):
    """Status lookup for an external call id failed."""

    pass


class CallStoreError(CallSyncError):
    """A single CallStore read or write failed."""

    pass


class CallStoreUnavailable(CallStoreError):
    """CallStore is unreachable or its schema is missing."""

    pass


def is_throttle_message(text: str) -> bool:
    lowered = text.lower()
    return any(marker in lowered for marker in THROTTLE_MARKERS)


def classify_sink_error(e: Exception) -> SinkError:
    """Map an arbitrary sink failure onto SinkThrottledError / SinkError."""
    if isinstance(e, SinkError):
        return e
    status = getattr(getattr(e, "response", None), "status_code", None)
    if status in THROTTLE_STATUS_CODES or is_throttle_message(str(e)):
        return SinkThrottledError(str(e), status_code=status)
    return SinkError(str(e), status_code=status)


def map_db_error(e: Exception) -> CallStoreError:
    import psycopg
    import psycopg.errors as E

    if isinstance(e, (E.UndefinedTable, E.UndefinedColumn, psycopg.OperationalError)):
        return CallStoreUnavailable(str(e))
    return CallStoreError(str(e))
