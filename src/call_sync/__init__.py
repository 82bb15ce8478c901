"""
Call Sync

Rate-limited synchronization of call logs into a spreadsheet-style sink, with
status reconciliation against the call-status API.

Usage:
    from call_sync import build_runtime, get_settings, CallLogEntry

    runtime = build_runtime(get_settings())
    await runtime.writer.log_call(CallLogEntry(call_id="abc", user_id="u1"))
    changed = await runtime.poller.poll_call_updates()
    await runtime.aclose()
"""

from .config import SyncSettings, get_settings
from .coordinator import BatchSink, RateLimiter, RetryQueue
from .models import CallLogEntry, CallRecord, CallReport, CallStatus, UpdateStatus
from .reconcile import PollConfig, ReconciliationPoller
from .runtime import SyncRuntime, build_runtime
from .writer import CallLogWriter, WriteResult

__version__ = "0.1.0"
__all__ = [
    "SyncSettings",
    "get_settings",
    "RateLimiter",
    "BatchSink",
    "RetryQueue",
    "ReconciliationPoller",
    "PollConfig",
    "CallLogWriter",
    "WriteResult",
    "CallLogEntry",
    "CallRecord",
    "CallReport",
    "CallStatus",
    "UpdateStatus",
    "SyncRuntime",
    "build_runtime",
]
