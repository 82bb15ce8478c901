"""Sync coordinator

Write path from application code to the rate-limited sink:
- RateLimiter (lazy-refill token bucket shared by every sink caller)
- BatchSink (per-key buffering with size/time flushing and coalescing)
- RetryQueue (throttled calls replayed when capacity returns)
- Dead Letter Queue (file-based NDJSON) for terminal drops
- FeedbackBus for retry backlog backpressure
"""

from .types import (
    AppendOp,
    UpdateOp,
    UpdateTarget,
    Operation,
    OperationKind,
    RetryItem,
    SinkClient,
    StatusProvider,
    CallStore,
)
from .rate_limiter import RateLimiter, RateLimiterStats
from .retry_queue import RetryQueue, RetryConfig
from .batch_sink import BatchSink, BatchConfig
from .dlq import DeadLetterQueue, DLQRecord
from .feedback import BackpressureLevel, FeedbackBus, FeedbackEvent, feedback_bus

__all__ = [
    # types
    "AppendOp",
    "UpdateOp",
    "UpdateTarget",
    "Operation",
    "OperationKind",
    "RetryItem",
    "SinkClient",
    "StatusProvider",
    "CallStore",
    # runtime
    "RateLimiter",
    "RateLimiterStats",
    "RetryQueue",
    "RetryConfig",
    "BatchSink",
    "BatchConfig",
    # tooling
    "DeadLetterQueue",
    "DLQRecord",
    "BackpressureLevel",
    "FeedbackBus",
    "FeedbackEvent",
    "feedback_bus",
]
