"""
Prometheus metrics for the sync core.
Imported by the components that record them; expose with
``prometheus_client.start_http_server`` at app startup.
"""

from prometheus_client import Counter, Gauge, Histogram


# --- Sink metrics ---

SINK_WRITES_TOTAL = Counter(
    "call_sync_sink_writes_total",
    "Total sink calls by kind and outcome",
    ["kind", "status"],
)

SINK_WRITE_LATENCY = Histogram(
    "call_sync_sink_write_latency_seconds",
    "Sink call latency in seconds",
    ["kind"],
    buckets=[0.01, 0.05, 0.1, 0.25, 0.5, 1, 2.5, 5, 10],
)

# --- Batch metrics ---

BATCH_FLUSHES_TOTAL = Counter(
    "call_sync_batch_flushes_total",
    "Batch flushes by trigger",
    ["trigger"],
)

BATCH_FLUSH_SIZE = Histogram(
    "call_sync_batch_flush_size",
    "Operations per flushed batch",
    buckets=[1, 2, 5, 10, 20, 50, 100],
)

# --- Retry metrics ---

RETRY_QUEUE_DEPTH = Gauge(
    "call_sync_retry_queue_depth",
    "Items waiting in the retry queue",
)

RETRY_ATTEMPTS_TOTAL = Counter(
    "call_sync_retry_attempts_total",
    "Retry replays by outcome",
    ["outcome"],
)

RETRY_DROPS_TOTAL = Counter(
    "call_sync_retry_drops_total",
    "Retry items dropped for good",
    ["reason"],
)

# --- Limiter / poller metrics ---

LIMITER_TOKENS = Gauge(
    "call_sync_limiter_tokens",
    "Tokens available in the sink rate limiter",
)

LIMITER_WAIT_SECONDS = Histogram(
    "call_sync_limiter_wait_seconds",
    "Time spent waiting for tokens",
    buckets=[0.01, 0.1, 0.5, 1, 2, 5, 10, 30],
)

POLL_RECORDS_TOTAL = Counter(
    "call_sync_poll_records_total",
    "Records processed by reconciliation",
    ["path", "outcome"],
)

POLL_CYCLES_TOTAL = Counter(
    "call_sync_poll_cycles_total",
    "Reconciliation cycles by path",
    ["path"],
)


class MetricsRegistry:
    """Centralized access to all call-sync metrics."""

    sink_writes_total = SINK_WRITES_TOTAL
    sink_write_latency = SINK_WRITE_LATENCY
    batch_flushes_total = BATCH_FLUSHES_TOTAL
    batch_flush_size = BATCH_FLUSH_SIZE
    retry_queue_depth = RETRY_QUEUE_DEPTH
    retry_attempts_total = RETRY_ATTEMPTS_TOTAL
    retry_drops_total = RETRY_DROPS_TOTAL
    limiter_tokens = LIMITER_TOKENS
    limiter_wait_seconds = LIMITER_WAIT_SECONDS
    poll_records_total = POLL_RECORDS_TOTAL
    poll_cycles_total = POLL_CYCLES_TOTAL


# Singleton instance
metrics_registry = MetricsRegistry()
