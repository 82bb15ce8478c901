"""
Pytest configuration and fixtures for call-sync.

Provides a controllable clock for the rate limiter and in-memory
collaborators for the sink, the call store and the status provider.
"""

import asyncio
import sys
from typing import Dict, List, Optional

import pytest
import pytest_asyncio

from call_sync.coordinator import BatchConfig, BatchSink, RateLimiter, RetryConfig, RetryQueue
from call_sync.coordinator.feedback import FeedbackBus
from call_sync.errors import CallStoreUnavailable, StatusProviderError
from call_sync.models import CallRecord, CallStatus
from call_sync.sinks import MemorySinkClient

# Set policy *before* pytest-asyncio creates any loops
if sys.platform.startswith("win"):
    asyncio.set_event_loop_policy(asyncio.WindowsSelectorEventLoopPolicy())


class FakeClock:
    """Monotonic clock advanced only by ``sleep``; records every sleep."""

    def __init__(self, start: float = 1000.0):
        self.now = start
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds
        await asyncio.sleep(0)


class FakeStore:
    """CallStore keeping records in a dict; ``unavailable`` simulates a missing schema."""

    def __init__(self, records: Optional[List[CallRecord]] = None, unavailable: bool = False):
        self.records: Dict[str, CallRecord] = {r.id: r for r in records or []}
        self.updates: List[tuple] = []
        self.unavailable = unavailable
        self.find_calls = 0

    async def find_needing_refresh(self, limit: int) -> List[CallRecord]:
        self.find_calls += 1
        if self.unavailable:
            raise CallStoreUnavailable('relation "calls" does not exist')
        return list(self.records.values())[:limit]

    async def update(self, id: str, fields: dict) -> None:
        self.updates.append((id, dict(fields)))


class FakeProvider:
    """StatusProvider answering from a dict; ids in ``failing`` raise."""

    def __init__(self, statuses: Optional[Dict[str, CallStatus]] = None, failing=()):
        self.statuses = statuses or {}
        self.failing = set(failing)
        self.calls: List[str] = []

    async def get_status(self, external_id: str) -> CallStatus:
        self.calls.append(external_id)
        await asyncio.sleep(0)
        if external_id in self.failing:
            raise StatusProviderError(f"status request for {external_id} returned 404")
        return self.statuses.get(
            external_id, CallStatus(status="completed", duration_seconds=90.0)
        )


async def no_sleep(_seconds: float) -> None:
    await asyncio.sleep(0)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def client():
    return MemorySinkClient()


@pytest.fixture
def limiter():
    """Full limiter that never makes a test wait."""
    return RateLimiter(capacity=50, refill_per_second=1000)


@pytest.fixture
def bus():
    return FeedbackBus()


@pytest.fixture
def retry_queue(client, limiter, bus):
    cfg = RetryConfig(item_delay_ms=0, backoff_base_ms=1, backoff_per_item_ms=0, backoff_max_ms=1)
    return RetryQueue(client, limiter, cfg, bus=bus, sleep=no_sleep)


@pytest_asyncio.fixture
async def batch_sink(client, limiter, retry_queue):
    sink = BatchSink(client, limiter, retry_queue, BatchConfig(batch_size=20, batch_timeout_ms=50))
    yield sink
    await sink.close()
    await retry_queue.close()


@pytest.fixture
def make_store():
    return FakeStore


@pytest.fixture
def make_provider():
    return FakeProvider
