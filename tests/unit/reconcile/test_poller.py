"""
Unit tests for ReconciliationPoller (store path, fallback path, scheduling).
"""

import asyncio

import pytest

from call_sync import layout
from call_sync.coordinator import BatchConfig, BatchSink, RateLimiter
from call_sync.errors import CallStoreError
from call_sync.models import CallLogEntry, CallRecord, CallStatus, UpdateStatus
from call_sync.reconcile import PollConfig, PollerState, ReconciliationPoller
from call_sync.writer import CallLogWriter

KEY = "sheet-1"
SECTION = "Call Logs"


def seed(client, n, **overrides):
    """Header plus ``n`` logged calls ``call-0`` .. ``call-{n-1}``."""
    rows = client.rows(KEY, SECTION)
    rows.append(list(layout.HEADER))
    for i in range(n):
        rows.append(layout.entry_row(CallLogEntry(call_id=f"call-{i}", user_id="u1")))
    for i, update_status in overrides.items():
        rows[int(i) + 1][layout.UPDATE_STATUS] = update_status
    return rows


def make_poller(client, limiter, retry_queue, store, provider, sleep=None, **cfg):
    sink = BatchSink(client, limiter, retry_queue, BatchConfig(batch_timeout_ms=50))
    writer = CallLogWriter(sink, KEY, SECTION)
    kwargs = {"sleep": sleep} if sleep else {}
    return ReconciliationPoller(store, provider, writer, limiter, PollConfig(**cfg), **kwargs)


class RecordingProvider:
    """Logs status lookups and sleeps into one shared timeline."""

    def __init__(self, timeline, poller_ref=None, failing=()):
        self.timeline = timeline
        self.failing = set(failing)
        self.states = []
        self.poller_ref = poller_ref

    async def get_status(self, external_id):
        self.timeline.append(("status", external_id))
        if self.poller_ref:
            self.states.append(self.poller_ref[0].state)
        await asyncio.sleep(0)
        return CallStatus(status="completed", duration_seconds=90.0, transcript="hi")


@pytest.mark.asyncio
async def test_seven_pending_records_run_in_sub_batches(client, limiter, retry_queue, make_store):
    """7 Pending records, sub-batch 5 -> batches of 5 and 2 with one delay; returns 7."""
    seed(client, 7)
    store = make_store([CallRecord(id=f"call-{i}") for i in range(7)])
    timeline = []

    async def sleep(seconds):
        timeline.append(("sleep", seconds))

    ref = []
    provider = RecordingProvider(timeline, poller_ref=ref)
    poller = make_poller(client, limiter, retry_queue, store, provider, sleep=sleep)
    ref.append(poller)

    changed = await poller.poll_call_updates()

    assert changed == 7
    assert timeline == (
        [("status", f"call-{i}") for i in range(5)]
        + [("sleep", 2.0)]
        + [("status", f"call-{i}") for i in range(5, 7)]
    )
    assert set(provider.states) == {PollerState.PROCESSING}
    assert poller.state is PollerState.IDLE

    # store updated for every record, with the located sheet row
    assert len(store.updates) == 7
    for i, (call_id, fields) in enumerate(store.updates):
        assert call_id == f"call-{i}"
        assert fields["update_status"] == UpdateStatus.UPDATED.value
        assert fields["status"] == "completed"
        assert fields["sink_row"] == layout.FIRST_DATA_ROW + i

    # sink rows rewritten after the final flush
    rows = client.rows(KEY, SECTION)
    for row in rows[1:]:
        assert row[layout.STATUS] == "completed"
        assert row[layout.DURATION] == "90"
        assert row[layout.TRANSCRIPT] == "hi"
        assert row[layout.UPDATE_STATUS] == UpdateStatus.UPDATED.value


@pytest.mark.asyncio
async def test_status_failure_marks_record_error(
    client, limiter, retry_queue, make_store, make_provider
):
    seed(client, 3)
    store = make_store([CallRecord(id=f"call-{i}") for i in range(3)])
    provider = make_provider(failing={"call-1"})
    poller = make_poller(client, limiter, retry_queue, store, provider)

    changed = await poller.poll_call_updates()

    assert changed == 2
    failed = dict(store.updates)["call-1"]
    assert failed["update_status"] == UpdateStatus.ERROR.value
    assert "404" in failed["error_message"]

    row = client.rows(KEY, SECTION)[2]
    assert row[layout.UPDATE_STATUS] == UpdateStatus.ERROR.value
    assert "404" in row[layout.ERROR_MESSAGE]
    # status cell keeps its last known value
    assert row[layout.STATUS] == "initiated"


@pytest.mark.asyncio
async def test_unchanged_status_is_not_counted(
    client, limiter, retry_queue, make_store, make_provider
):
    seed(client, 1)
    record = CallRecord(id="call-0", status="completed", duration_seconds=90.0, sink_row=2)
    store = make_store([record])
    poller = make_poller(client, limiter, retry_queue, store, make_provider())

    assert await poller.poll_call_updates() == 0
    # still marked Updated; no row lookup needed because sink_row is known
    assert store.updates[0][1]["update_status"] == UpdateStatus.UPDATED.value
    assert "sink_row" not in store.updates[0][1]
    assert [c.method for c in client.calls if c.method == "read"] == []


@pytest.mark.asyncio
async def test_unplaced_record_updates_store_only(
    client, limiter, retry_queue, make_store, make_provider
):
    seed(client, 1)
    store = make_store([CallRecord(id="not-in-sheet")])
    poller = make_poller(client, limiter, retry_queue, store, make_provider())

    assert await poller.poll_call_updates() == 1
    assert store.updates[0][0] == "not-in-sheet"
    assert client.writes() == []


@pytest.mark.asyncio
async def test_empty_store_returns_zero(client, limiter, retry_queue, make_store, make_provider):
    provider = make_provider()
    poller = make_poller(client, limiter, retry_queue, make_store([]), provider)

    assert await poller.poll_call_updates() == 0
    assert provider.calls == []


@pytest.mark.asyncio
async def test_waits_for_token_floor_before_cycle(
    client, clock, retry_queue, make_store, make_provider
):
    """4 tokens, floor 10, refill 2/s -> wait (10 - 4) / 2 = 3s first."""
    limiter = RateLimiter(
        capacity=50, refill_per_second=2, initial_tokens=4, clock=clock, sleep=clock.sleep
    )
    poller = make_poller(
        client, limiter, retry_queue, make_store([]), make_provider(), sleep=clock.sleep
    )

    await poller.poll_call_updates()

    assert clock.sleeps[0] == pytest.approx(3.0)
    # acquire(5) after the wait leaves 10 - 5
    assert limiter.available_tokens() == pytest.approx(5)


@pytest.mark.asyncio
async def test_fallback_when_store_unavailable(
    client, limiter, retry_queue, make_store, make_provider
):
    """Only pending rows among the last N are refreshed, and only the sink is written."""
    seed(client, 7, **{"3": UpdateStatus.UPDATED.value, "5": UpdateStatus.UPDATED.value})
    client.rows(KEY, SECTION)[5][layout.CALL_ID] = "N/A"
    store = make_store(unavailable=True)
    provider = make_provider()
    poller = make_poller(client, limiter, retry_queue, store, provider, fallback_rows=5)

    changed = await poller.poll_call_updates()

    assert store.find_calls == 1
    assert store.updates == []
    assert provider.calls == ["call-2", "call-6"]
    assert changed == 2
    rows = client.rows(KEY, SECTION)
    assert rows[3][layout.UPDATE_STATUS] == UpdateStatus.UPDATED.value
    assert rows[7][layout.STATUS] == "completed"
    # rows outside the window are left alone
    assert rows[1][layout.UPDATE_STATUS] == UpdateStatus.PENDING.value


@pytest.mark.asyncio
async def test_fallback_includes_error_and_blank_rows(
    client, limiter, retry_queue, make_store, make_provider
):
    seed(client, 3, **{"0": UpdateStatus.ERROR.value, "1": "", "2": UpdateStatus.UPDATED.value})
    provider = make_provider()
    poller = make_poller(client, limiter, retry_queue, make_store(unavailable=True), provider)

    await poller.poll_call_updates()

    assert provider.calls == ["call-0", "call-1"]


@pytest.mark.asyncio
async def test_without_store_uses_sink_rows(client, limiter, retry_queue, make_provider):
    seed(client, 2)
    provider = make_provider()
    poller = make_poller(client, limiter, retry_queue, None, provider)

    assert await poller.poll_call_updates() == 2
    assert provider.calls == ["call-0", "call-1"]


class BlockingStore:
    def __init__(self):
        self.release = asyncio.Event()
        self.find_calls = 0

    async def find_needing_refresh(self, limit):
        self.find_calls += 1
        await self.release.wait()
        return []

    async def update(self, id, fields):
        pass


@pytest.mark.asyncio
async def test_run_forever_skips_overlapping_ticks(client, limiter, retry_queue, make_provider):
    store = BlockingStore()
    poller = make_poller(client, limiter, retry_queue, store, make_provider())

    task = asyncio.create_task(poller.run_forever(0.01))
    await asyncio.sleep(0.08)

    assert store.find_calls == 1

    poller.stop()
    store.release.set()
    await asyncio.wait_for(task, timeout=1)


class BrokenStore:
    def __init__(self):
        self.find_calls = 0

    async def find_needing_refresh(self, limit):
        self.find_calls += 1
        raise CallStoreError("permission denied for table calls")

    async def update(self, id, fields):
        pass


@pytest.mark.asyncio
async def test_run_forever_survives_failed_cycles(client, limiter, retry_queue, make_provider):
    store = BrokenStore()
    poller = make_poller(client, limiter, retry_queue, store, make_provider())

    task = asyncio.create_task(poller.run_forever(0.01))
    await asyncio.sleep(0.08)
    poller.stop()
    await asyncio.wait_for(task, timeout=1)

    assert store.find_calls >= 2
    assert poller.state is PollerState.IDLE
