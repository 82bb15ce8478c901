"""
Unit tests for FeedbackBus delivery and retry backlog events.
"""

import dataclasses

import pytest

from call_sync.coordinator import BackpressureLevel, FeedbackBus, FeedbackEvent, feedback_bus


def hard(size=60, queue_id="retry"):
    return FeedbackEvent(queue_id, size, 50, BackpressureLevel.HARD, "high_watermark")


def ok(size=10, queue_id="retry"):
    return FeedbackEvent(queue_id, size, 50, BackpressureLevel.OK, "recovered")


class Recorder:
    def __init__(self):
        self.events = []

    async def __call__(self, event):
        self.events.append(event)


def test_events_are_frozen():
    with pytest.raises(dataclasses.FrozenInstanceError):
        hard().queue_size = 0


@pytest.mark.parametrize("size,watermark,expected", [(25, 50, 0.5), (75, 50, 1.5), (3, 0, 0.0)])
def test_utilization(size, watermark, expected):
    event = FeedbackEvent("retry", size, watermark, BackpressureLevel.OK)
    assert event.utilization == expected


@pytest.mark.asyncio
async def test_delivers_in_subscription_order(bus):
    order = []

    async def first(event):
        order.append("first")

    async def second(event):
        order.append("second")

    bus.subscribe(first)
    bus.subscribe(second)
    await bus.publish(hard())

    assert order == ["first", "second"]


@pytest.mark.asyncio
async def test_level_filter(bus):
    only_hard = Recorder()
    everything = Recorder()
    bus.subscribe(only_hard, levels={BackpressureLevel.HARD})
    bus.subscribe(everything)

    await bus.publish(hard())
    await bus.publish(ok())

    assert [e.level for e in only_hard.events] == [BackpressureLevel.HARD]
    assert [e.level for e in everything.events] == [BackpressureLevel.HARD, BackpressureLevel.OK]


@pytest.mark.asyncio
async def test_resubscribe_replaces_filter_and_unsubscribe_is_idempotent(bus):
    rec = Recorder()
    bus.subscribe(rec, levels={BackpressureLevel.HARD})
    bus.subscribe(rec)
    assert bus.subscriber_count == 1

    await bus.publish(ok())
    assert len(rec.events) == 1

    bus.unsubscribe(rec)
    bus.unsubscribe(rec)
    await bus.publish(ok())
    assert len(rec.events) == 1


@pytest.mark.asyncio
async def test_failing_subscriber_is_skipped(bus):
    rec = Recorder()

    async def broken(event):
        raise RuntimeError("webhook down")

    bus.subscribe(broken)
    bus.subscribe(rec)
    await bus.publish(hard())

    assert rec.events == [hard()]


@pytest.mark.asyncio
async def test_last_event_per_queue(bus):
    assert bus.last_event("retry") is None

    await bus.publish(hard(queue_id="retry"))
    await bus.publish(ok(queue_id="retry"))
    await bus.publish(hard(queue_id="replay"))

    assert bus.last_event("retry").level is BackpressureLevel.OK
    assert bus.last_event("replay").level is BackpressureLevel.HARD


def test_process_wide_bus():
    assert feedback_bus() is feedback_bus()
    assert isinstance(feedback_bus(), FeedbackBus)
