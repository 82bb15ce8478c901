"""
Retry backlog signals.

A RetryQueue publishes a FeedbackEvent when its backlog reaches the high
watermark (HARD) and again once it has worked back down (OK). Callers that
produce sink writes subscribe and slow down; every event is also logged.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Awaitable, Callable, Dict, FrozenSet, Optional

from loguru import logger


class BackpressureLevel(str, Enum):
    OK = "ok"
    HARD = "hard"


@dataclass(frozen=True)
class FeedbackEvent:
    queue_id: str
    queue_size: int
    high_watermark: int
    level: BackpressureLevel
    reason: Optional[str] = None

    @property
    def utilization(self) -> float:
        """Backlog as a fraction of the high watermark (may exceed 1.0)."""
        if self.high_watermark <= 0:
            return 0.0
        return self.queue_size / self.high_watermark


FeedbackSubscriber = Callable[[FeedbackEvent], Awaitable[None]]


class FeedbackBus:
    """
    In-process fan-out of FeedbackEvents.

    Subscribers may restrict themselves to some levels. Delivery is
    sequential, in subscription order; a failing subscriber is logged and
    skipped. ``last_event`` lets late subscribers see the current level.
    """

    def __init__(self) -> None:
        self._subs: Dict[FeedbackSubscriber, Optional[FrozenSet[BackpressureLevel]]] = {}
        self._last: Dict[str, FeedbackEvent] = {}

    def subscribe(self, callback: FeedbackSubscriber, *, levels=None) -> None:
        self._subs[callback] = frozenset(levels) if levels else None

    def unsubscribe(self, callback: FeedbackSubscriber) -> None:
        self._subs.pop(callback, None)

    def last_event(self, queue_id: str) -> Optional[FeedbackEvent]:
        return self._last.get(queue_id)

    @property
    def subscriber_count(self) -> int:
        return len(self._subs)

    async def publish(self, event: FeedbackEvent) -> None:
        self._last[event.queue_id] = event
        log = logger.warning if event.level is BackpressureLevel.HARD else logger.info
        log(
            f"Retry backlog {event.level.value} for {event.queue_id}: "
            f"{event.queue_size}/{event.high_watermark} ({event.reason or 'n/a'})"
        )
        for callback, levels in list(self._subs.items()):
            if levels is not None and event.level not in levels:
                continue
            try:
                await callback(event)
            except Exception as exc:
                logger.error(f"Feedback subscriber {callback!r} failed: {exc}")


_bus: Optional[FeedbackBus] = None


def feedback_bus() -> FeedbackBus:
    """Process-wide bus for queues built without their own."""
    global _bus
    if _bus is None:
        _bus = FeedbackBus()
    return _bus
