# app/modules/notifications/relay.py
"""
In-process fan-out of ledger state changes to connected agent sessions.

Delivery is best-effort: each subscriber owns a bounded queue and events
that do not fit are dropped. Clients that reconnect re-sync with a normal
GET query instead of expecting replay. publish() never raises, so callers
can dispatch after commit without guarding.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Iterable, Optional

from app.core.config import settings

logger = logging.getLogger(__name__)


class EventType:
    SLOT_BOOKED = "slot:booked"
    SLOT_RELEASED = "slot:released"
    APPOINTMENT_CANCELLED = "appointment:cancelled"
    APPOINTMENT_STATUS_CHANGED = "appointment:status_changed"
    PAYMENT_STATUS_CHANGED = "payment:status_changed"


@dataclass(frozen=True)
class RelayEvent:
    type: str
    payload: dict[str, Any]
    doctor_id: Optional[str] = None
    date: Optional[str] = None
    appointment_id: Optional[str] = None
    emitted_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    def to_message(self) -> dict[str, Any]:
        return {
            "type": self.type,
            "payload": self.payload,
            "emitted_at": self.emitted_at.isoformat(),
        }


@dataclass(frozen=True)
class SubscriptionFilter:
    """Every field that is set must match; an empty filter matches all events."""

    doctor_id: Optional[str] = None
    date: Optional[str] = None
    appointment_id: Optional[str] = None

    def matches(self, event: RelayEvent) -> bool:
        if self.doctor_id is not None and self.doctor_id != event.doctor_id:
            return False
        if self.date is not None and self.date != event.date:
            return False
        if self.appointment_id is not None and self.appointment_id != event.appointment_id:
            return False
        return True


class Subscription:
    def __init__(self, handle: int, event_filter: SubscriptionFilter, maxsize: int):
        self.handle = handle
        self.filter = event_filter
        self.queue: asyncio.Queue[RelayEvent] = asyncio.Queue(maxsize=maxsize)
        self.dropped = 0

    def __aiter__(self) -> AsyncIterator[RelayEvent]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[RelayEvent]:
        while True:
            yield await self.queue.get()


class NotificationRelay:
    def __init__(self, queue_size: int | None = None):
        self._queue_size = queue_size or settings.RELAY_QUEUE_SIZE
        self._subscriptions: dict[int, Subscription] = {}
        self._handles = itertools.count(1)

    @property
    def subscriber_count(self) -> int:
        return len(self._subscriptions)

    def subscribe(self, event_filter: SubscriptionFilter | None = None) -> Subscription:
        sub = Subscription(next(self._handles), event_filter or SubscriptionFilter(), self._queue_size)
        self._subscriptions[sub.handle] = sub
        logger.debug("relay subscribe handle=%s filter=%s", sub.handle, sub.filter)
        return sub

    def unsubscribe(self, handle: int) -> None:
        self._subscriptions.pop(handle, None)

    def publish(self, event: RelayEvent) -> int:
        """Queue the event for every matching subscriber. Returns how many got it."""
        delivered = 0
        for sub in list(self._subscriptions.values()):
            try:
                if not sub.filter.matches(event):
                    continue
                sub.queue.put_nowait(event)
                delivered += 1
            except asyncio.QueueFull:
                sub.dropped += 1
                logger.warning(
                    "relay queue full, dropping %s for subscriber %s", event.type, sub.handle
                )
            except Exception:
                logger.exception("relay delivery failed for subscriber %s", sub.handle)
        return delivered

    def publish_many(self, events: Iterable[RelayEvent]) -> int:
        return sum(self.publish(e) for e in events)


relay = NotificationRelay()
