"""Notification channel for tracking events."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Optional

logger = logging.getLogger(__name__)


class EventKind(str, Enum):
    ROUTE_STARTED = "route_started"
    ARRIVAL_FIXED = "arrival_fixed"
    DEPARTURE_FIXED = "departure_fixed"
    ROUTE_COMPLETED = "route_completed"
    INTERMEDIATE_STOP_OPENED = "intermediate_stop_opened"
    INTERMEDIATE_STOP_CLOSED = "intermediate_stop_closed"
    SCHEDULE_UPDATED = "schedule_updated"
    RECALCULATION_FAILED = "recalculation_failed"


@dataclass(frozen=True, slots=True)
class TrackingEvent:
    kind: EventKind
    route_id: str
    timestamp: datetime
    driver_id: Optional[str] = None
    stop_index: Optional[int] = None
    payload: dict[str, Any] = field(default_factory=dict)


Subscriber = Callable[[TrackingEvent], None]


class EventBus:
    """In-process publish/subscribe. Subscribers run on the publishing thread."""

    def __init__(self) -> None:
        self._subscribers: list[Subscriber] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber) -> None:
        with self._lock:
            self._subscribers.append(callback)

    def unsubscribe(self, callback: Subscriber) -> None:
        with self._lock:
            if callback in self._subscribers:
                self._subscribers.remove(callback)

    def publish(self, event: TrackingEvent) -> None:
        with self._lock:
            subscribers = list(self._subscribers)
        for callback in subscribers:
            try:
                callback(event)
            except Exception:
                logger.exception(f"Subscriber failed while handling {event.kind.value} for route {event.route_id}")

    def publish_all(self, events: list[TrackingEvent]) -> None:
        for event in events:
            self.publish(event)
