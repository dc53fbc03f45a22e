"""Live route progress tracking."""

from .engine import TrackingEngine
from .events import EventBus, EventKind, TrackingEvent
from .exceptions import MissingReferenceError, TrackingError, TriggerRejectedError
from .poller import PositionPoller
from .recalculation import RecalculationResult, ScheduleRecalculator
from .service import TrackingService, get_tracking_service
from .trigger import ManualTriggerController, is_route_for_today

__all__ = [
    "EventBus",
    "EventKind",
    "ManualTriggerController",
    "MissingReferenceError",
    "PositionPoller",
    "RecalculationResult",
    "ScheduleRecalculator",
    "TrackingEngine",
    "TrackingError",
    "TrackingEvent",
    "TrackingService",
    "TriggerRejectedError",
    "get_tracking_service",
    "is_route_for_today",
]
