"""Operator-driven arrival/departure recording without GPS."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import date, datetime

from ...models.domain import (
    Route,
    RouteProgress,
    RouteStatus,
    StopStatus,
    TriggerAction,
    TriggerState,
)
from .events import EventKind, TrackingEvent
from .exceptions import TriggerRejectedError
from .intermediate import IntermediateStopDetector

logger = logging.getLogger(__name__)


def is_route_for_today(route: Route, today: date) -> bool:
    """A dated route runs on its date, a weekly route on its weekday, anything else daily."""
    if route.date is not None:
        return route.date == today
    if route.weekday is not None:
        return route.weekday == today.weekday()
    return True


def derive_trigger_state(progress: RouteProgress) -> TriggerState:
    """Next trigger action implied by the progress record."""

    index = progress.current_stop_index
    stop = progress.current_stop
    if stop is not None and stop.status is StopStatus.ARRIVED:
        action = TriggerAction.DEPARTURE
    elif stop is not None and index > 0:
        action = TriggerAction.ARRIVAL
    else:
        action = TriggerAction.DEPARTURE
    return TriggerState(route_id=progress.route_id, current_stop_index=index, next_action=action)


@dataclass(slots=True)
class TriggerOutcome:
    action: TriggerAction
    stop_index: int
    at: datetime
    state: TriggerState | None
    events: list[TrackingEvent] = field(default_factory=list)

    @property
    def route_completed(self) -> bool:
        return self.state is None


class ManualTriggerController:
    """Alternates departure and arrival recording per route, starting with a departure at stop 0.

    The controller mutates the given progress record only; callers own locking,
    persistence and the follow-up schedule recalculation.
    """

    def __init__(self, detector: IntermediateStopDetector | None = None) -> None:
        self.detector = detector or IntermediateStopDetector()
        self._states: dict[str, TriggerState] = {}
        self._lock = threading.Lock()

    def get_state(self, route_id: str) -> TriggerState | None:
        with self._lock:
            state = self._states.get(route_id)
            return replace(state) if state else None

    def reset(self, route_id: str) -> None:
        with self._lock:
            self._states.pop(route_id, None)
        logger.info(f"Trigger state reset for route {route_id}")

    def forget(self, route_id: str) -> None:
        with self._lock:
            self._states.pop(route_id, None)

    def state_for(self, progress: RouteProgress) -> TriggerState:
        """Stored state when it agrees with the progress record, otherwise the derived one."""

        derived = derive_trigger_state(progress)
        with self._lock:
            stored = self._states.get(progress.route_id)
            if stored is None or stored.current_stop_index != derived.current_stop_index:
                return derived
            stop = progress.current_stop
            if stored.next_action is TriggerAction.ARRIVAL and stop is not None and stop.status is StopStatus.ARRIVED:
                # GPS recorded the arrival since the last trigger.
                return derived
            return replace(stored)

    def check(self, route: Route, progress: RouteProgress | None, today: date) -> None:
        """Raise TriggerRejectedError when the route cannot be triggered."""

        if not route.is_active:
            raise TriggerRejectedError(route.route_id, "Route is not active.")
        if not is_route_for_today(route, today):
            raise TriggerRejectedError(route.route_id, "Route is not scheduled for today.")
        if progress is None:
            raise TriggerRejectedError(route.route_id, "Tracking has not been initialized for this route today.")
        if progress.is_completed or progress.current_stop is None:
            raise TriggerRejectedError(route.route_id, "Route is already completed.")

    def trigger(self, route: Route, progress: RouteProgress, now: datetime) -> TriggerOutcome:
        """Record the next action at ``now`` and advance the trigger state."""

        self.check(route, progress, now.date())
        state = self.state_for(progress)
        if state.next_action is TriggerAction.DEPARTURE:
            outcome = self._record_departure(progress, state, now)
        else:
            outcome = self._record_arrival(progress, state, now)

        with self._lock:
            if outcome.state is None:
                self._states.pop(route.route_id, None)
            else:
                self._states[route.route_id] = outcome.state
        return outcome

    def describe_next_action(self, route: Route, progress: RouteProgress | None) -> str:
        if progress is None:
            return "Start tracking to record departure from the first stop"
        if progress.is_completed or progress.current_stop is None:
            return "Route completed"
        state = self.state_for(progress)
        stop_number = state.current_stop_index + 1
        if state.next_action is TriggerAction.DEPARTURE:
            return f"Record departure from stop {stop_number}"
        return f"Record arrival at stop {stop_number}"

    def _record_departure(self, progress: RouteProgress, state: TriggerState, now: datetime) -> TriggerOutcome:
        index = state.current_stop_index
        stop = progress.stops[index]
        outcome = TriggerOutcome(TriggerAction.DEPARTURE, index, now, None)

        if progress.status is RouteStatus.NOT_STARTED:
            progress.status = RouteStatus.IN_PROGRESS
            progress.start_time = progress.start_time or now
            outcome.events.append(self._event(EventKind.ROUTE_STARTED, progress, now, index))

        if stop.actual_departure is None:
            stop.actual_departure = now
        stop.status = StopStatus.COMPLETED
        outcome.at = stop.actual_departure
        outcome.events.append(
            self._event(EventKind.DEPARTURE_FIXED, progress, now, index, actualDeparture=stop.actual_departure.isoformat(), manual=True)
        )
        logger.info(f"Manual departure recorded for route {progress.route_id} at stop {index}")

        progress.current_stop_index = index + 1
        next_stop = progress.current_stop
        if next_stop is None:
            progress.status = RouteStatus.COMPLETED
            progress.end_time = now
            outcome.events.append(self._event(EventKind.ROUTE_COMPLETED, progress, now, None))
            logger.info(f"Route {progress.route_id} completed by manual trigger")
            return outcome

        next_stop.status = StopStatus.PENDING
        outcome.state = TriggerState(
            route_id=progress.route_id,
            current_stop_index=index + 1,
            next_action=TriggerAction.ARRIVAL,
            last_triggered_at=now,
        )
        return outcome

    def _record_arrival(self, progress: RouteProgress, state: TriggerState, now: datetime) -> TriggerOutcome:
        index = state.current_stop_index
        stop = progress.stops[index]
        outcome = TriggerOutcome(TriggerAction.ARRIVAL, index, now, None)
        outcome.events.extend(self.detector.close_open(progress, now))

        stop.status = StopStatus.ARRIVED
        if stop.entered_geofence_at is None:
            stop.entered_geofence_at = now
        if stop.actual_arrival is None:
            stop.actual_arrival = now
        outcome.at = stop.actual_arrival
        outcome.events.append(
            self._event(EventKind.ARRIVAL_FIXED, progress, now, index, actualArrival=stop.actual_arrival.isoformat(), manual=True)
        )
        logger.info(f"Manual arrival recorded for route {progress.route_id} at stop {index}")

        outcome.state = TriggerState(
            route_id=progress.route_id,
            current_stop_index=index,
            next_action=TriggerAction.DEPARTURE,
            last_triggered_at=now,
        )
        return outcome

    @staticmethod
    def _event(kind: EventKind, progress: RouteProgress, at: datetime, stop_index: int | None, **payload) -> TrackingEvent:
        return TrackingEvent(
            kind=kind,
            route_id=progress.route_id,
            driver_id=progress.driver_id,
            stop_index=stop_index,
            timestamp=at,
            payload=payload,
        )
