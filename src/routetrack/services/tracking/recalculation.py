"""Cascading recomputation of planned stop times after an actual event is fixed."""

from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, time, timedelta, tzinfo
from typing import Optional

from ...config import settings
from ...data.registry import WarehouseLookup
from ...models.domain import Route, Stop, Warehouse
from ...persistence.gateway import PersistenceGateway
from ...persistence.records import stop_to_record
from ..estimator import TravelTimeEstimator
from ..timeutils import clamp_to_window, tzinfo_from_name
from .events import EventBus, EventKind, TrackingEvent
from .exceptions import MissingReferenceError

logger = logging.getLogger(__name__)


@dataclass(slots=True)
class RecalculationResult:
    route_id: str
    trigger: str
    from_index: int
    stops: list[Stop]
    updated_indices: list[int] = field(default_factory=list)
    fallback_indices: list[int] = field(default_factory=list)
    error: Optional[str] = None

    @property
    def succeeded(self) -> bool:
        return self.error is None


def _wall_clock(moment: datetime) -> time:
    return moment.time().replace(second=0, microsecond=0, tzinfo=None)


class ScheduleRecalculator:
    """Re-derives downstream planned arrival/departure times.

    Work always starts from the route's current persisted schedule, so replaying
    the same fixed event produces the same schedule instead of stacking deltas.
    Recalculations for one route are serialized; different routes run freely.
    """

    def __init__(
        self,
        estimator: TravelTimeEstimator,
        warehouses: WarehouseLookup,
        gateway: PersistenceGateway,
        bus: EventBus | None = None,
        tz: tzinfo | None = None,
        window_start: time | None = None,
        window_end: time | None = None,
        base_dwell_minutes: int | None = None,
        default_speed_limit: int | None = None,
    ) -> None:
        self.estimator = estimator
        self.warehouses = warehouses
        self.gateway = gateway
        self.bus = bus or EventBus()
        self.tz = tz or tzinfo_from_name(settings.timezone)
        self.window_start = window_start or settings.operating_window_start
        self.window_end = window_end or settings.operating_window_end
        self.base_dwell_minutes = base_dwell_minutes if base_dwell_minutes is not None else settings.base_dwell_minutes
        self.default_speed_limit = default_speed_limit or settings.default_speed_limit_mph
        self._route_locks: dict[str, threading.Lock] = {}
        self._locks_guard = threading.Lock()

    def route_lock(self, route_id: str) -> threading.Lock:
        with self._locks_guard:
            return self._route_locks.setdefault(route_id, threading.Lock())

    def dwell_minutes(self, stop: Stop) -> int:
        minutes = self.base_dwell_minutes
        if stop.has_lunch_break and stop.lunch_duration_minutes:
            minutes += stop.lunch_duration_minutes
        return minutes

    def current_schedule(self, route: Route) -> list[Stop]:
        """The route's stops with the last recalculated planned times laid over them.

        The stop list itself always comes from the route; stored times are matched by
        stop id, so stops added to or removed from the route are picked up.
        """
        stored = {stop.stop_id: stop for stop in self.gateway.load_route_stops(route.route_id) or []}
        schedule = []
        for stop in route.ordered_stops():
            previous = stored.get(stop.stop_id)
            if previous is not None:
                stop = replace(stop, planned_arrival=previous.planned_arrival, planned_departure=previous.planned_departure)
            else:
                stop = replace(stop)
            schedule.append(stop)
        return schedule

    def recalculate_from_departure(self, route: Route, departed_index: int, actual_departure: datetime) -> RecalculationResult:
        with self.route_lock(route.route_id):
            return self._cascade(route, departed_index, actual_departure)

    def recalculate_from_arrival(self, route: Route, arrived_index: int, actual_arrival: datetime) -> RecalculationResult:
        with self.route_lock(route.route_id):
            stops = self.current_schedule(route)
            result = RecalculationResult(route.route_id, "arrival", arrived_index, stops)
            if not 0 <= arrived_index < len(stops):
                result.error = f"stop index {arrived_index} out of range"
                logger.error(f"Arrival recalculation for route {route.route_id}: {result.error}")
                self._publish_failure(result)
                return result

            stop = stops[arrived_index]
            arrival = actual_arrival.astimezone(self.tz)
            departure = arrival + timedelta(minutes=self.dwell_minutes(stop))
            stop.planned_arrival = _wall_clock(arrival)
            stop.planned_departure = _wall_clock(departure)
            result.updated_indices.append(arrived_index)
            self.gateway.save_route_stops(route.route_id, stops)
            logger.info(
                f"Route {route.route_id} stop {arrived_index}: planned departure set to "
                f"{stop.planned_departure.strftime('%H:%M')} from actual arrival"
            )
            self._publish_update(result, actual_arrival)
            return result

    def _cascade(self, route: Route, departed_index: int, actual_departure: datetime) -> RecalculationResult:
        stops = self.current_schedule(route)
        result = RecalculationResult(route.route_id, "departure", departed_index, stops)
        if not 0 <= departed_index < len(stops):
            result.error = f"stop index {departed_index} out of range"
            logger.error(f"Departure recalculation for route {route.route_id}: {result.error}")
            self._publish_failure(result)
            return result

        running = actual_departure.astimezone(self.tz)
        stops[departed_index].planned_departure = _wall_clock(running)
        self.gateway.save_route_stops(route.route_id, stops)
        speed_limit = route.vehicle_speed_limit or self.default_speed_limit

        for index in range(departed_index + 1, len(stops)):
            stop = stops[index]
            try:
                origin = self._warehouse(stops[index - 1].warehouse_id)
                destination = self._warehouse(stop.warehouse_id)
            except MissingReferenceError as e:
                result.error = str(e)
                logger.error(f"Recalculation of route {route.route_id} stopped at stop {index}: {e}")
                self._publish_failure(result)
                return result

            estimate = self.estimator.estimate(
                origin,
                destination,
                running,
                speed_limit,
                scenario=destination.traffic_scenario,
                weekday=route.weekday,
            )
            if estimate.used_fallback:
                result.fallback_indices.append(index)

            arrival = clamp_to_window(
                running + timedelta(minutes=estimate.minutes),
                self.window_start,
                self.window_end,
            )
            departure = arrival + timedelta(minutes=self.dwell_minutes(stop))
            stop.planned_arrival = _wall_clock(arrival)
            stop.planned_departure = _wall_clock(departure)
            result.updated_indices.append(index)
            running = departure

            self.gateway.save_route_stops(route.route_id, stops)
            logger.info(
                f"Route {route.route_id} stop {index}: arrival {stop.planned_arrival.strftime('%H:%M')}, "
                f"departure {stop.planned_departure.strftime('%H:%M')} "
                f"(travel {estimate.minutes:.0f} min{', fallback' if estimate.used_fallback else ''})"
            )

        self._publish_update(result, actual_departure)
        return result

    def _warehouse(self, warehouse_id: str) -> Warehouse:
        warehouse = self.warehouses.get_warehouse(warehouse_id)
        if warehouse is None:
            raise MissingReferenceError(f"Warehouse {warehouse_id} not found")
        return warehouse

    def _publish_update(self, result: RecalculationResult, at: datetime) -> None:
        self.bus.publish(
            TrackingEvent(
                kind=EventKind.SCHEDULE_UPDATED,
                route_id=result.route_id,
                stop_index=result.from_index,
                timestamp=at,
                payload={
                    "trigger": result.trigger,
                    "updatedStops": result.updated_indices,
                    "fallbackStops": result.fallback_indices,
                    "stops": [stop_to_record(stop) for stop in result.stops],
                },
            )
        )

    def _publish_failure(self, result: RecalculationResult) -> None:
        self.bus.publish(
            TrackingEvent(
                kind=EventKind.RECALCULATION_FAILED,
                route_id=result.route_id,
                stop_index=result.from_index,
                timestamp=datetime.now(self.tz),
                payload={"trigger": result.trigger, "error": result.error, "updatedStops": result.updated_indices},
            )
        )
