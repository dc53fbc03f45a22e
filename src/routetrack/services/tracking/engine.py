"""Per-stop state machine driven by GPS geofence containment."""

from __future__ import annotations

import logging
from datetime import datetime

from ...config import settings
from ...models.domain import (
    PositionSample,
    RouteProgress,
    RouteStatus,
    StopStatus,
    Warehouse,
)
from ..geospatial import distance_meters
from .events import EventKind, TrackingEvent
from .intermediate import IntermediateStopDetector

logger = logging.getLogger(__name__)


def latest_fix(progress: RouteProgress) -> datetime | None:
    """Latest of the last processed sample and every fixed arrival/departure."""

    moments = [progress.last_position_update_at]
    for stop in progress.stops:
        moments.extend((stop.actual_arrival, stop.actual_departure))
    known = [moment for moment in moments if moment is not None]
    return max(known) if known else None


class TrackingEngine:
    """Advances a RouteProgress from position samples.

    Each sample causes at most one stop transition. Transitions are one-way and
    every timestamp field is written once, so replaying a sample is a no-op on
    stop status. Samples older than the last processed one are ignored.
    """

    def __init__(
        self,
        geofence_radius_meters: float | None = None,
        detector: IntermediateStopDetector | None = None,
    ) -> None:
        self.geofence_radius_meters = (
            geofence_radius_meters if geofence_radius_meters is not None else settings.geofence_radius_meters
        )
        self.detector = detector or IntermediateStopDetector()

    def apply_sample(self, progress: RouteProgress, sample: PositionSample, warehouse: Warehouse) -> list[TrackingEvent]:
        if progress.is_completed:
            return []
        watermark = latest_fix(progress)
        if watermark is not None and sample.timestamp < watermark:
            logger.warning(
                f"Ignoring stale sample for route {progress.route_id}: "
                f"{sample.timestamp.isoformat()} < {watermark.isoformat()}"
            )
            return []
        progress.last_position_update_at = sample.timestamp

        stop = progress.current_stop
        if stop is None:
            return self._complete(progress, sample)
        if stop.warehouse_id != warehouse.warehouse_id:
            raise ValueError(
                f"Warehouse {warehouse.warehouse_id} does not belong to current stop {stop.stop_id} "
                f"(expected {stop.warehouse_id})"
            )

        distance = distance_meters(sample.coordinates, warehouse.coordinates)
        inside = distance <= self.geofence_radius_meters
        index = progress.current_stop_index
        logger.debug(
            f"Route {progress.route_id} stop {index} ({stop.status.value}): "
            f"{distance:.0f} m from {warehouse.name}, inside={inside}"
        )

        if stop.status is StopStatus.PENDING:
            return self._handle_pending(progress, sample, inside)
        if stop.status is StopStatus.EN_ROUTE:
            if inside:
                return self._arrive(progress, sample, warehouse)
            return self.detector.observe(progress, sample)
        if stop.status is StopStatus.ARRIVED and not inside:
            return self._depart(progress, sample, warehouse)
        return []

    def _handle_pending(self, progress: RouteProgress, sample: PositionSample, inside: bool) -> list[TrackingEvent]:
        if inside:
            return []
        index = progress.current_stop_index
        stop = progress.stops[index]
        events: list[TrackingEvent] = []

        if index == 0:
            progress.status = RouteStatus.IN_PROGRESS
            if progress.start_time is None:
                progress.start_time = sample.timestamp
            logger.info(f"Route {progress.route_id} started by driver {progress.driver_id}")
            events.append(self._event(EventKind.ROUTE_STARTED, progress, sample, index))
        elif not progress.stops[index - 1].status.has_departed:
            return []

        stop.status = StopStatus.EN_ROUTE
        if stop.exited_geofence_at is None:
            stop.exited_geofence_at = sample.timestamp
        logger.info(f"Route {progress.route_id}: en route to stop {index} ({stop.stop_id})")
        return events

    def _arrive(self, progress: RouteProgress, sample: PositionSample, warehouse: Warehouse) -> list[TrackingEvent]:
        index = progress.current_stop_index
        stop = progress.stops[index]
        events = self.detector.close_open(progress, sample.timestamp)

        stop.status = StopStatus.ARRIVED
        if stop.entered_geofence_at is None:
            stop.entered_geofence_at = sample.timestamp
        if stop.actual_arrival is None:
            stop.actual_arrival = sample.timestamp
        logger.info(f"Route {progress.route_id}: arrived at {warehouse.name} (stop {index})")
        events.append(self._event(EventKind.ARRIVAL_FIXED, progress, sample, index, actualArrival=stop.actual_arrival.isoformat()))
        return events

    def _depart(self, progress: RouteProgress, sample: PositionSample, warehouse: Warehouse) -> list[TrackingEvent]:
        index = progress.current_stop_index
        stop = progress.stops[index]

        stop.status = StopStatus.DEPARTED
        stop.exited_geofence_at = sample.timestamp
        if stop.actual_departure is None:
            stop.actual_departure = sample.timestamp
        logger.info(f"Route {progress.route_id}: departed {warehouse.name} (stop {index})")
        events = [
            self._event(EventKind.DEPARTURE_FIXED, progress, sample, index, actualDeparture=stop.actual_departure.isoformat())
        ]

        progress.current_stop_index = index + 1
        next_stop = progress.current_stop
        if next_stop is None:
            events.extend(self._complete(progress, sample))
        else:
            next_stop.status = StopStatus.PENDING
        return events

    def _complete(self, progress: RouteProgress, sample: PositionSample) -> list[TrackingEvent]:
        progress.status = RouteStatus.COMPLETED
        progress.end_time = sample.timestamp
        progress.current_stop_index = min(progress.current_stop_index, len(progress.stops))
        logger.info(f"Route {progress.route_id} completed by driver {progress.driver_id}")
        return [self._event(EventKind.ROUTE_COMPLETED, progress, sample, None)]

    @staticmethod
    def _event(kind: EventKind, progress: RouteProgress, sample: PositionSample, stop_index: int | None, **payload) -> TrackingEvent:
        return TrackingEvent(
            kind=kind,
            route_id=progress.route_id,
            driver_id=progress.driver_id,
            stop_index=stop_index,
            timestamp=sample.timestamp,
            payload=payload,
        )
