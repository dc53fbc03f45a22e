"""Detection of unplanned stationary periods between planned stops."""

from __future__ import annotations

import logging
from datetime import datetime

from ...config import settings
from ...models.domain import IntermediateStop, PositionSample, RouteProgress
from ..geospatial import distance_meters
from .events import EventKind, TrackingEvent

logger = logging.getLogger(__name__)


class IntermediateStopDetector:
    def __init__(
        self,
        stationary_speed_threshold: float | None = None,
        move_threshold_meters: float | None = None,
    ) -> None:
        self.stationary_speed_threshold = (
            stationary_speed_threshold
            if stationary_speed_threshold is not None
            else settings.stationary_speed_threshold
        )
        self.move_threshold_meters = (
            move_threshold_meters if move_threshold_meters is not None else settings.intermediate_stop_move_meters
        )

    def observe(self, progress: RouteProgress, sample: PositionSample) -> list[TrackingEvent]:
        """Update the intermediate stop log for a sample taken outside the destination geofence."""

        events: list[TrackingEvent] = []
        open_stop = progress.open_intermediate_stop()

        if sample.speed >= self.stationary_speed_threshold:
            if open_stop is not None:
                events.append(self.close(progress, open_stop, sample.timestamp))
            return events

        if open_stop is None:
            opened = self._open(progress, sample)
        elif distance_meters(sample.coordinates, open_stop.position) > self.move_threshold_meters:
            events.append(self.close(progress, open_stop, sample.timestamp))
            opened = self._open(progress, sample)
        else:
            opened = None
        if opened is not None:
            events.append(opened)
        return events

    def close_open(self, progress: RouteProgress, at: datetime) -> list[TrackingEvent]:
        open_stop = progress.open_intermediate_stop()
        return [self.close(progress, open_stop, at)] if open_stop is not None else []

    def close(self, progress: RouteProgress, stop: IntermediateStop, at: datetime) -> TrackingEvent:
        stop.end_time = at
        stop.duration_minutes = round((at - stop.start_time).total_seconds() / 60)
        logger.info(f"Intermediate stop {stop.stop_id} on route {progress.route_id} closed after {stop.duration_minutes} min")
        return TrackingEvent(
            kind=EventKind.INTERMEDIATE_STOP_CLOSED,
            route_id=progress.route_id,
            driver_id=progress.driver_id,
            stop_index=progress.current_stop_index,
            timestamp=at,
            payload={"intermediateStopId": stop.stop_id, "duration": stop.duration_minutes},
        )

    def _open(self, progress: RouteProgress, sample: PositionSample) -> TrackingEvent | None:
        """Open an intermediate stop between the current and next stop; none on the final leg."""

        next_index = progress.current_stop_index + 1
        if next_index >= len(progress.stops):
            return None
        current = progress.stops[progress.current_stop_index]
        next_stop = progress.stops[next_index]

        stop = IntermediateStop(
            stop_id=f"intermediate-{progress.route_id}-{int(sample.timestamp.timestamp() * 1000)}",
            position=sample.coordinates,
            start_time=sample.timestamp,
            from_stop_id=current.stop_id,
            to_stop_id=next_stop.stop_id,
        )
        progress.intermediate_stops.append(stop)
        logger.info(
            f"Intermediate stop opened on route {progress.route_id} at "
            f"({sample.latitude:.5f}, {sample.longitude:.5f})"
        )
        return TrackingEvent(
            kind=EventKind.INTERMEDIATE_STOP_OPENED,
            route_id=progress.route_id,
            driver_id=progress.driver_id,
            stop_index=progress.current_stop_index,
            timestamp=sample.timestamp,
            payload={
                "intermediateStopId": stop.stop_id,
                "latitude": sample.latitude,
                "longitude": sample.longitude,
            },
        )
