"""Conversion between domain objects and persisted JSON records."""

from __future__ import annotations

from datetime import date, datetime
from typing import Any

from ..models.domain import (
    Coordinates,
    IntermediateStop,
    RouteProgress,
    RouteStatus,
    Stop,
    StopProgress,
    StopStatus,
)
from ..services.timeutils import format_clock, parse_clock, parse_timestamp


def _ts(value: datetime | None) -> str | None:
    return value.isoformat() if value is not None else None


def _parse_ts(value: str | None) -> datetime | None:
    return parse_timestamp(value) if value else None


def stop_progress_to_record(stop: StopProgress) -> dict[str, Any]:
    return {
        "stopId": stop.stop_id,
        "warehouseId": stop.warehouse_id,
        "order": stop.order,
        "plannedArrival": format_clock(stop.planned_arrival),
        "plannedDeparture": format_clock(stop.planned_departure),
        "status": stop.status.value,
        "enteredGeofenceAt": _ts(stop.entered_geofence_at),
        "exitedGeofenceAt": _ts(stop.exited_geofence_at),
        "actualArrival": _ts(stop.actual_arrival),
        "actualDeparture": _ts(stop.actual_departure),
    }


def stop_progress_from_record(record: dict[str, Any]) -> StopProgress:
    return StopProgress(
        stop_id=record["stopId"],
        warehouse_id=record["warehouseId"],
        order=int(record["order"]),
        planned_arrival=parse_clock(record.get("plannedArrival")),
        planned_departure=parse_clock(record.get("plannedDeparture")),
        status=StopStatus(record.get("status", StopStatus.PENDING.value)),
        entered_geofence_at=_parse_ts(record.get("enteredGeofenceAt")),
        exited_geofence_at=_parse_ts(record.get("exitedGeofenceAt")),
        actual_arrival=_parse_ts(record.get("actualArrival")),
        actual_departure=_parse_ts(record.get("actualDeparture")),
    )


def intermediate_stop_to_record(stop: IntermediateStop) -> dict[str, Any]:
    return {
        "id": stop.stop_id,
        "position": {"latitude": stop.position.latitude, "longitude": stop.position.longitude},
        "startTime": _ts(stop.start_time),
        "endTime": _ts(stop.end_time),
        "duration": stop.duration_minutes,
        "betweenStops": {"fromStopId": stop.from_stop_id, "toStopId": stop.to_stop_id},
    }


def intermediate_stop_from_record(record: dict[str, Any]) -> IntermediateStop:
    position = record["position"]
    between = record.get("betweenStops") or {}
    return IntermediateStop(
        stop_id=record["id"],
        position=Coordinates(float(position["latitude"]), float(position["longitude"])),
        start_time=parse_timestamp(record["startTime"]),
        from_stop_id=between.get("fromStopId", ""),
        to_stop_id=between.get("toStopId"),
        end_time=_parse_ts(record.get("endTime")),
        duration_minutes=record.get("duration"),
    )


def progress_to_record(progress: RouteProgress) -> dict[str, Any]:
    return {
        "routeId": progress.route_id,
        "driverId": progress.driver_id,
        "vehicleId": progress.vehicle_id,
        "date": progress.date.isoformat(),
        "status": progress.status.value,
        "currentStopIndex": progress.current_stop_index,
        "stops": [stop_progress_to_record(stop) for stop in progress.stops],
        "intermediateStops": [intermediate_stop_to_record(stop) for stop in progress.intermediate_stops],
        "startTime": _ts(progress.start_time),
        "endTime": _ts(progress.end_time),
        "lastPositionUpdateAt": _ts(progress.last_position_update_at),
    }


def progress_from_record(record: dict[str, Any]) -> RouteProgress:
    return RouteProgress(
        route_id=record["routeId"],
        driver_id=record["driverId"],
        vehicle_id=record.get("vehicleId", ""),
        date=date.fromisoformat(record["date"]),
        stops=[stop_progress_from_record(stop) for stop in record.get("stops", [])],
        status=RouteStatus(record.get("status", RouteStatus.NOT_STARTED.value)),
        current_stop_index=int(record.get("currentStopIndex", 0)),
        intermediate_stops=[intermediate_stop_from_record(stop) for stop in record.get("intermediateStops", [])],
        start_time=_parse_ts(record.get("startTime")),
        end_time=_parse_ts(record.get("endTime")),
        last_position_update_at=_parse_ts(record.get("lastPositionUpdateAt")),
    )


def stop_to_record(stop: Stop) -> dict[str, Any]:
    return {
        "stopId": stop.stop_id,
        "warehouseId": stop.warehouse_id,
        "order": stop.order,
        "plannedArrival": format_clock(stop.planned_arrival),
        "plannedDeparture": format_clock(stop.planned_departure),
        "hasLunchBreak": stop.has_lunch_break,
        "lunchDurationMinutes": stop.lunch_duration_minutes,
    }


def stop_from_record(record: dict[str, Any]) -> Stop:
    return Stop(
        stop_id=record["stopId"],
        warehouse_id=record["warehouseId"],
        order=int(record["order"]),
        planned_arrival=parse_clock(record.get("plannedArrival")),
        planned_departure=parse_clock(record.get("plannedDeparture")),
        has_lunch_break=bool(record.get("hasLunchBreak", False)),
        lunch_duration_minutes=int(record.get("lunchDurationMinutes") or 0),
    )
