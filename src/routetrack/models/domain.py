"""Domain models for routes, warehouses and live route progress."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, time
from enum import Enum
from typing import Optional


class TrafficScenario(str, Enum):
    OPTIMISTIC = "optimistic"
    BEST_GUESS = "best_guess"
    PESSIMISTIC = "pessimistic"


class StopStatus(str, Enum):
    PENDING = "pending"
    EN_ROUTE = "en_route"
    ARRIVED = "arrived"
    DEPARTED = "departed"
    # Terminal marker set by the manual trigger, equivalent to DEPARTED.
    COMPLETED = "completed"

    @property
    def has_departed(self) -> bool:
        return self in (StopStatus.DEPARTED, StopStatus.COMPLETED)


class RouteStatus(str, Enum):
    NOT_STARTED = "not_started"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"


class TriggerAction(str, Enum):
    DEPARTURE = "departure"
    ARRIVAL = "arrival"


@dataclass(frozen=True, slots=True)
class Coordinates:
    latitude: float
    longitude: float


@dataclass(slots=True)
class Warehouse:
    """A warehouse with the geofence center used for arrival/departure detection."""

    warehouse_id: str
    name: str
    latitude: float
    longitude: float
    full_address: Optional[str] = None
    traffic_scenario: TrafficScenario = TrafficScenario.BEST_GUESS

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)

    @property
    def address(self) -> str:
        return self.full_address or self.name


@dataclass(slots=True)
class Stop:
    """One planned warehouse visit. Planned times are local wall-clock times."""

    stop_id: str
    warehouse_id: str
    order: int
    planned_arrival: Optional[time] = None
    planned_departure: Optional[time] = None
    has_lunch_break: bool = False
    lunch_duration_minutes: int = 0


@dataclass(slots=True)
class Route:
    route_id: str
    name: str
    stops: list[Stop]
    driver_id: Optional[str] = None
    vehicle_id: Optional[str] = None
    date: Optional[date] = None
    # 0 = Monday ... 6 = Sunday, as in datetime.weekday()
    weekday: Optional[int] = None
    vehicle_speed_limit: Optional[int] = None
    is_active: bool = True

    def ordered_stops(self) -> list[Stop]:
        return sorted(self.stops, key=lambda stop: stop.order)


@dataclass(slots=True)
class Vehicle:
    vehicle_id: str
    device_id: Optional[str] = None
    assigned_driver_id: Optional[str] = None
    speed_limit: Optional[int] = None


@dataclass(frozen=True, slots=True)
class PositionSample:
    """A single GPS fix for a vehicle."""

    vehicle_id: str
    latitude: float
    longitude: float
    timestamp: datetime
    speed: float = 0.0

    @property
    def coordinates(self) -> Coordinates:
        return Coordinates(self.latitude, self.longitude)


@dataclass(slots=True)
class StopProgress:
    stop_id: str
    warehouse_id: str
    order: int
    planned_arrival: Optional[time] = None
    planned_departure: Optional[time] = None
    status: StopStatus = StopStatus.PENDING
    entered_geofence_at: Optional[datetime] = None
    exited_geofence_at: Optional[datetime] = None
    actual_arrival: Optional[datetime] = None
    actual_departure: Optional[datetime] = None


@dataclass(slots=True)
class IntermediateStop:
    """An unplanned stationary period between two planned stops."""

    stop_id: str
    position: Coordinates
    start_time: datetime
    from_stop_id: str
    to_stop_id: Optional[str] = None
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    @property
    def is_open(self) -> bool:
        return self.end_time is None


@dataclass(slots=True)
class RouteProgress:
    """Live tracking record for one driver executing one route on one day."""

    route_id: str
    driver_id: str
    vehicle_id: str
    date: date
    stops: list[StopProgress]
    status: RouteStatus = RouteStatus.NOT_STARTED
    current_stop_index: int = 0
    intermediate_stops: list[IntermediateStop] = field(default_factory=list)
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    last_position_update_at: Optional[datetime] = None

    @property
    def key(self) -> str:
        return progress_key(self.route_id, self.driver_id, self.date)

    @property
    def current_stop(self) -> Optional[StopProgress]:
        if 0 <= self.current_stop_index < len(self.stops):
            return self.stops[self.current_stop_index]
        return None

    @property
    def is_completed(self) -> bool:
        return self.status is RouteStatus.COMPLETED

    def open_intermediate_stop(self) -> Optional[IntermediateStop]:
        return next((stop for stop in self.intermediate_stops if stop.is_open), None)


@dataclass(slots=True)
class TriggerState:
    """Manual trigger alternation for one route. Not persisted."""

    route_id: str
    current_stop_index: int = 0
    next_action: TriggerAction = TriggerAction.DEPARTURE
    last_triggered_at: Optional[datetime] = None


def progress_key(route_id: str, driver_id: str, day: date | str) -> str:
    day_str = day.isoformat() if isinstance(day, date) else day
    return f"{route_id}:{driver_id}:{day_str}"
