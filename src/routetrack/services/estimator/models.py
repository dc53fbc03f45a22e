"""Travel-time estimation models."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Optional, Protocol

from ...models.domain import TrafficScenario


@dataclass(frozen=True, slots=True)
class TravelTimeRequest:
    origin_address: str
    destination_address: str
    traffic_scenario: TrafficScenario
    departure_time: datetime
    speed_limit: int
    weekday: Optional[int] = None


@dataclass(frozen=True, slots=True)
class TravelTimeResponse:
    success: bool
    travel_time_minutes: Optional[float] = None
    distance_meters: Optional[float] = None
    traffic_delay_minutes: Optional[float] = None


@dataclass(frozen=True, slots=True)
class TravelEstimate:
    """Outcome of the adapter: always carries a usable duration."""

    minutes: float
    used_fallback: bool


class TravelTimeProvider(Protocol):
    def travel_time(self, request: TravelTimeRequest) -> TravelTimeResponse: ...
