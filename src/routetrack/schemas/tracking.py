"""Tracking request/response schemas."""

from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field, model_validator
from pydantic.alias_generators import to_camel

from ..models.domain import PositionSample, TriggerState
from ..services.timeutils import parse_timestamp


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class InitializeTrackingRequest(CamelModel):
    route_id: str
    driver_id: str
    vehicle_id: str


class PositionModel(CamelModel):
    latitude: float = Field(..., ge=-90, le=90)
    longitude: float = Field(..., ge=-180, le=180)
    speed: Optional[float] = Field(default=None, ge=0)


class PositionIngestRequest(CamelModel):
    vehicle_id: str
    position: PositionModel
    timestamp: datetime

    def to_sample(self) -> PositionSample:
        return PositionSample(
            vehicle_id=self.vehicle_id,
            latitude=self.position.latitude,
            longitude=self.position.longitude,
            speed=self.position.speed or 0.0,
            timestamp=parse_timestamp(self.timestamp),
        )


class TriggerStateModel(CamelModel):
    route_id: str
    current_stop_index: int
    next_action: str
    last_triggered_at: Optional[datetime] = None

    @classmethod
    def from_state(cls, state: TriggerState) -> "TriggerStateModel":
        return cls(
            route_id=state.route_id,
            current_stop_index=state.current_stop_index,
            next_action=state.next_action.value,
            last_triggered_at=state.last_triggered_at,
        )


class TriggerResponse(CamelModel):
    success: bool
    trigger_state: Optional[TriggerStateModel] = None
    description: str


class TrackingStatsModel(CamelModel):
    active_routes: int
    total_logs: int
    last_update: Optional[str] = None


class TrackingTimeSettingsModel(CamelModel):
    start_hour: int = Field(..., ge=0, le=23)
    end_hour: int = Field(..., ge=0, le=23)

    @model_validator(mode="after")
    def _check_order(self) -> "TrackingTimeSettingsModel":
        if self.start_hour >= self.end_hour:
            raise ValueError("startHour must be earlier than endHour")
        return self


class StartAllResponse(CamelModel):
    started: int
    route_progresses: List[Dict[str, Any]]
