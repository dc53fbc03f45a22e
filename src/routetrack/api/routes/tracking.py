"""Route progress tracking endpoints."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...persistence.records import progress_to_record
from ...schemas.tracking import (
    InitializeTrackingRequest,
    PositionIngestRequest,
    StartAllResponse,
    TrackingStatsModel,
    TrackingTimeSettingsModel,
    TriggerResponse,
    TriggerStateModel,
)
from ...services.tracking import MissingReferenceError, TrackingService, TriggerRejectedError, get_tracking_service

router = APIRouter(prefix="/tracking", tags=["tracking"])

logger = logging.getLogger(__name__)


def _trigger_response(service: TrackingService, route_id: str, success: bool) -> TriggerResponse:
    state = service.get_trigger_state(route_id)
    return TriggerResponse(
        success=success,
        trigger_state=TriggerStateModel.from_state(state) if state else None,
        description=service.describe_next_action(route_id),
    )


@router.post("/initialize", status_code=status.HTTP_200_OK)
def initialize_tracking(
    payload: InitializeTrackingRequest,
    service: TrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    try:
        progress = service.initialize_tracking(payload.route_id, payload.driver_id, payload.vehicle_id)
    except MissingReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error initializing tracking for route {payload.route_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to initialize tracking: {str(exc)}",
        ) from exc
    return progress_to_record(progress)


@router.post("/positions", status_code=status.HTTP_200_OK)
def ingest_position(
    payload: PositionIngestRequest,
    service: TrackingService = Depends(get_tracking_service),
) -> Optional[dict[str, Any]]:
    try:
        progress = service.ingest_position(payload.to_sample())
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error ingesting position for vehicle {payload.vehicle_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to ingest position: {str(exc)}",
        ) from exc
    return progress_to_record(progress) if progress else None


@router.post("/routes/{route_id}/trigger", response_model=TriggerResponse, status_code=status.HTTP_200_OK)
def trigger_route(route_id: str, service: TrackingService = Depends(get_tracking_service)) -> TriggerResponse:
    try:
        success = service.manual_trigger(route_id)
    except TriggerRejectedError as exc:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=exc.reason) from exc
    except MissingReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    except Exception as exc:
        logging.exception(f"Error triggering route {route_id}: {exc}")
        raise HTTPException(
            status_code=status.HTTP_500_INTERNAL_SERVER_ERROR,
            detail=f"Failed to trigger route: {str(exc)}",
        ) from exc
    return _trigger_response(service, route_id, success)


@router.get("/routes/{route_id}/trigger", response_model=TriggerResponse, status_code=status.HTTP_200_OK)
def get_trigger(route_id: str, service: TrackingService = Depends(get_tracking_service)) -> TriggerResponse:
    try:
        return _trigger_response(service, route_id, True)
    except MissingReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc


@router.delete("/routes/{route_id}/trigger", status_code=status.HTTP_200_OK)
def reset_trigger(route_id: str, service: TrackingService = Depends(get_tracking_service)) -> dict:
    try:
        service.reset_trigger(route_id)
    except MissingReferenceError as exc:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(exc)) from exc
    return {"success": True, "message": f"Trigger state reset for route {route_id}"}


@router.get("/progress/{route_id}/{driver_id}/{day}", status_code=status.HTTP_200_OK)
def get_progress(
    route_id: str,
    driver_id: str,
    day: date,
    service: TrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    progress = service.get_progress(route_id, driver_id, day)
    if progress is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"No progress for route {route_id}, driver {driver_id} on {day.isoformat()}",
        )
    return progress_to_record(progress)


@router.post("/stop-all", status_code=status.HTTP_200_OK)
def stop_all(service: TrackingService = Depends(get_tracking_service)) -> dict:
    service.stop_all_tracking()
    return {"success": True, "message": "Tracking stopped for all routes"}


@router.post("/start-all", response_model=StartAllResponse, status_code=status.HTTP_200_OK)
def start_all(service: TrackingService = Depends(get_tracking_service)) -> StartAllResponse:
    progresses = service.start_tracking_all_routes()
    return StartAllResponse(started=len(progresses), route_progresses=[progress_to_record(p) for p in progresses])


@router.get("/stats", response_model=TrackingStatsModel, status_code=status.HTTP_200_OK)
def tracking_stats(service: TrackingService = Depends(get_tracking_service)) -> TrackingStatsModel:
    return TrackingStatsModel.model_validate(service.get_tracking_stats())


@router.get("/export", status_code=status.HTTP_200_OK)
def export_tracking_data(
    day: Optional[date] = Query(default=None, alias="date"),
    service: TrackingService = Depends(get_tracking_service),
) -> dict[str, Any]:
    return service.export_tracking_data(day)


@router.get("/settings", response_model=TrackingTimeSettingsModel, status_code=status.HTTP_200_OK)
def get_tracking_settings(service: TrackingService = Depends(get_tracking_service)) -> TrackingTimeSettingsModel:
    hours = service.get_tracking_time_settings()
    return TrackingTimeSettingsModel(start_hour=hours["startHour"], end_hour=hours["endHour"])


@router.put("/settings", response_model=TrackingTimeSettingsModel, status_code=status.HTTP_200_OK)
def update_tracking_settings(
    payload: TrackingTimeSettingsModel,
    service: TrackingService = Depends(get_tracking_service),
) -> TrackingTimeSettingsModel:
    try:
        service.set_tracking_time_settings(payload.start_hour, payload.end_hour)
    except ValueError as exc:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(exc)) from exc
    return payload
