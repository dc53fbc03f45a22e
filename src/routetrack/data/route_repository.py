"""Supabase-backed route and vehicle registry."""

from __future__ import annotations

import logging
from datetime import date
from typing import Any

from ..db.supabase import get_supabase_client
from ..models.domain import Route, Stop, Vehicle, Warehouse
from ..services.timeutils import parse_clock
from .warehouse_repository import get_warehouses

logger = logging.getLogger(__name__)


def _stop_from_row(row: dict[str, Any]) -> Stop:
    return Stop(
        stop_id=str(row["id"]),
        warehouse_id=str(row["warehouse_id"]),
        order=int(row["order"]),
        planned_arrival=parse_clock(row.get("arrival_time")),
        planned_departure=parse_clock(row.get("departure_time")),
        has_lunch_break=bool(row.get("has_lunch")),
        lunch_duration_minutes=int(row.get("lunch_duration") or 0),
    )


def _route_from_row(row: dict[str, Any], stop_rows: list[dict[str, Any]]) -> Route:
    route_date = row.get("date")
    return Route(
        route_id=str(row["id"]),
        name=str(row.get("name") or row["id"]),
        stops=[_stop_from_row(stop_row) for stop_row in stop_rows],
        driver_id=row.get("driver_id"),
        vehicle_id=row.get("vehicle_id"),
        date=date.fromisoformat(route_date) if isinstance(route_date, str) and route_date else None,
        weekday=row.get("weekday"),
        vehicle_speed_limit=row.get("vehicle_speed_limit"),
        is_active=bool(row.get("is_active", True)),
    )


class SupabaseRegistry:
    """Route, warehouse and vehicle lookups over the fleet management tables.

    Lookups return None when the database is not configured or a query fails;
    callers treat that as missing reference data.
    """

    def get_route(self, route_id: str) -> Route | None:
        supabase = get_supabase_client()
        if not supabase:
            return None
        try:
            response = supabase.table("routes").select("*").eq("id", route_id).limit(1).execute()
            if not response.data:
                return None
            stops = supabase.table("route_stops").select("*").eq("route_id", route_id).execute()
            return _route_from_row(response.data[0], stops.data or [])
        except Exception as e:
            logger.error(f"Failed to load route '{route_id}': {e}")
            return None

    def list_active_routes(self) -> list[Route]:
        supabase = get_supabase_client()
        if not supabase:
            return []
        try:
            response = supabase.table("routes").select("*").eq("is_active", True).execute()
            rows = response.data or []
            if not rows:
                return []
            route_ids = [row["id"] for row in rows]
            stops_response = supabase.table("route_stops").select("*").in_("route_id", route_ids).execute()
        except Exception as e:
            logger.error(f"Failed to load active routes: {e}")
            return []

        stops_by_route: dict[str, list[dict[str, Any]]] = {}
        for stop_row in stops_response.data or []:
            stops_by_route.setdefault(str(stop_row["route_id"]), []).append(stop_row)

        routes: list[Route] = []
        for row in rows:
            try:
                routes.append(_route_from_row(row, stops_by_route.get(str(row["id"]), [])))
            except (KeyError, ValueError, TypeError) as e:
                logger.warning(f"Skipping invalid route row {row.get('id')}: {e}")
        return routes

    def get_warehouse(self, warehouse_id: str) -> Warehouse | None:
        try:
            warehouses = get_warehouses()
        except (FileNotFoundError, ValueError) as e:
            logger.error(f"Warehouse registry unavailable: {e}")
            return None
        return next((w for w in warehouses if w.warehouse_id == warehouse_id), None)

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        return self._first_vehicle("id", vehicle_id)

    def vehicle_for_driver(self, driver_id: str) -> Vehicle | None:
        return self._first_vehicle("assigned_driver_id", driver_id)

    def _first_vehicle(self, column: str, value: str) -> Vehicle | None:
        supabase = get_supabase_client()
        if not supabase:
            return None
        try:
            response = supabase.table("vehicles").select("*").eq(column, value).limit(1).execute()
        except Exception as e:
            logger.error(f"Failed to load vehicle by {column}='{value}': {e}")
            return None
        if not response.data:
            return None
        row = response.data[0]
        return Vehicle(
            vehicle_id=str(row["id"]),
            device_id=str(row["device_id"]) if row.get("device_id") is not None else None,
            assigned_driver_id=row.get("assigned_driver_id"),
            speed_limit=row.get("speed_limit"),
        )
