"""Tracking control surface: initialization, position ingestion, manual triggers."""

from __future__ import annotations

import copy
import logging
import threading
from concurrent.futures import Future, ThreadPoolExecutor, wait
from datetime import date, datetime, tzinfo
from functools import lru_cache
from typing import Any, Callable

from ...config import settings
from ...data.registry import RouteLookup, VehicleLookup, WarehouseLookup
from ...models.domain import (
    PositionSample,
    Route,
    RouteProgress,
    StopProgress,
    StopStatus,
    TriggerAction,
    TriggerState,
    progress_key,
)
from ...persistence.gateway import PersistenceGateway
from ..estimator import TravelTimeEstimator
from ..geospatial import is_within_geofence
from ..gps import PositionProvider
from ..timeutils import tzinfo_from_name
from .engine import TrackingEngine
from .events import EventBus, EventKind, TrackingEvent
from .exceptions import MissingReferenceError, TriggerRejectedError
from .recalculation import RecalculationResult, ScheduleRecalculator
from .trigger import ManualTriggerController, is_route_for_today

logger = logging.getLogger(__name__)

Clock = Callable[[], datetime]


class TrackingService:
    """Owns the live RouteProgress records of the process.

    Every read-modify-write of one (route, driver, date) record happens under that
    key's lock. Schedule recalculations run on a worker pool, chained per route so
    they apply in the order their events were fixed.
    """

    def __init__(
        self,
        routes: RouteLookup,
        warehouses: WarehouseLookup,
        vehicles: VehicleLookup,
        gateway: PersistenceGateway,
        estimator: TravelTimeEstimator,
        position_provider: PositionProvider | None = None,
        bus: EventBus | None = None,
        engine: TrackingEngine | None = None,
        clock: Clock | None = None,
        tz: tzinfo | None = None,
        recalculation_workers: int | None = None,
    ) -> None:
        self.routes = routes
        self.warehouses = warehouses
        self.vehicles = vehicles
        self.gateway = gateway
        self.position_provider = position_provider
        self.bus = bus or EventBus()
        self.engine = engine or TrackingEngine()
        self.tz = tz or tzinfo_from_name(settings.timezone)
        self.clock = clock or (lambda: datetime.now(self.tz))
        self.recalculator = ScheduleRecalculator(estimator, warehouses, gateway, bus=self.bus, tz=self.tz)
        self.triggers = ManualTriggerController(self.engine.detector)
        self.tracking_start_hour = settings.tracking_start_hour
        self.tracking_end_hour = settings.tracking_end_hour

        self._executor = ThreadPoolExecutor(
            max_workers=recalculation_workers or settings.recalculation_workers,
            thread_name_prefix="recalculation",
        )
        self._active: dict[str, RouteProgress] = {}
        self._vehicle_keys: dict[str, str] = {}
        self._key_locks: dict[str, threading.RLock] = {}
        self._recalculation_tails: dict[str, Future] = {}
        self._registry_lock = threading.Lock()

    # ------------------------------------------------------------------ helpers

    def now(self) -> datetime:
        return self.clock().astimezone(self.tz)

    def today(self) -> date:
        return self.now().date()

    def _key_lock(self, key: str) -> threading.RLock:
        # Reentrant so event subscribers may read the record they are notified about.
        with self._registry_lock:
            return self._key_locks.setdefault(key, threading.RLock())

    def _require_route(self, route_id: str) -> Route:
        route = self.routes.get_route(route_id)
        if route is None:
            raise MissingReferenceError(f"Route {route_id} not found")
        return route

    def _new_progress(self, route: Route, driver_id: str, vehicle_id: str, day: date) -> RouteProgress:
        schedule = self.recalculator.current_schedule(route)
        stops = [
            StopProgress(
                stop_id=stop.stop_id,
                warehouse_id=stop.warehouse_id,
                order=stop.order,
                planned_arrival=stop.planned_arrival,
                planned_departure=stop.planned_departure,
            )
            for stop in schedule
        ]
        return RouteProgress(route_id=route.route_id, driver_id=driver_id, vehicle_id=vehicle_id, date=day, stops=stops)

    def _find_progress_key(self, route: Route, day: date) -> str | None:
        prefix = f"{route.route_id}:"
        suffix = f":{day.isoformat()}"
        with self._registry_lock:
            if route.driver_id:
                key = progress_key(route.route_id, route.driver_id, day)
                if key in self._active:
                    return key
            return next((key for key in self._active if key.startswith(prefix) and key.endswith(suffix)), None)

    # ------------------------------------------------------------------ control surface

    def initialize_tracking(self, route_id: str, driver_id: str, vehicle_id: str) -> RouteProgress:
        """Start tracking a route for a driver today. Existing records are returned unchanged."""

        route = self._require_route(route_id)
        if not route.stops:
            raise ValueError(f"Route {route_id} has no stops")
        day = self.today()
        key = progress_key(route_id, driver_id, day)

        with self._key_lock(key):
            progress = self._active.get(key) or self.gateway.load_progress(route_id, driver_id, day)
            if progress is None:
                progress = self._new_progress(route, driver_id, vehicle_id, day)
                self.gateway.save_progress(progress)
                logger.info(f"Tracking initialized for route {route_id}, driver {driver_id}, vehicle {vehicle_id}")
            with self._registry_lock:
                self._active[key] = progress
                if not progress.is_completed:
                    self._vehicle_keys[progress.vehicle_id] = key
            return copy.deepcopy(progress)

    def ingest_position(self, sample: PositionSample) -> RouteProgress | None:
        """Feed one position sample through the tracking engine.

        Returns the updated progress, or None when the vehicle is not tracked or
        reference data for the sample is missing.
        """

        with self._registry_lock:
            key = self._vehicle_keys.get(sample.vehicle_id)
        if key is None:
            logger.debug(f"Vehicle {sample.vehicle_id} is not actively tracked")
            return None

        with self._key_lock(key):
            progress = self._active.get(key)
            if progress is None:
                return None
            route = self.routes.get_route(progress.route_id)
            if route is None:
                logger.warning(f"Dropping sample for vehicle {sample.vehicle_id}: route {progress.route_id} not found")
                return None
            stop = progress.current_stop
            warehouse = self.warehouses.get_warehouse(stop.warehouse_id) if stop is not None else None
            if stop is not None and warehouse is None:
                logger.warning(
                    f"Dropping sample for vehicle {sample.vehicle_id}: warehouse {stop.warehouse_id} not found"
                )
                return None

            events = self.engine.apply_sample(progress, sample, warehouse)
            if events or progress.last_position_update_at == sample.timestamp:
                self.gateway.save_progress(progress)
            self._log_sample(progress, sample, warehouse)
            if progress.is_completed:
                with self._registry_lock:
                    self._vehicle_keys.pop(progress.vehicle_id, None)
                self.triggers.forget(progress.route_id)
            snapshot = copy.deepcopy(progress)
            self._dispatch(route, key, events)

        return snapshot

    def manual_trigger(self, route_id: str) -> bool:
        """Record the next arrival or departure for a route now.

        Raises TriggerRejectedError with an operator-facing reason when the route
        cannot be triggered, and MissingReferenceError for an unknown route;
        nothing is changed in either case.
        """

        route = self._require_route(route_id)
        now = self.now()
        if not is_route_for_today(route, now.date()):
            raise TriggerRejectedError(route_id, "Route is not scheduled for today.")
        key = self._find_progress_key(route, now.date())
        if key is None:
            raise TriggerRejectedError(route_id, "Tracking has not been initialized for this route today.")

        with self._key_lock(key):
            progress = self._active[key]
            outcome = self.triggers.trigger(route, progress, now)
            self.gateway.save_progress(progress)
            if progress.is_completed:
                with self._registry_lock:
                    self._vehicle_keys.pop(progress.vehicle_id, None)

            if outcome.action is TriggerAction.DEPARTURE:
                job = self.recalculator.recalculate_from_departure
            else:
                job = self.recalculator.recalculate_from_arrival
            # Queued before the key lock is released so no sample can slip in ahead.
            future = self._schedule(route, key, job, outcome.stop_index, outcome.at)
            self.bus.publish_all(outcome.events)

        result = future.result()
        if result is not None and not result.succeeded:
            logger.warning(f"Manual trigger on route {route_id} recorded, but recalculation failed: {result.error}")
        return True

    def get_progress(self, route_id: str, driver_id: str, day: date | str) -> RouteProgress | None:
        day_value = date.fromisoformat(day) if isinstance(day, str) else day
        key = progress_key(route_id, driver_id, day_value)
        with self._key_lock(key):
            progress = self._active.get(key)
            if progress is not None:
                return copy.deepcopy(progress)
        return self.gateway.load_progress(route_id, driver_id, day_value)

    def stop_all_tracking(self) -> None:
        """Stop tracking every route, waiting for queued recalculations and flushing records."""

        with self._registry_lock:
            pending = list(self._recalculation_tails.values())
            keys = list(self._active)
        if pending:
            wait(pending)

        for key in keys:
            with self._key_lock(key):
                progress = self._active.pop(key, None)
                if progress is not None:
                    self.gateway.save_progress(progress)
        with self._registry_lock:
            self._vehicle_keys.clear()
            self._recalculation_tails.clear()
        if not self.gateway.flush():
            logger.error("Tracking stopped with unflushed records; they remain in memory until the store recovers")
        logger.info(f"Stopped tracking {len(keys)} route(s)")

    def wait_for_recalculations(self, timeout: float | None = None) -> bool:
        """Block until every queued recalculation has run. Returns False on timeout."""
        with self._registry_lock:
            pending = list(self._recalculation_tails.values())
        done, not_done = wait(pending, timeout=timeout)
        return not not_done

    def close(self) -> None:
        self.stop_all_tracking()
        self._executor.shutdown(wait=True)

    # ------------------------------------------------------------------ fleet-wide operations

    def is_within_tracking_hours(self, moment: datetime | None = None) -> bool:
        hour = (moment or self.now()).hour
        return self.tracking_start_hour <= hour <= self.tracking_end_hour

    def start_tracking_all_routes(self) -> list[RouteProgress]:
        """Initialize tracking for every active route scheduled today with a driver and vehicle."""

        if not self.is_within_tracking_hours():
            logger.info(
                f"Outside tracking hours ({self.tracking_start_hour}:00-{self.tracking_end_hour}:59); not starting tracking"
            )
            return []

        today = self.today()
        started: list[RouteProgress] = []
        for route in self.routes.list_active_routes():
            if not is_route_for_today(route, today):
                continue
            if not route.driver_id:
                logger.debug(f"Route {route.route_id} has no assigned driver")
                continue
            vehicle_id = route.vehicle_id
            if not vehicle_id:
                vehicle = self.vehicles.vehicle_for_driver(route.driver_id)
                vehicle_id = vehicle.vehicle_id if vehicle else None
            if not vehicle_id:
                logger.warning(f"No vehicle for route {route.route_id} (driver {route.driver_id}); skipping")
                continue
            try:
                started.append(self.initialize_tracking(route.route_id, route.driver_id, vehicle_id))
            except (MissingReferenceError, ValueError) as e:
                logger.warning(f"Could not start tracking route {route.route_id}: {e}")
        logger.info(f"Tracking active for {len(started)} route(s)")
        return started

    def tracked_vehicles(self) -> list[tuple[str, str]]:
        """(vehicle_id, device_id) for every vehicle on an uncompleted route."""

        with self._registry_lock:
            vehicle_ids = list(self._vehicle_keys)
        tracked: list[tuple[str, str]] = []
        for vehicle_id in vehicle_ids:
            vehicle = self.vehicles.get_vehicle(vehicle_id)
            tracked.append((vehicle_id, (vehicle.device_id if vehicle and vehicle.device_id else vehicle_id)))
        return tracked

    def poll_vehicle(self, vehicle_id: str, device_id: str) -> RouteProgress | None:
        if self.position_provider is None:
            return None
        sample = self.position_provider.fetch_position(vehicle_id, device_id)
        if sample is None:
            return None
        return self.ingest_position(sample)

    def get_active_tracking_routes(self) -> list[RouteProgress]:
        with self._registry_lock:
            keys = list(self._active)
        active: list[RouteProgress] = []
        for key in keys:
            with self._key_lock(key):
                progress = self._active.get(key)
                if progress is not None and not progress.is_completed:
                    active.append(copy.deepcopy(progress))
        return active

    def is_tracking_active(self) -> bool:
        return bool(self.get_active_tracking_routes())

    def get_tracking_stats(self) -> dict[str, Any]:
        active = self.get_active_tracking_routes()
        updates = [p.last_position_update_at for p in active if p.last_position_update_at is not None]
        return {
            "activeRoutes": len(active),
            "totalLogs": len(self.gateway.get_gps_logs(self.today())),
            "lastUpdate": max(updates).isoformat() if updates else None,
        }

    def get_tracking_time_settings(self) -> dict[str, int]:
        return {"startHour": self.tracking_start_hour, "endHour": self.tracking_end_hour}

    def set_tracking_time_settings(self, start_hour: int, end_hour: int) -> None:
        if not (0 <= start_hour <= 23 and 0 <= end_hour <= 23):
            raise ValueError("Tracking hours must be between 0 and 23.")
        if start_hour >= end_hour:
            raise ValueError("Tracking start hour must be earlier than the end hour.")
        self.tracking_start_hour = start_hour
        self.tracking_end_hour = end_hour
        logger.info(f"Tracking hours set to {start_hour}:00-{end_hour}:59")

    def export_tracking_data(self, day: date | str | None = None) -> dict[str, Any]:
        return self.gateway.export_tracking_data(day or self.today())

    # ------------------------------------------------------------------ trigger state

    def _today_progress(self, route: Route) -> RouteProgress | None:
        key = self._find_progress_key(route, self.today())
        if key is None:
            return None
        with self._key_lock(key):
            progress = self._active.get(key)
            return copy.deepcopy(progress) if progress is not None else None

    def get_trigger_state(self, route_id: str) -> TriggerState | None:
        route = self._require_route(route_id)
        progress = self._today_progress(route)
        if progress is None or progress.is_completed:
            return self.triggers.get_state(route_id)
        return self.triggers.state_for(progress)

    def reset_trigger(self, route_id: str) -> None:
        self._require_route(route_id)
        self.triggers.reset(route_id)

    def describe_next_action(self, route_id: str) -> str:
        route = self._require_route(route_id)
        return self.triggers.describe_next_action(route, self._today_progress(route))

    # ------------------------------------------------------------------ recalculation

    def _dispatch(self, route: Route, key: str, events: list[TrackingEvent]) -> None:
        """Queue recalculations for fixed events, then publish. Caller holds the key lock."""
        for event in events:
            if event.kind is EventKind.ARRIVAL_FIXED:
                self._schedule(route, key, self.recalculator.recalculate_from_arrival, event.stop_index, event.timestamp)
            elif event.kind is EventKind.DEPARTURE_FIXED:
                self._schedule(route, key, self.recalculator.recalculate_from_departure, event.stop_index, event.timestamp)
        self.bus.publish_all(events)

    def _schedule(self, route: Route, key: str, job, stop_index: int, at: datetime) -> Future:
        with self._registry_lock:
            previous = self._recalculation_tails.get(route.route_id)
            future = self._executor.submit(self._run_recalculation, previous, key, job, route, stop_index, at)
            self._recalculation_tails[route.route_id] = future
        return future

    def _run_recalculation(
        self, previous: Future | None, key: str, job, route: Route, stop_index: int, at: datetime
    ) -> RecalculationResult | None:
        if previous is not None:
            wait([previous])
        # The submitter holds the key lock until the fixed events are published.
        with self._key_lock(key):
            pass
        try:
            result = job(route, stop_index, at)
        except Exception:
            logger.exception(f"Recalculation for route {route.route_id} failed")
            return None
        self._apply_schedule(route.route_id, result)
        return result

    def _apply_schedule(self, route_id: str, result: RecalculationResult) -> None:
        """Copy recalculated planned times onto the live, uncompleted progress records of the route."""

        planned = {stop.stop_id: stop for stop in result.stops}
        with self._registry_lock:
            keys = [key for key in self._active if key.startswith(f"{route_id}:")]
        for key in keys:
            with self._key_lock(key):
                progress = self._active.get(key)
                if progress is None or progress.is_completed:
                    continue
                for stop_progress in progress.stops:
                    stop = planned.get(stop_progress.stop_id)
                    if stop is not None:
                        stop_progress.planned_arrival = stop.planned_arrival
                        stop_progress.planned_departure = stop.planned_departure
                self.gateway.save_progress(progress)

    # ------------------------------------------------------------------ GPS log

    def _log_sample(self, progress: RouteProgress, sample: PositionSample, warehouse) -> None:
        stop = progress.current_stop
        local = sample.timestamp.astimezone(self.tz)
        inside = bool(warehouse) and is_within_geofence(
            sample.coordinates, warehouse.coordinates, self.engine.geofence_radius_meters
        )
        self.gateway.append_gps_log(
            {
                "timestamp": sample.timestamp.isoformat(),
                "vehicleId": sample.vehicle_id,
                "routeId": progress.route_id,
                "driverId": progress.driver_id,
                "coordinates": {"latitude": sample.latitude, "longitude": sample.longitude},
                "speed": sample.speed,
                "currentStopId": stop.stop_id if stop else None,
                "currentStopStatus": stop.status.value if stop else StopStatus.DEPARTED.value,
                "isWithinGeofence": inside,
                "date": local.date().isoformat(),
            }
        )


@lru_cache(maxsize=1)
def get_tracking_service() -> TrackingService:
    """Process-wide tracking service wired from settings."""

    from ...data.registry import InMemoryRegistry
    from ...data.route_repository import SupabaseRegistry
    from ...db.supabase import get_supabase_client
    from ...persistence.store import build_store
    from ..estimator import build_default_estimator
    from ..gps import Trak4Client

    if get_supabase_client() is not None:
        registry = SupabaseRegistry()
    else:
        logger.warning("Supabase not configured; route and vehicle registry is empty")
        registry = InMemoryRegistry()

    try:
        position_provider = Trak4Client()
    except ValueError as e:
        logger.warning(f"GPS polling disabled: {e}")
        position_provider = None

    return TrackingService(
        routes=registry,
        warehouses=registry,
        vehicles=registry,
        gateway=PersistenceGateway(build_store()),
        estimator=build_default_estimator(),
        position_provider=position_provider,
    )
