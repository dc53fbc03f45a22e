"""Read-only registry interfaces consumed by the tracking engine."""

from __future__ import annotations

from typing import Iterable, Protocol

from ..models.domain import Route, Vehicle, Warehouse


class WarehouseLookup(Protocol):
    def get_warehouse(self, warehouse_id: str) -> Warehouse | None: ...


class RouteLookup(Protocol):
    def get_route(self, route_id: str) -> Route | None: ...

    def list_active_routes(self) -> list[Route]: ...


class VehicleLookup(Protocol):
    def get_vehicle(self, vehicle_id: str) -> Vehicle | None: ...

    def vehicle_for_driver(self, driver_id: str) -> Vehicle | None: ...


class InMemoryRegistry:
    """Route, warehouse and vehicle lookups over fixed records."""

    def __init__(
        self,
        routes: Iterable[Route] = (),
        warehouses: Iterable[Warehouse] = (),
        vehicles: Iterable[Vehicle] = (),
    ) -> None:
        self._routes = {route.route_id: route for route in routes}
        self._warehouses = {warehouse.warehouse_id: warehouse for warehouse in warehouses}
        self._vehicles = {vehicle.vehicle_id: vehicle for vehicle in vehicles}

    def get_route(self, route_id: str) -> Route | None:
        return self._routes.get(route_id)

    def list_active_routes(self) -> list[Route]:
        return [route for route in self._routes.values() if route.is_active]

    def get_warehouse(self, warehouse_id: str) -> Warehouse | None:
        return self._warehouses.get(warehouse_id)

    def get_vehicle(self, vehicle_id: str) -> Vehicle | None:
        return self._vehicles.get(vehicle_id)

    def vehicle_for_driver(self, driver_id: str) -> Vehicle | None:
        return next(
            (vehicle for vehicle in self._vehicles.values() if vehicle.assigned_driver_id == driver_id),
            None,
        )
