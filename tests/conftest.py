from pathlib import Path

import pytest

from factories import TZ, WAREHOUSES, DummyProvider, FixedClock, at, make_route, make_vehicles
from routetrack.data.registry import InMemoryRegistry
from routetrack.persistence.gateway import PersistenceGateway
from routetrack.persistence.store import FileKeyValueStore
from routetrack.services.estimator import TravelTimeEstimator
from routetrack.services.tracking import EventBus, TrackingService


@pytest.fixture
def registry() -> InMemoryRegistry:
    return InMemoryRegistry(routes=[make_route()], warehouses=WAREHOUSES, vehicles=make_vehicles())


@pytest.fixture
def gateway(tmp_path: Path) -> PersistenceGateway:
    return PersistenceGateway(FileKeyValueStore(root=tmp_path))


@pytest.fixture
def provider() -> DummyProvider:
    return DummyProvider(minutes=20)


@pytest.fixture
def clock() -> FixedClock:
    return FixedClock(at(8, 0))


@pytest.fixture
def events() -> list:
    return []


@pytest.fixture
def service(registry, gateway, provider, clock, events):
    bus = EventBus()
    bus.subscribe(events.append)
    tracking = TrackingService(
        routes=registry,
        warehouses=registry,
        vehicles=registry,
        gateway=gateway,
        estimator=TravelTimeEstimator(provider, fallback_minutes=15),
        bus=bus,
        clock=clock,
        tz=TZ,
        recalculation_workers=2,
    )
    yield tracking
    tracking.close()
