from datetime import time

import pytest

from factories import TZ, WAREHOUSES, DummyProvider, at, make_route
from routetrack.data.registry import InMemoryRegistry
from routetrack.models.domain import Stop
from routetrack.services.estimator import TravelTimeEstimator
from routetrack.services.tracking import EventBus, EventKind, ScheduleRecalculator


@pytest.fixture
def published() -> list:
    return []


def _recalculator(gateway, provider, published, warehouses=WAREHOUSES) -> ScheduleRecalculator:
    bus = EventBus()
    bus.subscribe(published.append)
    return ScheduleRecalculator(
        TravelTimeEstimator(provider, fallback_minutes=15),
        InMemoryRegistry(warehouses=warehouses),
        gateway,
        bus=bus,
        tz=TZ,
        window_start=time(7, 0),
        window_end=time(20, 0),
        base_dwell_minutes=30,
        default_speed_limit=55,
    )


def _times(stops: list[Stop]) -> list[tuple]:
    return [(stop.planned_arrival, stop.planned_departure) for stop in stops]


def test_departure_cascades_through_downstream_stops(gateway, published) -> None:
    provider = DummyProvider(minutes=20)
    recalculator = _recalculator(gateway, provider, published)

    result = recalculator.recalculate_from_departure(make_route(), 0, at(8, 5))

    assert result.succeeded
    assert result.updated_indices == [1, 2]
    assert _times(result.stops) == [
        (time(8, 0), time(8, 5)),
        (time(8, 25), time(8, 55)),
        (time(9, 15), time(9, 45)),
    ]
    assert _times(gateway.load_route_stops("R1")) == _times(result.stops)
    assert [request.destination_address for request in provider.requests] == ["Central Depot", "South Dock"]
    assert provider.requests[0].departure_time == at(8, 5)
    assert provider.requests[0].speed_limit == 55
    assert published[-1].kind is EventKind.SCHEDULE_UPDATED


def test_lunch_break_extends_dwell(gateway, published) -> None:
    route = make_route()
    route.stops[1].has_lunch_break = True
    route.stops[1].lunch_duration_minutes = 30
    recalculator = _recalculator(gateway, DummyProvider(minutes=20), published)

    result = recalculator.recalculate_from_departure(route, 0, at(8, 5))

    assert _times(result.stops)[1] == (time(8, 25), time(9, 25))
    assert _times(result.stops)[2] == (time(9, 45), time(10, 15))


def test_estimator_failure_uses_fallback_and_continues(gateway, published) -> None:
    provider = DummyProvider(minutes=20, failing_destinations=("Central Depot",))
    recalculator = _recalculator(gateway, provider, published)

    result = recalculator.recalculate_from_departure(make_route(), 0, at(8, 5))

    assert result.succeeded
    assert result.fallback_indices == [1]
    assert _times(result.stops)[1] == (time(8, 20), time(8, 50))
    assert _times(result.stops)[2] == (time(9, 10), time(9, 40))


def test_recalculation_is_deterministic_on_replay(gateway, published) -> None:
    recalculator = _recalculator(gateway, DummyProvider(minutes=20), published)
    route = make_route()

    first = _times(recalculator.recalculate_from_departure(route, 0, at(8, 5)).stops)
    second = _times(recalculator.recalculate_from_departure(route, 0, at(8, 5)).stops)

    assert first == second
    assert _times(gateway.load_route_stops("R1")) == first


def test_arrivals_are_clamped_into_operating_window(gateway, published) -> None:
    recalculator = _recalculator(gateway, DummyProvider(minutes=60), published)

    late = recalculator.recalculate_from_departure(make_route(), 0, at(19, 30)).stops
    assert _times(late)[1] == (time(19, 59), time(20, 29))
    assert _times(late)[2] == (time(19, 59), time(20, 29))

    early = recalculator.recalculate_from_departure(make_route(), 0, at(5, 0)).stops
    assert _times(early)[1] == (time(7, 0), time(7, 30))
    assert _times(early)[2] == (time(8, 30), time(9, 0))

    for stop in late + early:
        assert time(7, 0) <= stop.planned_arrival < time(20, 0)


def test_missing_warehouse_stops_cascade(gateway, published) -> None:
    recalculator = _recalculator(gateway, DummyProvider(minutes=20), published, warehouses=WAREHOUSES[:2])

    result = recalculator.recalculate_from_departure(make_route(), 0, at(8, 5))

    assert not result.succeeded
    assert "W3" in result.error
    assert result.updated_indices == [1]
    saved = gateway.load_route_stops("R1")
    assert _times(saved)[1] == (time(8, 25), time(8, 55))
    assert _times(saved)[2] == (time(10, 0), time(10, 30))
    assert published[-1].kind is EventKind.RECALCULATION_FAILED


def test_arrival_recomputes_only_its_own_departure(gateway, published) -> None:
    recalculator = _recalculator(gateway, DummyProvider(minutes=20), published)

    result = recalculator.recalculate_from_arrival(make_route(), 1, at(8, 40))

    assert _times(result.stops) == [
        (time(8, 0), time(8, 30)),
        (time(8, 40), time(9, 10)),
        (time(10, 0), time(10, 30)),
    ]
    assert result.updated_indices == [1]


def test_cascade_starts_from_persisted_schedule(gateway, published) -> None:
    recalculator = _recalculator(gateway, DummyProvider(minutes=20), published)
    route = make_route()
    route.stops[2].has_lunch_break = True
    route.stops[2].lunch_duration_minutes = 15
    recalculator.recalculate_from_arrival(route, 1, at(8, 40))

    result = recalculator.recalculate_from_departure(route, 1, at(9, 12))

    assert _times(result.stops)[1] == (time(8, 40), time(9, 12))
    assert _times(result.stops)[2] == (time(9, 32), time(10, 17))
