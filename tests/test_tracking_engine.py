from datetime import timedelta

import pytest

from factories import BETWEEN_W1_W2, WAREHOUSES, at, at_warehouse, make_progress, make_route, near_warehouse, sample
from routetrack.models.domain import RouteStatus, StopStatus
from routetrack.services.tracking import EventKind, TrackingEngine

W1, W2, W3 = WAREHOUSES


def _kinds(events) -> list[EventKind]:
    return [event.kind for event in events]


def test_leaving_first_stop_starts_route() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())

    events = engine.apply_sample(progress, near_warehouse("W1", at(7, 55)), W1)

    assert _kinds(events) == [EventKind.ROUTE_STARTED]
    assert progress.status is RouteStatus.IN_PROGRESS
    assert progress.start_time == at(7, 55)
    assert progress.stops[0].status is StopStatus.EN_ROUTE
    assert progress.stops[0].exited_geofence_at == at(7, 55)


def test_pending_stop_inside_geofence_waits() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())

    assert engine.apply_sample(progress, at_warehouse("W1", at(7, 55)), W1) == []
    assert progress.stops[0].status is StopStatus.PENDING
    assert progress.status is RouteStatus.NOT_STARTED


def test_arrival_and_departure_are_fixed_once() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)

    arrival = at_warehouse("W1", at(8, 0))
    events = engine.apply_sample(progress, arrival, W1)
    assert _kinds(events) == [EventKind.ARRIVAL_FIXED]
    assert progress.stops[0].actual_arrival == at(8, 0)
    assert progress.stops[0].entered_geofence_at == at(8, 0)

    # Replaying the same sample does not produce a second transition.
    assert engine.apply_sample(progress, arrival, W1) == []
    assert progress.stops[0].status is StopStatus.ARRIVED
    assert progress.stops[0].actual_arrival == at(8, 0)

    departure = near_warehouse("W1", at(8, 25))
    events = engine.apply_sample(progress, departure, W1)
    assert _kinds(events) == [EventKind.DEPARTURE_FIXED]
    assert progress.stops[0].status is StopStatus.DEPARTED
    assert progress.stops[0].actual_departure == at(8, 25)
    assert progress.current_stop_index == 1
    assert progress.stops[1].status is StopStatus.PENDING

    # The same departure sample is now evaluated against stop 2 and only moves it en route.
    assert engine.apply_sample(progress, departure, W2) == []
    assert progress.stops[0].actual_departure == at(8, 25)
    assert progress.stops[1].status is StopStatus.EN_ROUTE


def test_full_route_keeps_monotonic_chain() -> None:
    engine = TrackingEngine()
    route = make_route()
    progress = make_progress(route)
    warehouses = {w.warehouse_id: w for w in WAREHOUSES}

    minute = 0
    for stop in route.ordered_stops():
        warehouse = warehouses[stop.warehouse_id]
        for build in (near_warehouse, at_warehouse, near_warehouse):
            minute += 10
            engine.apply_sample(progress, build(stop.warehouse_id, at(8) + timedelta(minutes=minute)), warehouse)

    assert progress.status is RouteStatus.COMPLETED
    assert progress.end_time is not None
    for index, stop in enumerate(progress.stops):
        assert stop.status is StopStatus.DEPARTED
        assert stop.actual_arrival <= stop.actual_departure
        if index + 1 < len(progress.stops):
            assert stop.actual_departure <= progress.stops[index + 1].actual_arrival


def test_last_departure_completes_route() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route(stops=make_route().stops[:1]))
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    engine.apply_sample(progress, at_warehouse("W1", at(8, 0)), W1)

    events = engine.apply_sample(progress, near_warehouse("W1", at(8, 30)), W1)

    assert _kinds(events) == [EventKind.DEPARTURE_FIXED, EventKind.ROUTE_COMPLETED]
    assert progress.is_completed
    assert progress.end_time == at(8, 30)
    assert engine.apply_sample(progress, near_warehouse("W1", at(8, 31)), W1) == []


def test_stale_sample_is_ignored() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    engine.apply_sample(progress, at_warehouse("W1", at(8, 0)), W1)

    assert engine.apply_sample(progress, near_warehouse("W1", at(7, 59)), W1) == []
    assert progress.stops[0].status is StopStatus.ARRIVED
    assert progress.last_position_update_at == at(8, 0)


def test_sample_for_other_warehouse_is_rejected() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())

    with pytest.raises(ValueError):
        engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W2)


def test_stationary_period_between_stops_is_logged() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    engine.apply_sample(progress, at_warehouse("W1", at(8, 0)), W1)
    engine.apply_sample(progress, near_warehouse("W1", at(8, 30)), W1)
    engine.apply_sample(progress, near_warehouse("W1", at(8, 31)), W2)
    lat, lon = BETWEEN_W1_W2

    opened = engine.apply_sample(progress, sample(at(8, 40), lat, lon, speed=0), W2)
    still = engine.apply_sample(progress, sample(at(8, 45), lat, lon + 0.0001, speed=0), W2)
    closed = engine.apply_sample(progress, sample(at(8, 50), lat + 0.001, lon, speed=35), W2)

    assert _kinds(opened) == [EventKind.INTERMEDIATE_STOP_OPENED]
    assert still == []
    assert _kinds(closed) == [EventKind.INTERMEDIATE_STOP_CLOSED]
    assert len(progress.intermediate_stops) == 1
    stop = progress.intermediate_stops[0]
    assert stop.duration_minutes == 10
    assert stop.from_stop_id == "S2"
    assert stop.to_stop_id == "S3"
    assert progress.stops[1].status is StopStatus.EN_ROUTE


def test_moving_while_stationary_reopens_intermediate_stop() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    lat, lon = BETWEEN_W1_W2

    engine.apply_sample(progress, sample(at(7, 55), lat, lon, speed=0), W1)
    events = engine.apply_sample(progress, sample(at(7, 58), lat + 0.001, lon, speed=2), W1)

    assert [event.kind for event in events] == [EventKind.INTERMEDIATE_STOP_CLOSED, EventKind.INTERMEDIATE_STOP_OPENED]
    assert len(progress.intermediate_stops) == 2
    assert progress.intermediate_stops[0].duration_minutes == 3
    assert progress.open_intermediate_stop() is progress.intermediate_stops[1]


def test_arrival_closes_open_intermediate_stop() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    engine.apply_sample(progress, near_warehouse("W1", at(7, 52), speed=0), W1)

    events = engine.apply_sample(progress, at_warehouse("W1", at(7, 58)), W1)

    assert _kinds(events) == [EventKind.INTERMEDIATE_STOP_CLOSED, EventKind.ARRIVAL_FIXED]
    assert progress.open_intermediate_stop() is None


def test_no_intermediate_stop_on_leg_to_last_stop() -> None:
    engine = TrackingEngine()
    progress = make_progress(make_route())
    engine.apply_sample(progress, near_warehouse("W1", at(7, 50)), W1)
    engine.apply_sample(progress, at_warehouse("W1", at(8, 0)), W1)
    engine.apply_sample(progress, near_warehouse("W1", at(8, 30)), W1)
    engine.apply_sample(progress, near_warehouse("W1", at(8, 31)), W2)
    engine.apply_sample(progress, at_warehouse("W2", at(9, 0)), W2)
    engine.apply_sample(progress, near_warehouse("W2", at(9, 30)), W2)
    engine.apply_sample(progress, near_warehouse("W2", at(9, 31)), W3)
    assert progress.stops[2].status is StopStatus.EN_ROUTE

    events = engine.apply_sample(progress, sample(at(9, 40), 34.075, -118.0, speed=0), W3)

    assert events == []
    assert progress.intermediate_stops == []
