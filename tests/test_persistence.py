import threading
from datetime import time
from pathlib import Path

from factories import DAY, FlakyStore, at, make_progress, make_route
from routetrack.models.domain import Coordinates, IntermediateStop, StopStatus
from routetrack.persistence.gateway import PersistenceGateway, gps_log_key, route_stops_key
from routetrack.persistence.store import FileKeyValueStore


def test_file_store_writes_one_json_file_per_key(tmp_path: Path) -> None:
    store = FileKeyValueStore(root=tmp_path)

    store.put("R1:D1:2026-10-16", {"hello": "world"})
    store.put("route:R1", [1, 2])

    assert store.get("R1:D1:2026-10-16") == {"hello": "world"}
    assert store.get("missing") is None
    assert store.keys() == ["R1:D1:2026-10-16", "route:R1"]
    assert store.keys("route:") == ["route:R1"]
    assert len(list((tmp_path / "tracking").glob("*.json"))) == 2


def test_gateway_round_trips_progress(gateway: PersistenceGateway) -> None:
    progress = make_progress(make_route())
    progress.stops[0].status = StopStatus.ARRIVED
    progress.stops[0].actual_arrival = at(8, 0)
    progress.intermediate_stops.append(
        IntermediateStop("intermediate-R1-1", Coordinates(34.02, -118.0), at(7, 40), "S1", "S2", at(7, 45), 5)
    )

    gateway.save_progress(progress)
    loaded = gateway.load_progress("R1", "D1", DAY)

    assert loaded == progress
    assert [p.key for p in gateway.list_progress(DAY)] == [progress.key]
    assert gateway.list_progress("2026-10-17") == []


def test_gateway_saves_recalculated_schedule(gateway: PersistenceGateway) -> None:
    stops = make_route().ordered_stops()
    stops[1].planned_arrival = time(8, 25)

    gateway.save_route_stops("R1", stops)

    assert gateway.load_route_stops("R1") == stops
    assert gateway.load_route_stops("R2") is None


def test_failed_writes_are_kept_and_flushed() -> None:
    store = FlakyStore()
    gateway = PersistenceGateway(store)
    progress = make_progress(make_route())

    store.available = False
    assert gateway.save_progress(progress) is False
    assert gateway.has_pending_writes
    assert gateway.load_progress("R1", "D1", DAY) == progress
    assert gateway.flush() is False

    store.available = True
    assert gateway.flush() is True
    assert not gateway.has_pending_writes
    assert progress.key in store.records


def test_gps_log_is_capped_per_day(tmp_path: Path) -> None:
    gateway = PersistenceGateway(FileKeyValueStore(root=tmp_path), max_gps_log_entries=3)

    for minute in range(5):
        gateway.append_gps_log({"timestamp": at(8, minute).isoformat(), "date": DAY.isoformat()})

    logs = gateway.get_gps_logs(DAY)
    assert [entry["timestamp"] for entry in logs] == [at(8, minute).isoformat() for minute in (2, 3, 4)]
    assert gateway.get_gps_logs("2026-10-17") == []


def test_export_collects_progress_and_logs(gateway: PersistenceGateway) -> None:
    gateway.save_progress(make_progress(make_route()))
    gateway.save_route_stops("R1", make_route().ordered_stops())
    gateway.append_gps_log({"timestamp": at(8).isoformat(), "date": DAY.isoformat()})

    exported = gateway.export_tracking_data(DAY)

    assert [record["routeId"] for record in exported["routeProgresses"]] == ["R1"]
    assert len(exported["gpsLogs"]) == 1
    assert exported["exportDate"]


def test_record_keys() -> None:
    assert route_stops_key("R1") == "route:R1"
    assert gps_log_key(DAY) == "gps_log:2026-10-16"


class GatedStore(FlakyStore):
    """Store whose writes under ``prefix`` wait until ``release`` is set."""

    def __init__(self, prefix: str) -> None:
        super().__init__()
        self.prefix = prefix
        self.entered = threading.Event()
        self.release = threading.Event()

    def put(self, key, value) -> None:
        if key.startswith(self.prefix):
            self.entered.set()
            self.release.wait(timeout=5)
        super().put(key, value)


def test_slow_gps_log_write_does_not_hold_up_progress_writes() -> None:
    store = GatedStore("gps_log:")
    gateway = PersistenceGateway(store)
    entry = {"timestamp": at(8, 0).isoformat(), "vehicleId": "V1", "date": DAY.isoformat()}
    writer = threading.Thread(target=gateway.append_gps_log, args=(entry,))
    writer.start()
    try:
        assert store.entered.wait(timeout=5)

        assert gateway.save_progress(make_progress(make_route())) is True
        assert writer.is_alive()
        assert gateway.load_progress("R1", "D1", DAY) is not None
    finally:
        store.release.set()
        writer.join(timeout=5)

    assert gateway.get_gps_logs(DAY) == [entry]
