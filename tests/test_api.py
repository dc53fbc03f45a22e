from datetime import timedelta

import pytest
from fastapi.testclient import TestClient

from factories import DAY, at, make_route
from routetrack.main import create_app
from routetrack.services.tracking import get_tracking_service


@pytest.fixture
def api_client(service) -> TestClient:
    app = create_app()
    app.dependency_overrides[get_tracking_service] = lambda: service
    return TestClient(app)


def _position(latitude: float, longitude: float, timestamp, speed: float = 20.0) -> dict:
    return {
        "vehicleId": "V1",
        "position": {"latitude": latitude, "longitude": longitude, "speed": speed},
        "timestamp": timestamp.isoformat(),
    }


def test_health(api_client: TestClient) -> None:
    response = api_client.get("/api/health")
    assert response.status_code == 200
    assert response.json() == {"status": "ok"}


def test_initialize_and_read_progress(api_client: TestClient) -> None:
    response = api_client.post("/api/tracking/initialize", json={"routeId": "R1", "driverId": "D1", "vehicleId": "V1"})
    assert response.status_code == 200
    body = response.json()
    assert body["routeId"] == "R1"
    assert body["status"] == "not_started"
    assert [stop["plannedArrival"] for stop in body["stops"]] == ["08:00", "09:00", "10:00"]

    response = api_client.get(f"/api/tracking/progress/R1/D1/{DAY.isoformat()}")
    assert response.status_code == 200
    assert response.json()["currentStopIndex"] == 0


def test_initialize_unknown_route_is_404(api_client: TestClient) -> None:
    response = api_client.post("/api/tracking/initialize", json={"routeId": "R9", "driverId": "D1", "vehicleId": "V1"})
    assert response.status_code == 404


def test_missing_progress_is_404(api_client: TestClient) -> None:
    assert api_client.get(f"/api/tracking/progress/R1/D1/{DAY.isoformat()}").status_code == 404


def test_position_ingestion(api_client: TestClient) -> None:
    api_client.post("/api/tracking/initialize", json={"routeId": "R1", "driverId": "D1", "vehicleId": "V1"})

    response = api_client.post("/api/tracking/positions", json=_position(34.01, -118.0, at(7, 50)))

    assert response.status_code == 200
    body = response.json()
    assert body["status"] == "in_progress"
    assert body["stops"][0]["status"] == "en_route"

    untracked = _position(34.01, -118.0, at(7, 51)) | {"vehicleId": "V9"}
    response = api_client.post("/api/tracking/positions", json=untracked)
    assert response.status_code == 200
    assert response.json() is None


def test_position_with_invalid_latitude_is_422(api_client: TestClient) -> None:
    response = api_client.post("/api/tracking/positions", json=_position(134.0, -118.0, at(7, 50)))
    assert response.status_code == 422


def test_manual_trigger_flow(api_client: TestClient) -> None:
    api_client.post("/api/tracking/initialize", json={"routeId": "R1", "driverId": "D1", "vehicleId": "V1"})

    before = api_client.get("/api/tracking/routes/R1/trigger").json()
    assert before["triggerState"]["nextAction"] == "departure"
    assert before["description"] == "Record departure from stop 1"

    response = api_client.post("/api/tracking/routes/R1/trigger")
    assert response.status_code == 200
    body = response.json()
    assert body["success"] is True
    assert body["triggerState"] == {
        "routeId": "R1",
        "currentStopIndex": 1,
        "nextAction": "arrival",
        "lastTriggeredAt": at(8, 0).isoformat(),
    }
    assert body["description"] == "Record arrival at stop 2"

    assert api_client.delete("/api/tracking/routes/R1/trigger").status_code == 200


def test_manual_trigger_rejection_is_409(api_client: TestClient, registry) -> None:
    registry._routes["R2"] = make_route("R2", date=DAY + timedelta(days=1))
    api_client.post("/api/tracking/initialize", json={"routeId": "R2", "driverId": "D1", "vehicleId": "V1"})

    response = api_client.post("/api/tracking/routes/R2/trigger")

    assert response.status_code == 409
    assert response.json()["detail"] == "Route is not scheduled for today."


def test_stats_export_and_stop_all(api_client: TestClient) -> None:
    api_client.post("/api/tracking/initialize", json={"routeId": "R1", "driverId": "D1", "vehicleId": "V1"})
    api_client.post("/api/tracking/positions", json=_position(34.01, -118.0, at(7, 50)))

    stats = api_client.get("/api/tracking/stats").json()
    assert stats == {"activeRoutes": 1, "totalLogs": 1, "lastUpdate": at(7, 50).isoformat()}

    exported = api_client.get("/api/tracking/export", params={"date": DAY.isoformat()}).json()
    assert [record["routeId"] for record in exported["routeProgresses"]] == ["R1"]
    assert len(exported["gpsLogs"]) == 1

    assert api_client.post("/api/tracking/stop-all").json()["success"] is True
    assert api_client.get("/api/tracking/stats").json()["activeRoutes"] == 0


def test_start_all(api_client: TestClient) -> None:
    response = api_client.post("/api/tracking/start-all")
    assert response.status_code == 200
    assert response.json()["started"] == 1


def test_tracking_settings(api_client: TestClient) -> None:
    assert api_client.get("/api/tracking/settings").json() == {"startHour": 5, "endHour": 23}

    response = api_client.put("/api/tracking/settings", json={"startHour": 6, "endHour": 21})
    assert response.status_code == 200
    assert api_client.get("/api/tracking/settings").json() == {"startHour": 6, "endHour": 21}

    assert api_client.put("/api/tracking/settings", json={"startHour": 21, "endHour": 6}).status_code == 422


def test_trigger_unknown_route_is_404(api_client: TestClient) -> None:
    response = api_client.post("/api/tracking/routes/R9/trigger")
    assert response.status_code == 404
