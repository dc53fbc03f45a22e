import json
from datetime import datetime, timezone

import httpx
import pytest

from routetrack.services.gps import Trak4Client, map_device_report
from routetrack.services.gps import trak4_client


def test_map_device_report_reads_last_report_fields() -> None:
    device = {
        "DeviceID": 1001,
        "LastReport_Latitude": "34.0522",
        "LastReport_Longitude": -118.2437,
        "LastReport_Speed": 42,
        "LastReport_CreateTime": "2026-10-16T15:04:05Z",
    }

    sample = map_device_report(device, "V1")

    assert sample.vehicle_id == "V1"
    assert (sample.latitude, sample.longitude, sample.speed) == (34.0522, -118.2437, 42.0)
    assert sample.timestamp == datetime(2026, 10, 16, 15, 4, 5, tzinfo=timezone.utc)


def test_map_device_report_falls_back_to_plain_fields() -> None:
    sample = map_device_report({"Latitude": 34.1, "Longitude": -118.1}, "V2")

    assert (sample.latitude, sample.longitude, sample.speed) == (34.1, -118.1, 0.0)
    assert sample.timestamp.tzinfo is not None


@pytest.mark.parametrize(
    "device",
    [
        {"LastReport_Latitude": 0, "LastReport_Longitude": 0},
        {"LastReport_Latitude": 95.0, "LastReport_Longitude": -118.0},
        {"LastReport_Longitude": -118.0},
    ],
)
def test_map_device_report_rejects_invalid_coordinates(device) -> None:
    assert map_device_report(device, "V1") is None


def _patch_transport(monkeypatch: pytest.MonkeyPatch, handler) -> None:
    real_client = httpx.Client
    transport = httpx.MockTransport(handler)
    monkeypatch.setattr(trak4_client.httpx, "Client", lambda **kwargs: real_client(transport=transport, **kwargs))


def test_fetch_position_posts_device_request(monkeypatch: pytest.MonkeyPatch) -> None:
    seen = {}

    def handler(request: httpx.Request) -> httpx.Response:
        seen["url"] = str(request.url)
        seen["body"] = json.loads(request.content)
        return httpx.Response(200, json={"Device": {"Latitude": 34.2, "Longitude": -118.3, "Speed": 3}})

    _patch_transport(monkeypatch, handler)
    client = Trak4Client(api_key="secret", base_url="https://gps.example.com/")

    sample = client.fetch_position("V1", "1001")

    assert seen["url"] == "https://gps.example.com/device"
    assert seen["body"] == {"APIKey": "secret", "DeviceID": 1001}
    assert (sample.latitude, sample.longitude, sample.speed) == (34.2, -118.3, 3.0)


def test_fetch_position_returns_none_on_errors(monkeypatch: pytest.MonkeyPatch) -> None:
    responses = iter([httpx.Response(500), httpx.Response(200, json={"Device": None})])
    _patch_transport(monkeypatch, lambda request: next(responses))
    client = Trak4Client(api_key="secret")

    assert client.fetch_position("V1", "1001") is None
    assert client.fetch_position("V1", "1001") is None


def test_client_requires_api_key(monkeypatch: pytest.MonkeyPatch) -> None:
    from routetrack.config import settings

    monkeypatch.setattr(settings, "gps_api_key", None)
    with pytest.raises(ValueError):
        Trak4Client()
