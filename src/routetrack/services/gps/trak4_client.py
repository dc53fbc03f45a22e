"""HTTP client for the Trak-4 device tracking API."""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any, Protocol, Sequence

import httpx

from ...config import settings
from ...models.domain import PositionSample
from ..geospatial import is_valid_coordinate
from ..timeutils import parse_timestamp

LATITUDE_FIELDS = ("LastReport_Latitude", "Latitude", "Position_Latitude", "Lat", "latitude")
LONGITUDE_FIELDS = ("LastReport_Longitude", "Longitude", "Position_Longitude", "Lng", "longitude")
SPEED_FIELDS = ("Speed", "LastReport_Speed")
TIMESTAMP_FIELDS = ("LastReport_CreateTime", "LastReport_ReceivedTime", "ReceivedTime")

logger = logging.getLogger(__name__)


class PositionProvider(Protocol):
    def fetch_position(self, vehicle_id: str, device_id: str) -> PositionSample | None: ...


def _first_number(data: dict[str, Any], fields: Sequence[str]) -> float | None:
    for name in fields:
        value = data.get(name)
        if value is None or value == "":
            continue
        try:
            return float(value)
        except (TypeError, ValueError):
            continue
    return None


def map_device_report(device: dict[str, Any], vehicle_id: str) -> PositionSample | None:
    """Map a Trak-4 ``Device`` payload to a position sample, or None if unusable."""

    latitude = _first_number(device, LATITUDE_FIELDS)
    longitude = _first_number(device, LONGITUDE_FIELDS)
    if not is_valid_coordinate(latitude, longitude):
        logger.warning(f"Invalid coordinates for vehicle {vehicle_id}: ({latitude}, {longitude})")
        return None

    timestamp: datetime | None = None
    for name in TIMESTAMP_FIELDS:
        raw = device.get(name)
        if raw:
            try:
                timestamp = parse_timestamp(raw)
                break
            except ValueError:
                logger.debug(f"Ignoring unparseable {name}={raw!r} for vehicle {vehicle_id}")
    if timestamp is None:
        timestamp = datetime.now(timezone.utc)

    return PositionSample(
        vehicle_id=vehicle_id,
        latitude=latitude,
        longitude=longitude,
        speed=_first_number(device, SPEED_FIELDS) or 0.0,
        timestamp=timestamp,
    )


class Trak4Client:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
    ) -> None:
        self.api_key = api_key or settings.gps_api_key
        if not self.api_key:
            raise ValueError("GPS provider API key is not configured.")
        self.base_url = (base_url or settings.gps_api_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.gps_timeout_seconds

    def fetch_position(self, vehicle_id: str, device_id: str) -> PositionSample | None:
        """Fetch the latest report for a device. Returns None when no usable fix exists."""

        payload = {"APIKey": self.api_key, "DeviceID": _device_id_value(device_id)}
        try:
            with httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0)) as client:
                response = client.post(f"{self.base_url}/device", json=payload)
                response.raise_for_status()
                data = response.json()
        except httpx.HTTPStatusError as e:
            logger.warning(f"GPS provider returned {e.response.status_code} for vehicle {vehicle_id} (device {device_id})")
            return None
        except (httpx.HTTPError, ValueError) as e:
            logger.warning(f"GPS provider request failed for vehicle {vehicle_id}: {e}")
            return None

        device = data.get("Device") if isinstance(data, dict) else None
        if not device:
            logger.warning(f"Device {device_id} not found in GPS provider for vehicle {vehicle_id}")
            return None
        return map_device_report(device, vehicle_id)


def _device_id_value(device_id: str) -> int | str:
    # Trak-4 device ids are integers; keep anything else as given.
    return int(device_id) if str(device_id).isdigit() else device_id
