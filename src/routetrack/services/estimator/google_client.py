"""HTTP client for the traffic-aware Google Directions service."""

from __future__ import annotations

import logging
import math
import re
import time
from datetime import datetime, timedelta

import httpx

from ...config import settings
from ..geospatial import METERS_PER_MILE
from .models import TravelTimeRequest, TravelTimeResponse

MAX_ADDRESS_LENGTH = 200

logger = logging.getLogger(__name__)


def clean_address(address: str | None) -> str:
    if not address:
        return ""
    collapsed = re.sub(r"\s+", " ", address.strip())
    return re.sub(r"[^\w\s,.-]", "", collapsed)[:MAX_ADDRESS_LENGTH]


def future_departure(departure: datetime, now: datetime, weekday: int | None = None) -> datetime:
    """Move a past departure time into the future, keeping its wall-clock time.

    Traffic-aware estimates are only produced for departures in the future. With a
    route weekday the departure moves to the next occurrence of that weekday,
    otherwise it moves forward one day at a time.
    """
    if departure > now:
        return departure

    if weekday is not None:
        days_to_add = weekday - now.weekday()
        if days_to_add <= 0:
            days_to_add += 7
        target_day = now.date() + timedelta(days=days_to_add)
        return datetime.combine(target_day, departure.timetz())

    shifted = departure
    while shifted <= now:
        shifted += timedelta(days=1)
    return shifted


class GoogleDirectionsClient:
    def __init__(
        self,
        api_key: str | None = None,
        base_url: str | None = None,
        timeout: float | None = None,
        max_retries: int | None = None,
        backoff_seconds: float | None = None,
        same_location_minutes: int | None = None,
    ) -> None:
        self.api_key = api_key or settings.google_maps_api_key
        if not self.api_key:
            raise ValueError("Google Maps API key is not configured.")
        self.base_url = (base_url or settings.google_maps_base_url).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.estimator_timeout_seconds
        self.max_retries = max_retries if max_retries is not None else settings.estimator_max_retries
        self.backoff_seconds = backoff_seconds if backoff_seconds is not None else settings.estimator_backoff_seconds
        self.same_location_minutes = (
            same_location_minutes if same_location_minutes is not None else settings.same_location_travel_minutes
        )

    def _get_client(self) -> httpx.Client:
        # One client per call; recalculations for different routes run on different threads.
        return httpx.Client(timeout=httpx.Timeout(self.timeout, connect=5.0))

    def _directions(self, params: dict) -> dict:
        url = f"{self.base_url}/directions/json"
        client = self._get_client()
        try:
            attempt = 0
            while True:
                try:
                    response = client.get(url, params=params)
                    response.raise_for_status()
                    return response.json()
                except httpx.HTTPStatusError as e:
                    if e.response.status_code < 500:
                        raise
                    attempt += 1
                    if attempt > self.max_retries:
                        raise
                    time.sleep(self.backoff_seconds * attempt)
                except (httpx.TimeoutException, httpx.NetworkError) as e:
                    attempt += 1
                    if attempt > self.max_retries:
                        logger.warning(f"Directions request failed after {self.max_retries} retries: {e}")
                        raise
                    wait_time = self.backoff_seconds * (2 ** (attempt - 1))
                    logger.debug(f"Directions request error, retrying in {wait_time:.1f}s (attempt {attempt}/{self.max_retries})")
                    time.sleep(wait_time)
        finally:
            client.close()

    def travel_time(self, request: TravelTimeRequest, now: datetime | None = None) -> TravelTimeResponse:
        origin = clean_address(request.origin_address)
        destination = clean_address(request.destination_address)
        if not origin or not destination:
            logger.warning("Invalid addresses for travel time request")
            return TravelTimeResponse(success=False)
        if origin == destination:
            return TravelTimeResponse(success=True, travel_time_minutes=float(self.same_location_minutes))

        reference_now = now or datetime.now(request.departure_time.tzinfo)
        departure = future_departure(request.departure_time, reference_now, request.weekday)
        params = {
            "origin": origin,
            "destination": destination,
            "mode": "driving",
            "departure_time": str(int(departure.timestamp())),
            "traffic_model": request.traffic_scenario.value,
            "units": "imperial",
            "key": self.api_key,
        }

        try:
            data = self._directions(params)
        except httpx.HTTPError as e:
            logger.warning(f"Directions request failed for '{origin}' -> '{destination}': {e}")
            return TravelTimeResponse(success=False)

        try:
            return self._parse(data, request.speed_limit)
        except (KeyError, IndexError, TypeError, ValueError) as e:
            logger.warning(f"Unusable directions response for '{origin}' -> '{destination}': {e}")
            return TravelTimeResponse(success=False)

    def _parse(self, data: dict, speed_limit: int) -> TravelTimeResponse:
        status = data.get("status")
        if status != "OK":
            raise ValueError(f"Directions status {status}: {data.get('error_message', 'no detail')}")

        leg = data["routes"][0]["legs"][0]
        base_minutes = math.ceil(leg["duration"]["value"] / 60)
        in_traffic = leg.get("duration_in_traffic", {}).get("value")
        traffic_minutes = math.ceil(in_traffic / 60) if in_traffic else base_minutes

        distance_m = leg.get("distance", {}).get("value")
        minutes = traffic_minutes
        if distance_m and speed_limit > 0:
            # The vehicle cannot cover the leg faster than its own speed limit allows.
            limited_minutes = math.ceil(distance_m / METERS_PER_MILE / speed_limit * 60)
            minutes = max(minutes, limited_minutes)

        return TravelTimeResponse(
            success=True,
            travel_time_minutes=float(minutes),
            distance_meters=float(distance_m) if distance_m is not None else None,
            traffic_delay_minutes=float(max(0, traffic_minutes - base_minutes)),
        )


def check_health(api_key: str | None = None) -> bool:
    """Check the directions service with a minimal request."""
    key = api_key or settings.google_maps_api_key
    if not key:
        return False
    try:
        response = httpx.get(
            f"{settings.google_maps_base_url.rstrip('/')}/directions/json",
            params={"origin": "Los Angeles, CA", "destination": "Pasadena, CA", "key": key},
            timeout=5.0,
        )
        response.raise_for_status()
        return response.json().get("status") == "OK"
    except (httpx.HTTPError, ValueError):
        return False
