"""Travel-time estimator adapter with fallback duration."""

from __future__ import annotations

import logging
from datetime import datetime

from ...config import settings
from ...models.domain import TrafficScenario, Warehouse
from .models import TravelEstimate, TravelTimeProvider, TravelTimeRequest

logger = logging.getLogger(__name__)


class TravelTimeEstimator:
    """Wraps a travel-time provider so callers always get a duration back.

    A missing provider, a failed call, an unsuccessful response or a response
    without a positive duration all resolve to the configured fallback.
    """

    def __init__(self, provider: TravelTimeProvider | None, fallback_minutes: int | None = None) -> None:
        self.provider = provider
        self.fallback_minutes = fallback_minutes if fallback_minutes is not None else settings.fallback_travel_minutes

    def estimate(
        self,
        origin: Warehouse,
        destination: Warehouse,
        departure_time: datetime,
        speed_limit: int,
        scenario: TrafficScenario | None = None,
        weekday: int | None = None,
    ) -> TravelEstimate:
        if self.provider is None:
            return self._fallback(origin, destination, "no travel-time provider configured")

        request = TravelTimeRequest(
            origin_address=origin.address,
            destination_address=destination.address,
            traffic_scenario=scenario or destination.traffic_scenario,
            departure_time=departure_time,
            speed_limit=speed_limit,
            weekday=weekday,
        )
        try:
            response = self.provider.travel_time(request)
        except Exception as e:
            return self._fallback(origin, destination, f"provider error: {e}")

        if not response or not response.success or not response.travel_time_minutes:
            return self._fallback(origin, destination, "provider returned no result")

        return TravelEstimate(minutes=float(response.travel_time_minutes), used_fallback=False)

    def _fallback(self, origin: Warehouse, destination: Warehouse, reason: str) -> TravelEstimate:
        logger.warning(
            f"Travel time {origin.warehouse_id} -> {destination.warehouse_id} unavailable ({reason}); "
            f"using fallback of {self.fallback_minutes} minutes"
        )
        return TravelEstimate(minutes=float(self.fallback_minutes), used_fallback=True)


def build_default_estimator() -> TravelTimeEstimator:
    """Estimator backed by Google Directions when an API key is configured."""
    from .google_client import GoogleDirectionsClient

    try:
        provider = GoogleDirectionsClient()
    except ValueError as e:
        logger.warning(f"Travel-time provider disabled: {e}")
        provider = None
    return TravelTimeEstimator(provider)
