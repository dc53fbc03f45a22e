"""Traffic-aware travel-time estimation."""

from .adapter import TravelTimeEstimator, build_default_estimator
from .models import TravelEstimate, TravelTimeProvider, TravelTimeRequest, TravelTimeResponse

__all__ = [
    "TravelEstimate",
    "TravelTimeEstimator",
    "TravelTimeProvider",
    "TravelTimeRequest",
    "TravelTimeResponse",
    "build_default_estimator",
]
