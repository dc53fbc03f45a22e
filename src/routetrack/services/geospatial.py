"""Geospatial helper functions."""

from __future__ import annotations

import math

from ..models.domain import Coordinates

EARTH_RADIUS_M = 6371000.0
METERS_PER_MILE = 1609.344


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Compute distance in meters between two coordinates using the Haversine formula."""

    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return EARTH_RADIUS_M * c


def distance_meters(a: Coordinates, b: Coordinates) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_geofence(point: Coordinates, center: Coordinates, radius_meters: float) -> bool:
    """Return True if the point lies inside the circular geofence (boundary included)."""

    return distance_meters(point, center) <= radius_meters


def miles_to_meters(miles: float) -> float:
    return miles * METERS_PER_MILE


def is_valid_coordinate(latitude: float | None, longitude: float | None) -> bool:
    """Reject missing, out-of-range and null-island (0, 0) fixes."""

    if latitude is None or longitude is None:
        return False
    if not (-90.0 <= latitude <= 90.0 and -180.0 <= longitude <= 180.0):
        return False
    return not (latitude == 0.0 and longitude == 0.0)
