"""
Distance helpers: haversine, walking time, and city-centre fallbacks.

Distances are measured from the city centre when the request carries no user
location.
"""

from __future__ import annotations

import math

EARTH_RADIUS_KM = 6371.0

# Walking pace used for travel-time estimates (5 km/h)
MINUTES_PER_KM = 12.0

CITY_CENTERS: dict[str, tuple[float, float]] = {
    "new york": (40.7128, -74.0060),
    "brooklyn": (40.6782, -73.9442),
    "manhattan": (40.7831, -73.9712),
    "queens": (40.7282, -73.7949),
    "los angeles": (34.0522, -118.2437),
    "san francisco": (37.7749, -122.4194),
    "chicago": (41.8781, -87.6298),
    "boston": (42.3601, -71.0589),
    "seattle": (47.6062, -122.3321),
    "austin": (30.2672, -97.7431),
    "portland": (45.5152, -122.6784),
    "denver": (39.7392, -104.9903),
    "miami": (25.7617, -80.1918),
}


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in km, rounded to 0.1."""
    d_lat = math.radians(lat2 - lat1)
    d_lon = math.radians(lon2 - lon1)
    a = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(lat1)) * math.cos(math.radians(lat2)) * math.sin(d_lon / 2) ** 2
    )
    c = 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))
    return round(EARTH_RADIUS_KM * c, 1)


def estimate_travel_minutes(distance_km: float) -> int:
    return round(distance_km * MINUTES_PER_KM)


def city_center(city: str) -> tuple[float, float] | None:
    return CITY_CENTERS.get(city.strip().lower())


def distance_from_center(city: str, lat: float | None, lon: float | None) -> float | None:
    """Distance from the city centre; None when either point is unknown."""
    center = city_center(city)
    if center is None or lat is None or lon is None:
        return None
    return haversine_km(center[0], center[1], lat, lon)
