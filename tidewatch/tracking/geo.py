"""Tidewatch — Geo Utilities.

Great-circle helpers used to rank tracked vessels by proximity to a preset's
reference point. Inputs are any objects exposing ``lat`` / ``lon`` in decimal
degrees; nothing here validates them.
"""

import math

EARTH_RADIUS_MI = 3958.7613

# Rough conversion used to size a subscription box around a point
MILES_PER_DEG_LAT = 69.0


def distance_miles(a, b) -> float:
    """Haversine distance between two points, in statute miles."""
    d_lat = math.radians(b.lat - a.lat)
    d_lon = math.radians(b.lon - a.lon)
    h = (
        math.sin(d_lat / 2) ** 2
        + math.cos(math.radians(a.lat)) * math.cos(math.radians(b.lat)) * math.sin(d_lon / 2) ** 2
    )
    # Rounding can push h just outside [0, 1] near antipodes
    h = min(1.0, max(0.0, h))
    return EARTH_RADIUS_MI * 2 * math.atan2(math.sqrt(h), math.sqrt(1 - h))


def bearing_degrees(a, b) -> float:
    """Initial great-circle bearing from ``a`` towards ``b`` (0 = north, clockwise)."""
    lat1 = math.radians(a.lat)
    lat2 = math.radians(b.lat)
    d_lon = math.radians(b.lon - a.lon)
    y = math.sin(d_lon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(d_lon)
    return math.degrees(math.atan2(y, x)) % 360


def bbox_around(lat: float, lon: float, radius_mi: float) -> tuple[tuple[float, float], tuple[float, float]]:
    """Loose box of ``radius_mi`` around a point as ``((min_lat, min_lon), (max_lat, max_lon))``."""
    lat_delta = radius_mi / MILES_PER_DEG_LAT
    lon_delta = radius_mi / (MILES_PER_DEG_LAT * math.cos(math.radians(lat)))
    return (lat - lat_delta, lon - lon_delta), (lat + lat_delta, lon + lon_delta)
