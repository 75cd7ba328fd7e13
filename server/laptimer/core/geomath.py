"""Geographic helpers: distance, speed, and speed coloring.

Pure functions, no state. Anything with ``latitude``/``longitude`` attributes
works as a coordinate; speed additionally needs ``timestamp_ms``.
"""

from __future__ import annotations

import math
from typing import Protocol

# Earth radius in meters (for Haversine).
EARTH_RADIUS_M = 6_371_000.0

GREEN = (0, 255, 0)
RED = (255, 0, 0)


class Coordinate(Protocol):
    latitude: float
    longitude: float


class TimedCoordinate(Coordinate, Protocol):
    timestamp_ms: int


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points."""
    rlat1, rlat2 = math.radians(lat1), math.radians(lat2)
    dlat = math.radians(lat2 - lat1)
    dlon = math.radians(lon2 - lon1)
    a = math.sin(dlat / 2) ** 2 + math.cos(rlat1) * math.cos(rlat2) * math.sin(dlon / 2) ** 2
    # Rounding can push a just past 1 for near-antipodal points.
    a = min(1.0, a)
    return 2 * EARTH_RADIUS_M * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_m(a: Coordinate, b: Coordinate) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def speed_kmh(a: TimedCoordinate, b: TimedCoordinate) -> float:
    """Average speed from ``a`` to ``b`` in km/h.

    Returns 0 when ``b`` is not strictly later than ``a`` or when the result
    is not finite.
    """
    dt_s = (b.timestamp_ms - a.timestamp_ms) / 1000
    if dt_s <= 0:
        return 0.0
    speed = distance_m(a, b) / dt_s * 3.6
    return speed if math.isfinite(speed) else 0.0


def speed_color(speed: float, max_speed: float) -> tuple[int, int, int]:
    """Interpolate green (standing) to red (``max_speed``) as an RGB tuple."""
    if max_speed == 0:
        return GREEN
    ratio = min(max(speed / max_speed, 0.0), 1.0)
    return (round(255 * ratio), round(255 * (1 - ratio)), 0)


def rgb_hex(color: tuple[int, int, int]) -> str:
    return "#{:02x}{:02x}{:02x}".format(*color)


def round_coordinate(point: Coordinate, decimals: int = 6) -> tuple[float, float]:
    """Coordinates rounded for jitter comparison (6 decimals is about 11 cm)."""
    return round(point.latitude, decimals), round(point.longitude, decimals)
