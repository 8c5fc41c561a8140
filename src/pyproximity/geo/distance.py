"""Great-circle distance and distance label formatting."""

from __future__ import annotations

import math
from typing import Protocol

from pyproximity._constants import EARTH_RADIUS_KM, EARTH_RADIUS_M, UNKNOWN_DISTANCE_LABEL


class LatLon(Protocol):
    """Anything with ``latitude``/``longitude`` in degrees."""

    @property
    def latitude(self) -> float: ...

    @property
    def longitude(self) -> float: ...


def _central_angle(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)

    a = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Guard against a > 1 from floating point error on antipodal points.
    a = min(1.0, max(0.0, a))
    return 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in meters between two points (haversine)."""
    return EARTH_RADIUS_M * _central_angle(lat1, lon1, lat2, lon2)


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in kilometers between two points (haversine)."""
    return EARTH_RADIUS_KM * _central_angle(lat1, lon1, lat2, lon2)


def distance_m(a: LatLon, b: LatLon) -> float:
    return haversine_m(a.latitude, a.longitude, b.latitude, b.longitude)


def distance_km(a: LatLon, b: LatLon) -> float:
    return haversine_km(a.latitude, a.longitude, b.latitude, b.longitude)


def _round_half_up(value: float) -> int:
    # round() in Python is banker's rounding; labels round .5 upwards.
    return int(math.floor(value + 0.5))


def format_distance_label(distance_km: float | None) -> str:
    """Format a distance for display.

    * ``None`` -> ``"unknown"``
    * below 1 km -> whole meters, e.g. ``"850m"``
    * 1 km up to (not including) 10 km -> one decimal, e.g. ``"4.9km"``
    * 10 km and above -> whole kilometers, e.g. ``"12km"``
    """
    if distance_km is None:
        return UNKNOWN_DISTANCE_LABEL

    if distance_km < 1:
        return f"{_round_half_up(distance_km * 1000)}m"

    if distance_km < 10:
        return f"{math.floor(distance_km * 10 + 0.5) / 10:.1f}km"

    return f"{_round_half_up(distance_km)}km"
