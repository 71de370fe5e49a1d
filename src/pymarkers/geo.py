"""Great-circle math on a spherical Earth.

All functions work in decimal degrees and meters and use the fixed
radius :data:`pymarkers._constants.EARTH_RADIUS_M`.
"""

from __future__ import annotations

import math
from typing import Any

from pymarkers._constants import EARTH_RADIUS_M, LATITUDE_RANGE, LONGITUDE_RANGE
from pymarkers.exceptions import InvalidInputError


def distance_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Haversine distance between two points in meters.

    Inputs are assumed valid; use :func:`validate_coordinates` first for
    anything coming from outside the library.
    """
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    d_phi = math.radians(lat2 - lat1)
    d_lambda = math.radians(lon2 - lon1)
    h = math.sin(d_phi / 2) ** 2 + math.cos(phi1) * math.cos(phi2) * math.sin(d_lambda / 2) ** 2
    # Rounding can push h just outside [0, 1] for near-antipodal points.
    h = min(1.0, max(0.0, h))
    return 2 * EARTH_RADIUS_M * math.asin(math.sqrt(h))


def destination_point(lat: float, lon: float, bearing_deg: float, distance_m: float) -> tuple[float, float]:
    """Point reached by travelling *distance_m* from (lat, lon) on *bearing_deg*.

    Longitude is normalised to [-180, 180).
    """
    phi1 = math.radians(lat)
    lambda1 = math.radians(lon)
    theta = math.radians(bearing_deg)
    delta = distance_m / EARTH_RADIUS_M

    phi2 = math.asin(math.sin(phi1) * math.cos(delta) + math.cos(phi1) * math.sin(delta) * math.cos(theta))
    lambda2 = lambda1 + math.atan2(
        math.sin(theta) * math.sin(delta) * math.cos(phi1),
        math.cos(delta) - math.sin(phi1) * math.sin(phi2),
    )
    lon2 = (math.degrees(lambda2) + 540.0) % 360.0 - 180.0
    return math.degrees(phi2), lon2


def _coerce_degree(name: str, value: Any, bounds: tuple[float, float]) -> float:
    if isinstance(value, bool):
        raise InvalidInputError(f"{name} must be a number, got {value!r}")
    try:
        result = float(value)
    except (TypeError, ValueError) as exc:
        raise InvalidInputError(f"{name} must be a number, got {value!r}") from exc
    if not math.isfinite(result):
        raise InvalidInputError(f"{name} must be finite, got {value!r}")
    low, high = bounds
    if not low <= result <= high:
        raise InvalidInputError(f"{name} must be between {low} and {high}, got {result}")
    return result


def validate_coordinates(latitude: Any, longitude: Any) -> tuple[float, float]:
    """Coerce and range-check a coordinate pair.

    Raises :class:`InvalidInputError` for non-numeric, NaN, infinite or
    out-of-range values.
    """
    return (
        _coerce_degree("latitude", latitude, LATITUDE_RANGE),
        _coerce_degree("longitude", longitude, LONGITUDE_RANGE),
    )
