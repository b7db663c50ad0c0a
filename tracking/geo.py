"""Geodesic helpers shared by the fusion engine and the geofence evaluator."""

from __future__ import annotations

import math
from dataclasses import dataclass, replace
from enum import Enum
from typing import Protocol

EARTH_RADIUS_METERS = 6_371_000.0

# Local flat-earth approximation used to apply metre offsets to a coordinate.
METERS_PER_DEGREE_LATITUDE = 111_320.0


class PositionSource(str, Enum):
    GPS = "gps"
    PDR = "pdr"
    FUSED = "fused"


class HasCoordinates(Protocol):
    latitude: float
    longitude: float


@dataclass(frozen=True)
class Position:
    """An immutable position estimate; ``timestamp`` is seconds since the epoch."""

    latitude: float
    longitude: float
    accuracy_meters: float
    timestamp: float
    source: PositionSource = PositionSource.GPS


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Return the great-circle distance in metres between two coordinates."""

    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    delta_phi = math.radians(lat2 - lat1)
    delta_lambda = math.radians(lon2 - lon1)

    a = (
        math.sin(delta_phi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(delta_lambda / 2) ** 2
    )
    # Rounding can push ``a`` a hair outside [0, 1] for antipodal points.
    a = min(1.0, max(0.0, a))
    return EARTH_RADIUS_METERS * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def distance_meters(a: HasCoordinates, b: HasCoordinates) -> float:
    return haversine_meters(a.latitude, a.longitude, b.latitude, b.longitude)


def is_within_radius(center: HasCoordinates, point: HasCoordinates, radius_meters: float) -> bool:
    """Return ``True`` when ``point`` lies within ``radius_meters`` of ``center`` (inclusive)."""

    return distance_meters(center, point) <= radius_meters


def truncate(position: Position, precision_digits: int = 6) -> Position:
    """Round latitude and longitude to ``precision_digits`` decimals for compact storage."""

    return replace(
        position,
        latitude=_round_preserving_sign(position.latitude, precision_digits),
        longitude=_round_preserving_sign(position.longitude, precision_digits),
    )


def _round_preserving_sign(value: float, digits: int) -> float:
    rounded = round(value, digits)
    # A coordinate that rounds to zero keeps its hemisphere.
    return math.copysign(abs(rounded), value)


def is_valid_coordinates(latitude: float | None, longitude: float | None) -> bool:
    """Return ``True`` for finite coordinates inside the WGS84 bounds."""

    if latitude is None or longitude is None:
        return False
    try:
        lat = float(latitude)
        lon = float(longitude)
    except (TypeError, ValueError):
        return False
    if not (math.isfinite(lat) and math.isfinite(lon)):
        return False
    return -90.0 <= lat <= 90.0 and -180.0 <= lon <= 180.0


def offset_position(origin: HasCoordinates, east_meters: float, north_meters: float) -> tuple[float, float]:
    """Return the ``(latitude, longitude)`` reached by moving a metric offset from ``origin``."""

    latitude = origin.latitude + north_meters / METERS_PER_DEGREE_LATITUDE
    meters_per_degree_longitude = METERS_PER_DEGREE_LATITUDE * math.cos(math.radians(origin.latitude))
    if abs(meters_per_degree_longitude) < 1e-9:  # pragma: no cover - polar singularity
        return latitude, origin.longitude
    longitude = origin.longitude + east_meters / meters_per_degree_longitude
    return latitude, longitude


def displacement_between(origin: HasCoordinates, point: HasCoordinates) -> tuple[float, float]:
    """Return the ``(east, north)`` offset in metres from ``origin`` to ``point``."""

    north = (point.latitude - origin.latitude) * METERS_PER_DEGREE_LATITUDE
    east = (
        (point.longitude - origin.longitude)
        * METERS_PER_DEGREE_LATITUDE
        * math.cos(math.radians(origin.latitude))
    )
    return east, north


__all__ = [
    "EARTH_RADIUS_METERS",
    "HasCoordinates",
    "Position",
    "PositionSource",
    "displacement_between",
    "distance_meters",
    "haversine_meters",
    "is_valid_coordinates",
    "is_within_radius",
    "offset_position",
    "truncate",
]
