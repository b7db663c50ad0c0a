"""Geofence evaluation for reported positions.

Reported GPS accuracy is recorded for diagnostics only. It is never
subtracted from the distance: a client could otherwise inflate its accuracy
value to pull an out-of-zone position back inside the fence.
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from typing import Optional

from .geo import HasCoordinates, haversine_meters, is_valid_coordinates


@dataclass(frozen=True)
class GeofenceSpec:
    center_latitude: float
    center_longitude: float
    radius_meters: float
    display_name: Optional[str] = None

    @property
    def is_well_formed(self) -> bool:
        return (
            is_valid_coordinates(self.center_latitude, self.center_longitude)
            and math.isfinite(self.radius_meters)
            and self.radius_meters >= 0
        )


@dataclass(frozen=True)
class GeofenceResult:
    distance: float
    effective_distance: float
    allowed_radius: float
    is_valid: bool
    accuracy_meters: Optional[float] = None


def evaluate_location(
    latitude: float,
    longitude: float,
    accuracy_meters: Optional[float],
    geofence: GeofenceSpec,
) -> GeofenceResult:
    """Classify a coordinate against ``geofence``; the boundary counts as inside."""

    distance = haversine_meters(
        latitude, longitude, geofence.center_latitude, geofence.center_longitude
    )
    effective_distance = distance
    return GeofenceResult(
        distance=distance,
        effective_distance=effective_distance,
        allowed_radius=geofence.radius_meters,
        is_valid=effective_distance <= geofence.radius_meters,
        accuracy_meters=accuracy_meters,
    )


def evaluate(position: HasCoordinates, geofence: GeofenceSpec) -> GeofenceResult:
    return evaluate_location(
        position.latitude,
        position.longitude,
        getattr(position, "accuracy_meters", None),
        geofence,
    )


def resolve_geofence(*candidates: Optional[GeofenceSpec]) -> Optional[GeofenceSpec]:
    """Return the first configured geofence, in priority order (session before course)."""

    for candidate in candidates:
        if candidate is not None:
            return candidate
    return None


__all__ = [
    "GeofenceResult",
    "GeofenceSpec",
    "evaluate",
    "evaluate_location",
    "resolve_geofence",
]
