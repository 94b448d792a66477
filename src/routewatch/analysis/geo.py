"""Great-circle geometry on WGS84 coordinates."""

from __future__ import annotations

import logging
import math
from typing import Any

from routewatch.events.log import DebugLevel, EventLog
from routewatch.types import Coordinates, ProximityResult

logger = logging.getLogger(__name__)

EARTH_RADIUS_METERS = 6_371_000.0


def _is_number(value: Any) -> bool:
    return isinstance(value, int | float) and not isinstance(value, bool) and math.isfinite(value)


def is_valid_coordinates(obj: Any) -> bool:
    """Finite numeric lat in [-90, 90] and lon in [-180, 180]."""
    if obj is None:
        return False
    lat = getattr(obj, "latitude", None)
    lon = getattr(obj, "longitude", None)
    if not (_is_number(lat) and _is_number(lon)):
        return False
    return -90 <= lat <= 90 and -180 <= lon <= 180


def haversine_distance(a: Coordinates, b: Coordinates) -> float:
    """Distance in meters. Callers validate coordinates first."""
    if a.latitude == b.latitude and a.longitude == b.longitude:
        return 0.0
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlat = lat2 - lat1
    dlon = math.radians(b.longitude - a.longitude)
    h = math.sin(dlat / 2) ** 2 + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    return 2 * EARTH_RADIUS_METERS * math.asin(min(1.0, math.sqrt(h)))


def calculate_bearing(a: Coordinates, b: Coordinates) -> float:
    """Forward azimuth from ``a`` to ``b`` in degrees, within [0, 360)."""
    lat1 = math.radians(a.latitude)
    lat2 = math.radians(b.latitude)
    dlon = math.radians(b.longitude - a.longitude)
    y = math.sin(dlon) * math.cos(lat2)
    x = math.cos(lat1) * math.sin(lat2) - math.sin(lat1) * math.cos(lat2) * math.cos(dlon)
    bearing = (math.degrees(math.atan2(y, x)) + 360) % 360
    return 0.0 if bearing >= 360 else bearing


def calculate_proximity(
    a: Any,
    b: Any,
    max_radius: float | None = None,
    *,
    event_log: EventLog | None = None,
) -> ProximityResult:
    """Distance (rounded to cm) and bearing between two points.

    Invalid input never raises: it yields an infinite distance outside any
    radius and no bearing.
    """
    if not (is_valid_coordinates(a) and is_valid_coordinates(b)):
        logger.warning("Invalid coordinates for proximity: %r -> %r", a, b)
        if event_log is not None:
            event_log.record(
                "proximity",
                level=DebugLevel.WARNING,
                decision="invalid_coordinates",
                reason=f"{a!r} -> {b!r}",
            )
        return ProximityResult(distance=math.inf, within_radius=False, bearing=None)

    distance = round(haversine_distance(a, b), 2)
    within = True if max_radius is None else distance <= max_radius
    return ProximityResult(distance=distance, within_radius=within, bearing=calculate_bearing(a, b))
