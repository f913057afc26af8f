from __future__ import annotations

import math

EARTH_RADIUS_M = 6_371_000.0


def haversine_m(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    # Spherical great-circle distance in metres.
    phi1 = math.radians(lat1)
    phi2 = math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlambda = math.radians(lon2 - lon1)

    a = (
        math.sin(dphi / 2.0) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlambda / 2.0) ** 2
    )
    # Rounding can push `a` a hair above 1 for antipodal points.
    return 2.0 * EARTH_RADIUS_M * math.asin(math.sqrt(min(1.0, a)))


def validate_coordinates(latitude: float, longitude: float) -> str | None:
    """Return a reason string when the pair is not a valid WGS84 coordinate."""

    if not isinstance(latitude, (int, float)) or isinstance(latitude, bool):
        return "latitude must be a number"
    if not isinstance(longitude, (int, float)) or isinstance(longitude, bool):
        return "longitude must be a number"
    if not math.isfinite(latitude) or not math.isfinite(longitude):
        return "coordinates must be finite"
    if latitude < -90.0 or latitude > 90.0:
        return "latitude must be within [-90, 90]"
    if longitude < -180.0 or longitude > 180.0:
        return "longitude must be within [-180, 180]"
    return None
