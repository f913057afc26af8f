"""Geohash encode/decode plus the prefix-range helpers used for proximity scans.

Precision 7 (~153m x 153m) is what we store; precision 4 (~39km x 20km) is
the candidate-search cell, comfortably larger than the 10km radius tier.
"""

from __future__ import annotations

_BASE32 = "0123456789bcdefghjkmnpqrstuvwxyz"
_DECODE_MAP = {c: i for i, c in enumerate(_BASE32)}

# Sorts after every alphabet symbol, so [prefix, prefix + sentinel) covers
# exactly the hashes starting with prefix.
UPPER_SENTINEL = "~"

MAX_PRECISION = 12


def encode(latitude: float, longitude: float, *, precision: int = 7) -> str:
    if precision <= 0:
        raise ValueError("precision must be > 0")
    if precision > MAX_PRECISION:
        raise ValueError(f"precision must be <= {MAX_PRECISION}")

    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0

    bits = [16, 8, 4, 2, 1]
    bit = 0
    ch = 0
    even = True
    out: list[str] = []

    while len(out) < precision:
        if even:
            mid = (lon_min + lon_max) / 2.0
            if longitude >= mid:
                ch |= bits[bit]
                lon_min = mid
            else:
                lon_max = mid
        else:
            mid = (lat_min + lat_max) / 2.0
            if latitude >= mid:
                ch |= bits[bit]
                lat_min = mid
            else:
                lat_max = mid

        even = not even
        if bit < 4:
            bit += 1
            continue

        out.append(_BASE32[ch])
        bit = 0
        ch = 0

    return "".join(out)


def decode_bbox(geohash: str) -> tuple[float, float, float, float]:
    """Return (lat_min, lat_max, lon_min, lon_max) for geohash."""

    if not geohash:
        raise ValueError("geohash must be non-empty")

    lat_min, lat_max = -90.0, 90.0
    lon_min, lon_max = -180.0, 180.0
    even = True

    for c in geohash.lower():
        try:
            cd = _DECODE_MAP[c]
        except KeyError as e:
            raise ValueError(f"Invalid geohash character: {c!r}") from e

        for mask in (16, 8, 4, 2, 1):
            if even:
                mid = (lon_min + lon_max) / 2.0
                if cd & mask:
                    lon_min = mid
                else:
                    lon_max = mid
            else:
                mid = (lat_min + lat_max) / 2.0
                if cd & mask:
                    lat_min = mid
                else:
                    lat_max = mid
            even = not even

    return lat_min, lat_max, lon_min, lon_max


def decode_center(geohash: str) -> tuple[float, float]:
    lat_min, lat_max, lon_min, lon_max = decode_bbox(geohash)
    return (lat_min + lat_max) / 2.0, (lon_min + lon_max) / 2.0


def decode(geohash: str) -> tuple[float, float, float, float]:
    """Return (latitude, longitude, lat_err, lon_err): cell center and half-extents."""

    lat_min, lat_max, lon_min, lon_max = decode_bbox(geohash)
    return (
        (lat_min + lat_max) / 2.0,
        (lon_min + lon_max) / 2.0,
        (lat_max - lat_min) / 2.0,
        (lon_max - lon_min) / 2.0,
    )


def prefix_range(prefix: str) -> tuple[str, str]:
    if not prefix:
        raise ValueError("prefix must be non-empty")
    return prefix, prefix + UPPER_SENTINEL


def prefix_range_for(
    latitude: float, longitude: float, prefix_length: int
) -> tuple[str, str]:
    """Return [lower, upper) bounds covering every hash sharing the coordinate's prefix."""

    return prefix_range(encode(latitude, longitude, precision=prefix_length))


def neighbors(geohash: str) -> list[str]:
    """Return the adjacent cells (up to 8) at the same precision.

    Longitude wraps around the antimeridian; there are no cells past the poles,
    so polar cells have fewer neighbours.
    """

    lat, lon, lat_err, lon_err = decode(geohash)
    precision = len(geohash)
    height = lat_err * 2.0
    width = lon_err * 2.0

    out: list[str] = []
    for dlat in (1, 0, -1):
        n_lat = lat + dlat * height
        if n_lat > 90.0 or n_lat < -90.0:
            continue
        for dlon in (-1, 0, 1):
            if dlat == 0 and dlon == 0:
                continue
            n_lon = lon + dlon * width
            if n_lon >= 180.0:
                n_lon -= 360.0
            elif n_lon < -180.0:
                n_lon += 360.0
            cell = encode(n_lat, n_lon, precision=precision)
            if cell != geohash and cell not in out:
                out.append(cell)
    return out
