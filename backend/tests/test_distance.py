from __future__ import annotations

import math

import pytest

from friendfinder.utils.geo import EARTH_RADIUS_M, haversine_m, validate_coordinates


def test_distance_is_symmetric_and_zero_on_identity() -> None:
    a = (37.7749, -122.4194)
    b = (34.0522, -118.2437)
    assert haversine_m(*a, *a) == 0.0
    assert haversine_m(*a, *b) == pytest.approx(haversine_m(*b, *a))


def test_known_distances() -> None:
    # One degree of latitude on the sphere.
    assert haversine_m(0.0, 0.0, 1.0, 0.0) == pytest.approx(
        EARTH_RADIUS_M * math.pi / 180.0
    )
    # San Francisco -> Los Angeles, roughly 559 km.
    assert haversine_m(37.7749, -122.4194, 34.0522, -118.2437) == pytest.approx(
        559_000, rel=0.01
    )


def test_antipodal_points_do_not_overflow() -> None:
    assert haversine_m(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * EARTH_RADIUS_M)


@pytest.mark.parametrize(
    ("lat", "lon"),
    [
        (90.1, 0.0),
        (-90.1, 0.0),
        (0.0, 180.5),
        (0.0, -181.0),
        (float("nan"), 0.0),
        (0.0, float("inf")),
        (True, 0.0),
    ],
)
def test_validate_coordinates_rejects(lat: float, lon: float) -> None:
    assert validate_coordinates(lat, lon) is not None


def test_validate_coordinates_accepts_bounds() -> None:
    assert validate_coordinates(90.0, 180.0) is None
    assert validate_coordinates(-90.0, -180.0) is None
    assert validate_coordinates(0, 0) is None
