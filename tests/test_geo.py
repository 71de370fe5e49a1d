from __future__ import annotations

import math

import pytest

from pymarkers.exceptions import InvalidInputError
from pymarkers.geo import destination_point, distance_meters, validate_coordinates

CENTER = (49.4229, 26.9871)


class TestDistanceMeters:
    def test_same_point_is_zero(self) -> None:
        assert distance_meters(*CENTER, *CENTER) == 0.0

    def test_symmetric(self) -> None:
        a = distance_meters(49.4229, 26.9871, 49.4240, 26.9885)
        b = distance_meters(49.4240, 26.9885, 49.4229, 26.9871)
        assert a == pytest.approx(b)

    def test_one_degree_of_latitude(self) -> None:
        # 2 * pi * R / 360 on a 6,371 km sphere.
        assert distance_meters(0.0, 0.0, 1.0, 0.0) == pytest.approx(111_194.93, abs=0.01)

    def test_antipodal_points(self) -> None:
        assert distance_meters(0.0, 0.0, 0.0, 180.0) == pytest.approx(math.pi * 6_371_000.0)

    def test_near_antipodal_points_do_not_overflow(self) -> None:
        distance = distance_meters(30.3333, -162.5887, -30.3333, 17.4113)
        assert math.isfinite(distance)
        assert distance == pytest.approx(math.pi * 6_371_000.0)

    def test_test_locations_from_the_field(self) -> None:
        # Location 2 is roughly 150 m north-east of the city center.
        assert distance_meters(*CENTER, 49.4240, 26.9885) == pytest.approx(158.0, abs=2.0)


class TestDestinationPoint:
    @pytest.mark.parametrize("bearing", [0.0, 45.0, 90.0, 200.0, 315.0])
    def test_round_trip_distance(self, bearing: float) -> None:
        lat, lon = destination_point(*CENTER, bearing, 150.0)
        assert distance_meters(*CENTER, lat, lon) == pytest.approx(150.0, abs=1e-6)

    def test_longitude_wraps(self) -> None:
        _lat, lon = destination_point(0.0, 179.9999, 90.0, 1000.0)
        assert -180.0 <= lon < -179.99


class TestValidateCoordinates:
    def test_coerces_numeric_strings(self) -> None:
        assert validate_coordinates("49.4229", "26.9871") == CENTER

    def test_accepts_edges(self) -> None:
        assert validate_coordinates(-90, 180) == (-90.0, 180.0)

    @pytest.mark.parametrize(
        ("lat", "lon"),
        [
            (90.0001, 0.0),
            (0.0, -180.5),
            (float("nan"), 0.0),
            (0.0, float("inf")),
            ("north", 0.0),
            (None, 0.0),
            (True, 0.0),
        ],
    )
    def test_rejects_invalid(self, lat: object, lon: object) -> None:
        with pytest.raises(InvalidInputError):
            validate_coordinates(lat, lon)
