import math

import pytest

from common.geo import distance_km

pytestmark = pytest.mark.unit

DUBLIN = {"latitude": 53.3498, "longitude": -6.2603}
LONDON = {"latitude": 51.5074, "longitude": -0.1278}


def test_same_point_is_zero():
    assert distance_km(DUBLIN, DUBLIN) == 0.0


def test_dublin_to_london():
    assert distance_km(DUBLIN, LONDON) == pytest.approx(463.4, abs=1.5)


def test_symmetric():
    assert distance_km(DUBLIN, LONDON) == pytest.approx(distance_km(LONDON, DUBLIN))


def test_one_degree_of_latitude():
    a = {"latitude": 0.0, "longitude": 0.0}
    b = {"latitude": 1.0, "longitude": 0.0}
    assert distance_km(a, b) == pytest.approx(111.19, abs=0.01)


def test_antipodal_points_are_half_circumference():
    a = {"latitude": 0.0, "longitude": 0.0}
    b = {"latitude": 0.0, "longitude": 180.0}
    assert distance_km(a, b) == pytest.approx(math.pi * 6371.0, rel=1e-9)


def test_nan_propagates():
    a = {"latitude": float("nan"), "longitude": 0.0}
    assert math.isnan(distance_km(a, DUBLIN))
