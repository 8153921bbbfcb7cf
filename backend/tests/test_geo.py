"""Tests for the shared geodesic helpers."""
from __future__ import annotations

import pytest

from ridetrace.utils.geo import (
    bbox_around,
    haversine_meters,
    is_valid_fix,
    meters_to_degrees,
    min_distance_to_polyline_meters,
    polyline_length_meters,
)


def test_haversine_one_degree_latitude():
    assert haversine_meters(52.0, 13.0, 53.0, 13.0) == pytest.approx(111_195, rel=1e-3)


def test_haversine_same_point():
    assert haversine_meters(52.5, 13.4, 52.5, 13.4) == 0.0


@pytest.mark.parametrize("lat, lon, expected", [
    (52.5, 13.4, True),
    (-33.9, -70.6, True),
    (0.0, 0.0, False),
    (0.0, 13.4, False),
    (52.5, 0.0, False),
    (90.1, 13.4, False),
    (52.5, -180.5, False),
    (None, 13.4, False),
])
def test_is_valid_fix(lat, lon, expected):
    assert is_valid_fix(lat, lon) is expected


def test_bbox_around():
    assert bbox_around(13.0, 52.0, 0.5) == (12.5, 51.5, 13.5, 52.5)


def test_meters_to_degrees():
    assert meters_to_degrees(111_320.0) == pytest.approx(1.0)


def test_polyline_length_sums_legs():
    coords = [(13.0, 52.0), (13.0, 52.001), (13.0, 52.002)]
    assert polyline_length_meters(coords) == pytest.approx(2 * haversine_meters(52.0, 13.0, 52.001, 13.0))
    assert polyline_length_meters(coords[:1]) == 0.0


def test_min_distance_to_polyline_uses_closest_leg():
    coords = [(13.0, 52.0), (13.001, 52.0), (13.001, 52.001)]
    # Beside the second leg, ~6.9 m east of it
    assert min_distance_to_polyline_meters((13.0011, 52.0005), coords) == pytest.approx(6.85, abs=0.1)


def test_min_distance_single_vertex():
    assert min_distance_to_polyline_meters((13.0, 52.0001), [(13.0, 52.0)]) == pytest.approx(11.13, abs=0.05)
