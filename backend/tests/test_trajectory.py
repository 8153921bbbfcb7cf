"""Tests for ride trajectory building."""
from __future__ import annotations

from ridetrace.models.ride import Ride
from ridetrace.models.ride_point import RidePoint
from ridetrace.modules.trajectory import build_trajectory, usable_points


def _point(seq, ts, lat=52.5, lon=13.4):
    return RidePoint(sequence_index=seq, timestamp=ts, lat=lat, lon=lon)


def _ride(points):
    ride = Ride(original_filename="VM2_traj")
    ride.points = points
    return ride


def test_points_sorted_by_timestamp():
    points = [_point(0, 3000, lon=13.43), _point(1, 1000, lon=13.41), _point(2, 2000, lon=13.42)]
    assert [p.sequence_index for p in usable_points(points)] == [1, 2, 0]


def test_equal_timestamps_keep_file_order():
    points = [_point(2, 1000, lon=13.42), _point(0, 1000, lon=13.40), _point(1, 1000, lon=13.41)]
    assert [p.sequence_index for p in usable_points(points)] == [0, 1, 2]


def test_zero_fix_excluded_from_trajectory_but_kept_in_ride():
    ride = _ride([
        _point(0, 1000, lat=52.5, lon=13.40),
        _point(1, 2000, lat=0.0, lon=0.0),
        _point(2, 3000, lat=52.5, lon=13.42),
    ])
    ordered = build_trajectory(ride)

    assert len(ride.points) == 3
    assert [p.sequence_index for p in ordered] == [0, 2]
    assert list(ride.trajectory.coords) == [(13.40, 52.5), (13.42, 52.5)]


def test_points_without_timestamp_or_position_are_unusable():
    points = [
        _point(0, None),
        RidePoint(sequence_index=1, timestamp=1000, lat=None, lon=None),
        _point(2, 2000, lat=91.0),
        _point(3, 3000),
    ]
    assert [p.sequence_index for p in usable_points(points)] == [3]


def test_start_and_end_time_from_usable_points():
    ride = _ride([_point(0, 5000), _point(1, None), _point(2, 1000, lat=0.0), _point(3, 7000)])
    build_trajectory(ride)
    assert ride.start_time == 5000
    assert ride.end_time == 7000


def test_single_usable_point_has_no_trajectory():
    ride = _ride([_point(0, 1000)])
    build_trajectory(ride)
    assert ride.start_time == ride.end_time == 1000
    assert ride.trajectory is None


def test_no_usable_points_leaves_ride_untouched():
    ride = _ride([_point(0, None)])
    assert build_trajectory(ride) == []
    assert ride.start_time is None
    assert ride.trajectory is None
