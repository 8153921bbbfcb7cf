"""Ride trajectory builder.

Selects the points of a ride that can be placed on a map, orders them in time
and derives the ride's time bounds and raw polyline. The ride's own point list
is left in file order; only the derived fields change.
"""
from __future__ import annotations

import logging
from typing import Iterable

from shapely.geometry import LineString

from ridetrace.models.ride import Ride
from ridetrace.models.ride_point import RidePoint
from ridetrace.utils.geo import is_valid_fix

logger = logging.getLogger(__name__)


def usable_points(points: Iterable[RidePoint]) -> list[RidePoint]:
    """Points with a timestamp and a valid fix, sorted by (timestamp, sequence_index)."""
    kept = [
        p for p in points
        if p.timestamp is not None and is_valid_fix(p.lat, p.lon)
    ]
    kept.sort(key=lambda p: (p.timestamp, p.sequence_index))
    return kept


def build_trajectory(ride: Ride) -> list[RidePoint]:
    """Set start/end time and the raw trajectory of ``ride`` from its usable points.

    Returns the usable points in time order so callers can reuse them.
    """
    ordered = usable_points(ride.points)
    if not ordered:
        logger.debug("Ride %s has no usable points", ride.original_filename)
        return ordered

    ride.start_time = ordered[0].timestamp
    ride.end_time = ordered[-1].timestamp
    if len(ordered) >= 2:
        ride.trajectory = LineString([(p.lon, p.lat) for p in ordered])
    return ordered
