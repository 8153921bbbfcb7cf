"""Shared geodesic helpers for ride trajectories and street segments.

Coordinates are WGS-84. Functions taking ``(lon, lat)`` tuples follow the
shapely / WKT axis order; scalar arguments are always named.
"""
from __future__ import annotations

import math
from typing import Iterable, Sequence

_EARTH_RADIUS_M: float = 6_371_000.0  # Earth mean radius in metres
METERS_PER_DEGREE_LAT: float = 111_320.0


def haversine_meters(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    """Great-circle distance in metres between two WGS-84 coordinates."""
    phi1, phi2 = math.radians(lat1), math.radians(lat2)
    dphi = math.radians(lat2 - lat1)
    dlam = math.radians(lon2 - lon1)
    a = (
        math.sin(dphi / 2) ** 2
        + math.cos(phi1) * math.cos(phi2) * math.sin(dlam / 2) ** 2
    )
    return _EARTH_RADIUS_M * 2 * math.atan2(math.sqrt(a), math.sqrt(1 - a))


def is_valid_fix(lat: float | None, lon: float | None) -> bool:
    """True for an in-range coordinate that is not a "no fix" placeholder.

    Phones write 0.0 for a missing fix, so an exact zero on either axis is
    rejected along with out-of-range values.
    """
    if lat is None or lon is None:
        return False
    if not (-90 <= lat <= 90) or not (-180 <= lon <= 180):
        return False
    return lat != 0.0 and lon != 0.0


def bbox_around(lon: float, lat: float, radius_deg: float) -> tuple[float, float, float, float]:
    """Return ``(min_lon, min_lat, max_lon, max_lat)`` of a square around a point."""
    return lon - radius_deg, lat - radius_deg, lon + radius_deg, lat + radius_deg


def meters_to_degrees(meters: float) -> float:
    """Approximate metres as degrees of latitude (good enough for search radii)."""
    return meters / METERS_PER_DEGREE_LAT


def point_to_segment_meters(
    point: tuple[float, float],
    seg_start: tuple[float, float],
    seg_end: tuple[float, float],
) -> float:
    """Distance in metres from ``point`` to the segment ``seg_start``–``seg_end``.

    All arguments are ``(lon, lat)``. The segment is projected onto a local
    equirectangular plane centred on the point, which is accurate to well under
    a metre at street scale.
    """
    px, py = point
    cos_lat = math.cos(math.radians(py))

    def _project(coord: tuple[float, float]) -> tuple[float, float]:
        return (
            (coord[0] - px) * METERS_PER_DEGREE_LAT * cos_lat,
            (coord[1] - py) * METERS_PER_DEGREE_LAT,
        )

    ax, ay = _project(seg_start)
    bx, by = _project(seg_end)
    dx, dy = bx - ax, by - ay
    length_sq = dx * dx + dy * dy
    if length_sq == 0.0:
        return math.hypot(ax, ay)
    # Clamp the projection of the origin (the point) onto the segment
    t = max(0.0, min(1.0, -(ax * dx + ay * dy) / length_sq))
    return math.hypot(ax + t * dx, ay + t * dy)


def min_distance_to_polyline_meters(
    point: tuple[float, float],
    coords: Sequence[tuple[float, float]],
) -> float:
    """Smallest distance from ``point`` to any consecutive-vertex segment of ``coords``."""
    if len(coords) == 1:
        return point_to_segment_meters(point, coords[0], coords[0])
    return min(
        (point_to_segment_meters(point, coords[i], coords[i + 1]) for i in range(len(coords) - 1)),
        default=math.inf,
    )


def polyline_length_meters(coords: Iterable[tuple[float, float]]) -> float:
    """Sum of haversine distances along a ``(lon, lat)`` polyline."""
    total = 0.0
    prev = None
    for lon, lat in coords:
        if prev is not None:
            total += haversine_meters(prev[1], prev[0], lat, lon)
        prev = (lon, lat)
    return total
