"""Map-match stored rides and feed the street segment usage counts.

Matching is best effort. A ride whose trace cannot be matched keeps its raw
trajectory and simply has no matched fields; nothing is retried within a run.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from typing import Callable, Iterable, Optional

from shapely.geometry import LineString
from sqlalchemy.orm import Session

from ridetrace.models.ride import Ride
from ridetrace.modules.map_matching import (
    MapMatcher,
    MatchedEdge,
    MatcherPool,
    SequenceBrokenError,
    current_worker_id,
)
from ridetrace.modules.segment_aggregator import SegmentAggregator
from ridetrace.modules.trajectory import usable_points

logger = logging.getLogger(__name__)


def dedupe_consecutive(coords: Iterable[tuple[float, float]]) -> list[tuple[float, float]]:
    """Drop coordinates equal to the one right before them. Non-adjacent repeats stay."""
    out: list[tuple[float, float]] = []
    for coord in coords:
        if not out or out[-1] != coord:
            out.append(coord)
    return out


def assemble_matched_geometry(edges: Iterable[MatchedEdge]) -> Optional[LineString]:
    """Chain edge geometries in match order; None if fewer than two distinct vertices."""
    coords = dedupe_consecutive(
        (float(lon), float(lat)) for edge in edges for lon, lat in edge.geometry
    )
    if len(coords) < 2:
        return None
    return LineString(coords)


def _ride_label(ride: Ride) -> str:
    return ride.original_filename or str(ride.ride_id)


def match_ride(db: Session, ride: Ride, matcher: MapMatcher, aggregator: SegmentAggregator) -> bool:
    """Match one ride and count its edges. Returns True if the ride was matched.

    ``ride`` must belong to ``db``. The matched fields and the edge counts are
    committed together; if storing them fails, both are rolled back and the
    error propagates with the ride still pending.
    """
    label = _ride_label(ride)
    if ride.is_matched:
        logger.debug("Ride %s already matched, skipping", label)
        return False

    points = usable_points(ride.points)
    if len(points) < 2:
        logger.warning("Ride %s has too few valid points for matching (%d points)", label, len(points))
        return False

    try:
        result = matcher.match([(p.lat, p.lon) for p in points])
    except SequenceBrokenError as e:
        logger.warning("Map matching failed for ride %s: %s", label, e)
        return False
    except Exception:
        logger.exception("Unexpected error matching ride %s", label)
        return False

    matched_trajectory = assemble_matched_geometry(result.edges)

    def _set_matched_fields(edge_ids: list[int]) -> None:
        ride.matched_trajectory = matched_trajectory
        ride.matched_length_m = result.length_m
        ride.traversed_edge_ids = edge_ids

    aggregator.record_ride_edges(db, result.edges, _set_matched_fields)

    logger.debug(
        "Ride %s matched: %d edges, %.0fm length",
        label, len(result.edges), result.length_m,
    )
    return True


def match_stored_ride(
    db: Session,
    ride_id: int,
    matcher_pool: MatcherPool,
    aggregator: SegmentAggregator,
) -> bool:
    """Load ``ride_id`` and match it with the calling worker's matcher."""
    ride = db.get(Ride, ride_id)
    if ride is None:
        logger.warning("Ride %d vanished before matching", ride_id)
        return False
    matcher = matcher_pool.acquire(current_worker_id())
    return match_ride(db, ride, matcher, aggregator)


def match_pending_rides(
    session_factory: Callable[[], Session],
    matcher_pool: MatcherPool,
    aggregator: SegmentAggregator,
    workers: int,
) -> dict[str, int]:
    """Match every stored ride that has no matching result yet.

    Returns ``{"pending", "matched", "skipped", "failed"}``.
    """
    db = session_factory()
    try:
        pending = [
            row[0]
            for row in db.query(Ride.ride_id).filter(Ride.traversed_edge_ids.is_(None)).order_by(Ride.ride_id)
        ]
    finally:
        db.close()

    stats = {"pending": len(pending), "matched": 0, "skipped": 0, "failed": 0}
    logger.info("Found %d rides without matching results", len(pending))
    if not pending:
        return stats

    def _work(ride_id: int) -> bool:
        session = session_factory()
        try:
            return match_stored_ride(session, ride_id, matcher_pool, aggregator)
        except Exception:
            session.rollback()
            raise
        finally:
            session.close()

    try:
        with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="ridetrace-match") as executor:
            futures = {executor.submit(_work, ride_id): ride_id for ride_id in pending}
            for future in as_completed(futures):
                ride_id = futures[future]
                try:
                    if future.result():
                        stats["matched"] += 1
                    else:
                        stats["skipped"] += 1
                except Exception:
                    logger.exception("Failed to store matching result for ride %d", ride_id)
                    stats["failed"] += 1
    finally:
        matcher_pool.close()

    logger.info(
        "Matching complete: %d matched, %d skipped, %d failed",
        stats["matched"], stats["skipped"], stats["failed"],
    )
    return stats
