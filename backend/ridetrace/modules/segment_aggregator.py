"""Street segment usage aggregation.

Every matched edge of every ride bumps the usage counter of that edge's
``StreetSegment`` row. Import workers run concurrently and many rides share
the same streets, so the read → create-or-increment → commit sequence runs
under one lock shared by all workers of the process. Existing rows are bumped
with ``usage_count = usage_count + 1`` in SQL. A ride's increments share one
transaction with its matched fields, so a failure part way leaves neither
behind. An insert that loses a race against another process rolls back and is
replayed as an increment.

A new segment keeps the first name and geometry it is seen with. Unnamed
edges (service roads, crossings, short connectors) borrow the name of the
closest named edge within ~20 m of their midpoint.
"""
from __future__ import annotations

import logging
import threading
from typing import Callable, Optional, Sequence

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session
from shapely.geometry import LineString

from ridetrace.config import settings
from ridetrace.models.street_segment import StreetSegment, UNKNOWN_STREET_NAME
from ridetrace.modules.map_matching import MatchedEdge, RoadNetwork
from ridetrace.utils.geo import bbox_around, min_distance_to_polyline_meters

logger = logging.getLogger(__name__)


# ── Name resolution ────────────────────────────────────────────────────────────

def find_nearest_street_name(
    edge: MatchedEdge,
    network: RoadNetwork,
    radius_deg: float,
) -> Optional[str]:
    """Name of the closest named edge around the middle vertex of ``edge``.

    Candidates come from a ±``radius_deg`` box; the edge itself and unnamed
    edges are skipped. Distance is measured from the midpoint to the nearest
    segment of each candidate's geometry.
    """
    if not edge.geometry:
        return None
    mid_lon, mid_lat = edge.geometry[len(edge.geometry) // 2]

    best_name: Optional[str] = None
    best_distance = float("inf")
    for candidate in network.edges_in_bbox(*bbox_around(mid_lon, mid_lat, radius_deg)):
        if candidate.edge_id == edge.edge_id:
            continue
        if not candidate.name or not candidate.name.strip() or not candidate.geometry:
            continue
        distance = min_distance_to_polyline_meters((mid_lon, mid_lat), candidate.geometry)
        if distance < best_distance:
            best_distance = distance
            best_name = candidate.name.strip()
    return best_name


def resolve_street_name(
    edge: MatchedEdge,
    network: Optional[RoadNetwork],
    radius_deg: float | None = None,
) -> str:
    if edge.name and edge.name.strip():
        return edge.name.strip()
    if network is not None:
        radius = radius_deg if radius_deg is not None else settings.STREET_NAME_SEARCH_RADIUS_DEG
        nearest = find_nearest_street_name(edge, network, radius)
        if nearest:
            return nearest
    return UNKNOWN_STREET_NAME


# ── Aggregator ─────────────────────────────────────────────────────────────────

class SegmentAggregator:
    """Creates or increments StreetSegment rows for matched edges."""

    def __init__(
        self,
        session_factory: Callable[[], Session],
        network: Optional[RoadNetwork] = None,
        lock: Optional[threading.Lock] = None,
        name_search_radius_deg: float | None = None,
    ):
        self._session_factory = session_factory
        self._network = network
        self._lock = lock or threading.Lock()
        self._radius_deg = name_search_radius_deg

    def record_edge(self, edge: MatchedEdge) -> None:
        """Count one traversal of ``edge`` in its own transaction."""
        with self._lock:
            db = self._session_factory()
            try:
                try:
                    self._upsert(db, edge)
                    db.commit()
                except IntegrityError:
                    # Another process created the row first
                    db.rollback()
                    self._increment(db, edge.edge_id)
                    db.commit()
            except Exception:
                db.rollback()
                raise
            finally:
                db.close()

    def record_ride_edges(
        self,
        db: Session,
        edges: Sequence[MatchedEdge],
        apply: Callable[[list[int]], None],
    ) -> list[int]:
        """Count one traversal of each edge and commit it together with ``apply``.

        ``apply`` receives the traversed edge ids and sets the ride's matched
        fields on ``db``. Counts and ride are committed as one transaction or
        rolled back together, so a ride is either matched and counted or
        neither. A transaction that loses an insert race to another process is
        replayed once.
        """
        with self._lock:
            try:
                return self._record_once(db, edges, apply)
            except IntegrityError:
                logger.info("Street segment created concurrently; replaying %d edges", len(edges))
            return self._record_once(db, edges, apply)

    def _record_once(self, db: Session, edges: Sequence[MatchedEdge], apply) -> list[int]:
        try:
            edge_ids = [self._upsert(db, edge) for edge in edges]
            apply(edge_ids)
            db.commit()
        except Exception:
            db.rollback()
            raise
        return edge_ids

    def _upsert(self, db: Session, edge: MatchedEdge) -> int:
        if db.get(StreetSegment, edge.edge_id) is None:
            segment = StreetSegment(
                edge_id=edge.edge_id,
                street_name=resolve_street_name(edge, self._network, self._radius_deg),
                geometry=LineString(edge.geometry) if len(edge.geometry) >= 2 else None,
                usage_count=1,
                avoidance_count=0,
            )
            db.add(segment)
            db.flush()
            logger.debug("New street segment %d (%s)", edge.edge_id, segment.street_name)
        else:
            self._increment(db, edge.edge_id)
        return edge.edge_id

    def _increment(self, db: Session, edge_id: int) -> None:
        db.execute(
            update(StreetSegment)
            .where(StreetSegment.edge_id == edge_id)
            .values(usage_count=StreetSegment.usage_count + 1)
        )
