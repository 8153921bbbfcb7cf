"""Tests for street segment usage aggregation and street name resolution."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import patch

import pytest
from sqlalchemy.exc import IntegrityError

from ridetrace.models.street_segment import StreetSegment, UNKNOWN_STREET_NAME
from ridetrace.modules.map_matching import MatchedEdge
from ridetrace.modules.segment_aggregator import (
    SegmentAggregator,
    find_nearest_street_name,
    resolve_street_name,
)
from ridetrace.utils.geo import point_to_segment_meters


class FakeNetwork:
    """RoadNetwork stand-in returning a fixed candidate list."""

    def __init__(self, edges):
        self.edges = edges
        self.queries = []

    def edges_in_bbox(self, min_lon, min_lat, max_lon, max_lat):
        self.queries.append((min_lon, min_lat, max_lon, max_lat))
        return list(self.edges)


# Unnamed connector running east along lat 52.0; middle vertex at lon 13.0001
UNNAMED = MatchedEdge(edge_id=7, geometry=[(13.0, 52.0), (13.0001, 52.0), (13.0002, 52.0)])


# ── Name resolution ──────────────────────────────────────────────────────────


class TestStreetNameResolution:
    def test_own_name_wins(self):
        edge = MatchedEdge(edge_id=1, geometry=[(13.0, 52.0), (13.1, 52.0)], name="  Karl-Marx-Allee ")
        network = FakeNetwork([])
        assert resolve_street_name(edge, network) == "Karl-Marx-Allee"
        assert network.queries == []

    def test_single_named_candidate(self):
        near = MatchedEdge(edge_id=8, geometry=[(13.0, 52.00005), (13.0002, 52.00005)], name="Near Street")
        assert resolve_street_name(UNNAMED, FakeNetwork([near]), 0.0002) == "Near Street"

    def test_closest_candidate_wins(self):
        far = MatchedEdge(edge_id=8, geometry=[(13.0, 52.00015), (13.0002, 52.00015)], name="Far Street")
        near = MatchedEdge(edge_id=9, geometry=[(13.0, 51.99995), (13.0002, 51.99995)], name="Near Street")
        assert find_nearest_street_name(UNNAMED, FakeNetwork([far, near]), 0.0002) == "Near Street"

    def test_distance_to_segment_not_to_vertices(self):
        # Long edge whose vertices are both far from the midpoint but passes right by it
        long_edge = MatchedEdge(edge_id=8, geometry=[(12.99, 52.00002), (13.01, 52.00002)], name="Long Street")
        short_edge = MatchedEdge(edge_id=9, geometry=[(13.0001, 52.0001), (13.0001, 52.0002)], name="Short Street")
        assert find_nearest_street_name(UNNAMED, FakeNetwork([short_edge, long_edge]), 0.0002) == "Long Street"

    def test_no_candidates_falls_back_to_unknown(self):
        assert resolve_street_name(UNNAMED, FakeNetwork([]), 0.0002) == UNKNOWN_STREET_NAME

    def test_no_network_falls_back_to_unknown(self):
        assert resolve_street_name(UNNAMED, None) == UNKNOWN_STREET_NAME

    def test_self_and_unnamed_candidates_skipped(self):
        same_edge = MatchedEdge(edge_id=7, geometry=UNNAMED.geometry, name="Self Street")
        blank = MatchedEdge(edge_id=8, geometry=[(13.0, 52.0), (13.0002, 52.0)], name="   ")
        assert find_nearest_street_name(UNNAMED, FakeNetwork([same_edge, blank]), 0.0002) is None

    def test_search_box_centred_on_middle_vertex(self):
        network = FakeNetwork([])
        find_nearest_street_name(UNNAMED, network, 0.0002)
        min_lon, min_lat, max_lon, max_lat = network.queries[0]
        assert min_lon == pytest.approx(12.9999)
        assert max_lon == pytest.approx(13.0003)
        assert min_lat == pytest.approx(51.9998)
        assert max_lat == pytest.approx(52.0002)


class TestPointToSegment:
    def test_perpendicular_foot_inside_segment(self):
        d = point_to_segment_meters((13.0, 52.0001), (12.99, 52.0), (13.01, 52.0))
        assert d == pytest.approx(11.1, abs=0.2)

    def test_clamped_to_endpoint(self):
        d = point_to_segment_meters((13.0, 52.0), (13.0, 52.001), (13.0, 52.002))
        assert d == pytest.approx(111.3, abs=0.5)

    def test_degenerate_segment(self):
        assert point_to_segment_meters((13.0, 52.0), (13.0, 52.0), (13.0, 52.0)) == 0.0


# ── Aggregation ──────────────────────────────────────────────────────────────


class TestSegmentAggregator:
    def test_new_edge_creates_segment(self, session_factory):
        edge = MatchedEdge(edge_id=42, geometry=[(13.4, 52.5), (13.41, 52.5)], name="Oranienstraße")
        SegmentAggregator(session_factory).record_edge(edge)

        db = session_factory()
        seg = db.get(StreetSegment, 42)
        assert seg.usage_count == 1
        assert seg.avoidance_count == 0
        assert seg.street_name == "Oranienstraße"
        assert list(seg.geometry.coords) == [(13.4, 52.5), (13.41, 52.5)]
        db.close()

    def test_repeat_edge_increments_without_overwriting(self, session_factory):
        aggregator = SegmentAggregator(session_factory)
        aggregator.record_edge(MatchedEdge(edge_id=5, geometry=[(13.4, 52.5), (13.41, 52.5)], name="First"))
        aggregator.record_edge(MatchedEdge(edge_id=5, geometry=[(1.0, 1.0), (2.0, 2.0)], name="Second"))

        db = session_factory()
        seg = db.get(StreetSegment, 5)
        assert seg.usage_count == 2
        assert seg.street_name == "First"
        assert list(seg.geometry.coords)[0] == (13.4, 52.5)
        db.close()

    def test_unnamed_edge_borrows_neighbour_name(self, session_factory):
        neighbour = MatchedEdge(edge_id=8, geometry=[(13.0, 52.00005), (13.0002, 52.00005)], name="Near Street")
        aggregator = SegmentAggregator(session_factory, network=FakeNetwork([neighbour]), name_search_radius_deg=0.0002)
        aggregator.record_edge(UNNAMED)

        db = session_factory()
        assert db.get(StreetSegment, 7).street_name == "Near Street"
        db.close()

    def test_ride_edges_return_ids_in_order(self, session_factory):
        edges = [
            MatchedEdge(edge_id=3, geometry=[(13.4, 52.5), (13.41, 52.5)]),
            MatchedEdge(edge_id=1, geometry=[(13.41, 52.5), (13.42, 52.5)]),
            MatchedEdge(edge_id=3, geometry=[(13.4, 52.5), (13.41, 52.5)]),
        ]
        applied = []
        db = session_factory()
        try:
            assert SegmentAggregator(session_factory).record_ride_edges(db, edges, applied.append) == [3, 1, 3]
            assert applied == [[3, 1, 3]]
            assert db.get(StreetSegment, 3).usage_count == 2
            assert db.get(StreetSegment, 1).usage_count == 1
        finally:
            db.close()

    def test_ride_edges_roll_back_when_apply_fails(self, session_factory):
        aggregator = SegmentAggregator(session_factory)
        aggregator.record_edge(MatchedEdge(edge_id=3, geometry=[(13.4, 52.5), (13.41, 52.5)]))
        edges = [
            MatchedEdge(edge_id=3, geometry=[(13.4, 52.5), (13.41, 52.5)]),
            MatchedEdge(edge_id=4, geometry=[(13.41, 52.5), (13.42, 52.5)]),
        ]

        def _apply(edge_ids):
            raise RuntimeError("ride row is gone")

        db = session_factory()
        try:
            with pytest.raises(RuntimeError):
                aggregator.record_ride_edges(db, edges, _apply)
            assert db.get(StreetSegment, 3).usage_count == 1
            assert db.get(StreetSegment, 4) is None
        finally:
            db.close()

    def test_ride_edges_replayed_after_insert_race(self, session_factory):
        aggregator = SegmentAggregator(session_factory)
        real_upsert = aggregator._upsert
        calls = []

        def _upsert(session, edge):
            calls.append(edge.edge_id)
            if len(calls) == 1:
                raise IntegrityError("INSERT INTO street_segments", {}, Exception("UNIQUE constraint failed"))
            return real_upsert(session, edge)

        edge = MatchedEdge(edge_id=6, geometry=[(13.4, 52.5), (13.41, 52.5)], name="Race Street")
        db = session_factory()
        try:
            with patch.object(aggregator, "_upsert", side_effect=_upsert):
                assert aggregator.record_ride_edges(db, [edge], lambda ids: None) == [6]
            assert calls == [6, 6]
            assert db.get(StreetSegment, 6).usage_count == 1
        finally:
            db.close()

    def test_concurrent_observations_are_all_counted(self, session_factory):
        workers = 8
        per_worker = 5
        edge = MatchedEdge(edge_id=99, geometry=[(13.4, 52.5), (13.41, 52.5)], name="Shared Street")
        aggregator = SegmentAggregator(session_factory)
        barrier = threading.Barrier(workers)

        def _observe():
            barrier.wait()
            for _ in range(per_worker):
                aggregator.record_edge(edge)

        with ThreadPoolExecutor(max_workers=workers) as executor:
            futures = [executor.submit(_observe) for _ in range(workers)]
            for f in futures:
                f.result()

        db = session_factory()
        assert db.get(StreetSegment, 99).usage_count == workers * per_worker
        assert db.query(StreetSegment).count() == 1
        db.close()

    def test_shared_lock_is_used(self, session_factory):
        lock = threading.Lock()
        aggregator = SegmentAggregator(session_factory, lock=lock)
        lock.acquire()
        worker = threading.Thread(
            target=aggregator.record_edge,
            args=(MatchedEdge(edge_id=1, geometry=[(13.4, 52.5), (13.41, 52.5)]),),
        )
        worker.start()
        worker.join(timeout=0.2)
        assert worker.is_alive()
        lock.release()
        worker.join(timeout=5)

        db = session_factory()
        assert db.get(StreetSegment, 1).usage_count == 1
        db.close()
