"""OSM road network and reference map matcher.

The street graph is built from an OSM extract with OSMnx and cached locally as
a .graphml file so later runs skip the import. Every edge gets a stable integer
id from its position in the sorted ``(u, v, key)`` edge list; the ids stay the
same for as long as the cached graph is reused.

``OsmMapMatcher`` is deliberately simple: each position snaps to its nearest
edge and consecutive snapped edges are joined by the shortest path over edge
length. A position with no edge within ``max_snap_meters``, or two snapped
edges with no path between them, breaks the sequence.
"""
from __future__ import annotations

import ast
import logging
import math
from pathlib import Path
from typing import Iterable, Sequence

import networkx as nx
import shapely
from shapely.geometry import LineString, Point

from ridetrace.modules.map_matching import MatchedEdge, MatchResult, SequenceBrokenError
from ridetrace.utils.geo import meters_to_degrees, polyline_length_meters

logger = logging.getLogger(__name__)


def _edge_name(raw) -> str | None:
    """Normalise an OSM ``name`` attribute (str, list, stringified list or NaN)."""
    if raw is None:
        return None
    if isinstance(raw, float) and math.isnan(raw):
        return None
    if isinstance(raw, str) and raw.startswith("["):
        try:
            raw = ast.literal_eval(raw)
        except (ValueError, SyntaxError):
            pass
    if isinstance(raw, (list, tuple)):
        names = [str(n).strip() for n in raw if n and str(n).strip()]
        return names[0] if names else None
    name = str(raw).strip()
    return name or None


class OsmRoadNetwork:
    """Read-only road network with an STRtree over edge geometries.

    Safe to share between workers; matchers hold the mutable state.
    """

    def __init__(self, graph: nx.MultiDiGraph):
        self._edges: list[MatchedEdge] = []
        self._lengths: list[float] = []
        self._endpoints: list[tuple[int, int]] = []
        self._routing = nx.MultiGraph()

        edges = sorted(graph.edges(keys=True, data=True), key=lambda e: (e[0], e[1], e[2]))
        for edge_id, (u, v, _key, data) in enumerate(edges):
            geom = data.get("geometry")
            if geom is not None:
                coords = [(float(x), float(y)) for x, y in geom.coords]
            else:
                coords = [
                    (float(graph.nodes[u]["x"]), float(graph.nodes[u]["y"])),
                    (float(graph.nodes[v]["x"]), float(graph.nodes[v]["y"])),
                ]
            length = data.get("length")
            length = float(length) if length is not None else polyline_length_meters(coords)

            self._edges.append(MatchedEdge(edge_id=edge_id, geometry=coords, name=_edge_name(data.get("name"))))
            self._lengths.append(length)
            self._endpoints.append((u, v))
            self._routing.add_edge(u, v, key=edge_id, length=length)

        self._tree = shapely.STRtree([LineString(e.geometry) for e in self._edges])
        logger.info(
            "Road network ready: %d nodes, %d edges",
            graph.number_of_nodes(), len(self._edges),
        )

    @classmethod
    def load(cls, osm_file: str | Path, cache_dir: str | Path) -> OsmRoadNetwork:
        """Load the cached graph for ``osm_file``, importing and caching it on first use.

        ``osm_file`` must be OSM XML (.osm, .xml, optionally bz2-compressed).
        Raises ValueError for a PBF extract, which osmnx cannot read.
        """
        osm_path = Path(osm_file)
        if osm_path.suffix.lower() == ".pbf":
            raise ValueError(
                f"{osm_path.name} is a PBF extract; convert it to OSM XML first "
                f"(e.g. osmium cat {osm_path.name} -o {osm_path.name.split('.')[0]}.osm)"
            )

        import osmnx as ox

        cache_path = Path(cache_dir) / f"{osm_path.name.split('.')[0]}.graphml"

        if cache_path.exists():
            logger.info("Loading cached road graph from %s", cache_path)
            return cls(ox.load_graphml(cache_path))

        if not osm_path.exists():
            raise FileNotFoundError(f"OSM file not found: {osm_path}")

        logger.info("Importing road graph from %s (first run, this takes a while)", osm_path)
        graph = ox.graph_from_xml(osm_path, simplify=True, retain_all=True)
        cache_path.parent.mkdir(parents=True, exist_ok=True)
        ox.save_graphml(graph, cache_path)
        logger.info("Road graph cached at %s", cache_path)
        return cls(graph)

    def __len__(self) -> int:
        return len(self._edges)

    @property
    def routing_graph(self) -> nx.MultiGraph:
        return self._routing

    def edge(self, edge_id: int) -> MatchedEdge:
        return self._edges[edge_id]

    def edge_length(self, edge_id: int) -> float:
        return self._lengths[edge_id]

    def endpoints(self, edge_id: int) -> tuple[int, int]:
        return self._endpoints[edge_id]

    def edges_in_bbox(
        self, min_lon: float, min_lat: float, max_lon: float, max_lat: float
    ) -> Iterable[MatchedEdge]:
        hits = self._tree.query(shapely.box(min_lon, min_lat, max_lon, max_lat))
        return [self._edges[int(i)] for i in sorted(hits)]

    def nearest_edge_id(self, lon: float, lat: float, max_distance_deg: float) -> int | None:
        hits = self._tree.query_nearest(Point(lon, lat), max_distance=max_distance_deg)
        if len(hits) == 0:
            return None
        # Ties (e.g. both directions of a two-way street) resolve to the lowest id
        return int(min(hits))


class OsmMapMatcher:
    """Nearest-edge snapping joined by shortest paths. One instance per worker."""

    def __init__(self, network: OsmRoadNetwork, max_snap_meters: float = 40.0):
        self._network = network
        self._max_snap_meters = max_snap_meters
        self._max_snap_deg = meters_to_degrees(max_snap_meters)
        self._path_cache: dict[tuple[int, int], list[int]] = {}

    def match(self, positions: Sequence[tuple[float, float]]) -> MatchResult:
        if len(positions) < 2:
            raise ValueError("Map matching needs at least two positions")

        snapped: list[int] = []
        for lat, lon in positions:
            edge_id = self._network.nearest_edge_id(lon, lat, self._max_snap_deg)
            if edge_id is None:
                raise SequenceBrokenError(
                    f"Sequence is broken: position ({lat:.6f}, {lon:.6f}) is more than "
                    f"{self._max_snap_meters:.0f} m from any road"
                )
            if not snapped or snapped[-1] != edge_id:
                snapped.append(edge_id)

        edge_ids = [snapped[0]]
        for target in snapped[1:]:
            for edge_id in self._connect(edge_ids[-1], target):
                if edge_id != edge_ids[-1]:
                    edge_ids.append(edge_id)

        edges = [self._network.edge(e) for e in edge_ids]
        length = sum(self._network.edge_length(e) for e in edge_ids)
        return MatchResult(edges=edges, length_m=length)

    def close(self) -> None:
        self._path_cache.clear()

    def _connect(self, source: int, target: int) -> list[int]:
        """Edge ids leading from edge ``source`` to edge ``target`` (target included)."""
        cached = self._path_cache.get((source, target))
        if cached is not None:
            return cached

        source_nodes = set(self._network.endpoints(source))
        target_nodes = self._network.endpoints(target)
        if source_nodes & set(target_nodes):
            path_edges = [target]
        else:
            best: tuple[float, list] | None = None
            graph = self._network.routing_graph
            for node in target_nodes:
                try:
                    dist, nodes = nx.multi_source_dijkstra(graph, source_nodes, target=node, weight="length")
                except nx.NetworkXNoPath:
                    continue
                if best is None or dist < best[0]:
                    best = (dist, nodes)
            if best is None:
                raise SequenceBrokenError(
                    f"Sequence is broken: no road connects edge {source} to edge {target}"
                )
            path_edges = [self._cheapest_edge(a, b) for a, b in zip(best[1], best[1][1:])]
            path_edges.append(target)

        self._path_cache[(source, target)] = path_edges
        return path_edges

    def _cheapest_edge(self, a: int, b: int) -> int:
        parallel = self._network.routing_graph[a][b]
        return min(parallel, key=lambda key: parallel[key]["length"])


def create_matcher_pool_factory(network: OsmRoadNetwork, max_snap_meters: float):
    """Factory for ``MatcherPool``: each call builds a matcher over the shared network."""
    def _factory() -> OsmMapMatcher:
        return OsmMapMatcher(network, max_snap_meters=max_snap_meters)
    return _factory
