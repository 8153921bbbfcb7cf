"""Map-matching contract and per-worker matcher pool.

The matching engine turns an ordered list of GPS positions into the road
network edges a ride travelled. This module only defines what the pipeline
needs from it; ``ridetrace.modules.road_network`` ships an OSM-based
implementation.

Matchers are expensive to build and keep mutable search state, so a matcher
instance must never be used by two workers at once. ``MatcherPool`` hands each
worker its own instance, keyed by worker identity, and closes them all when the
batch is done.
"""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Callable, Iterable, Protocol, Sequence

logger = logging.getLogger(__name__)


class SequenceBrokenError(ValueError):
    """The positions are too far apart or too far from any road to be matched."""


@dataclass(frozen=True)
class MatchedEdge:
    """One road-network edge. ``geometry`` is a list of ``(lon, lat)`` vertices."""

    edge_id: int
    geometry: list[tuple[float, float]]
    name: str | None = None


@dataclass
class MatchResult:
    edges: list[MatchedEdge] = field(default_factory=list)
    length_m: float = 0.0


class MapMatcher(Protocol):
    def match(self, positions: Sequence[tuple[float, float]]) -> MatchResult:
        """Match ``(lat, lon)`` positions (at least two) to road edges.

        Raises SequenceBrokenError when the trace cannot be matched.
        """
        ...

    def close(self) -> None:
        ...


class RoadNetwork(Protocol):
    def edges_in_bbox(
        self, min_lon: float, min_lat: float, max_lon: float, max_lat: float
    ) -> Iterable[MatchedEdge]:
        """Edges whose geometry intersects the bounding box."""
        ...


class MatcherPool:
    """Explicit per-worker ownership of matcher instances.

    ``acquire`` creates a matcher on a worker's first request and returns the
    same instance on later requests from that worker. ``release`` closes and
    forgets one worker's matcher; ``close`` releases all of them.
    """

    def __init__(self, factory: Callable[[], MapMatcher]):
        self._factory = factory
        self._instances: dict[str, MapMatcher] = {}
        self._lock = threading.Lock()

    def acquire(self, worker_id: str) -> MapMatcher:
        with self._lock:
            matcher = self._instances.get(worker_id)
            if matcher is None:
                matcher = self._factory()
                self._instances[worker_id] = matcher
                logger.debug("Created matcher for worker %s", worker_id)
            return matcher

    def release(self, worker_id: str) -> None:
        with self._lock:
            matcher = self._instances.pop(worker_id, None)
        if matcher is not None:
            matcher.close()
            logger.debug("Released matcher for worker %s", worker_id)

    def close(self) -> None:
        with self._lock:
            worker_ids = list(self._instances)
        for worker_id in worker_ids:
            self.release(worker_id)

    def __len__(self) -> int:
        with self._lock:
            return len(self._instances)

    def __contains__(self, worker_id: object) -> bool:
        with self._lock:
            return worker_id in self._instances


def current_worker_id() -> str:
    """Identity of the calling worker (its thread name)."""
    return threading.current_thread().name
