"""Tests for the per-worker matcher pool."""
from __future__ import annotations

import threading
from concurrent.futures import ThreadPoolExecutor
from unittest.mock import MagicMock

from ridetrace.modules.map_matching import MatcherPool, current_worker_id


def _pool():
    factory = MagicMock(side_effect=lambda: MagicMock())
    return MatcherPool(factory), factory


def test_same_worker_gets_same_matcher():
    pool, factory = _pool()
    assert pool.acquire("w1") is pool.acquire("w1")
    assert factory.call_count == 1


def test_workers_get_distinct_matchers():
    pool, _ = _pool()
    assert pool.acquire("w1") is not pool.acquire("w2")
    assert len(pool) == 2
    assert "w1" in pool


def test_release_closes_and_forgets():
    pool, factory = _pool()
    matcher = pool.acquire("w1")
    pool.release("w1")
    matcher.close.assert_called_once()
    assert "w1" not in pool
    assert pool.acquire("w1") is not matcher
    assert factory.call_count == 2


def test_release_unknown_worker_is_noop():
    pool, _ = _pool()
    pool.release("nobody")
    assert len(pool) == 0


def test_close_releases_everything():
    pool, _ = _pool()
    matchers = [pool.acquire(f"w{i}") for i in range(3)]
    pool.close()
    assert len(pool) == 0
    for m in matchers:
        m.close.assert_called_once()


def test_one_matcher_per_thread():
    pool, factory = _pool()
    seen = {}
    lock = threading.Lock()
    barrier = threading.Barrier(3)

    def _work(_):
        barrier.wait()
        matcher = pool.acquire(current_worker_id())
        with lock:
            seen.setdefault(current_worker_id(), set()).add(id(matcher))

    with ThreadPoolExecutor(max_workers=3, thread_name_prefix="pool-test") as executor:
        list(executor.map(_work, range(3)))
        list(executor.map(lambda i: pool.acquire(current_worker_id()), range(9)))

    assert len(seen) == 3
    assert all(len(ids) == 1 for ids in seen.values())
    assert factory.call_count == 3
