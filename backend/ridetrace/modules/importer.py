"""SimRa batch import.

Walks an export tree, skips rides whose filename is already stored, and imports
the rest on a fixed-size worker pool. Each file is parsed, cleaned, saved in its
own transaction and, when a road network is configured, map-matched by the same
worker. A file that fails is logged and left out; because its filename never
reaches the database, the next run picks it up again.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor, as_completed
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Callable, Optional

from sqlalchemy.orm import Session

from ridetrace.config import settings
from ridetrace.models.base import ImportRunStatusEnum
from ridetrace.models.import_run import ImportRun
from ridetrace.models.ride import Ride
from ridetrace.modules.map_matching import MatcherPool, current_worker_id
from ridetrace.modules.ride_matching import match_ride
from ridetrace.modules.segment_aggregator import SegmentAggregator
from ridetrace.modules.simra_parser import parse_ride_path
from ridetrace.modules.trajectory import build_trajectory

logger = logging.getLogger(__name__)

_OUTCOME_IMPORTED = "imported"
_OUTCOME_EMPTY = "skipped_empty"


def load_existing_filenames(db: Session) -> set[str]:
    return {row[0] for row in db.query(Ride.original_filename)}


def discover_ride_files(
    root: Path,
    existing_filenames: set[str],
    marker: str | None = None,
    prefix: str | None = None,
) -> list[Path]:
    """Ride files under ``root`` that are not yet stored, in sorted order.

    A candidate is a regular, non-hidden file whose path has a ``marker``
    directory and whose name starts with ``prefix``. Rides are identified by
    filename alone, so a name found twice in the tree is queued once.
    """
    marker = marker if marker is not None else settings.RIDE_DIR_MARKER
    prefix = prefix if prefix is not None else settings.RIDE_FILE_PREFIX

    found: list[Path] = []
    seen: set[str] = set()
    for path in sorted(root.rglob("*")):
        name = path.name
        if name.startswith(".") or not name.startswith(prefix):
            continue
        if marker not in path.parts or not path.is_file():
            continue
        if name in existing_filenames:
            continue
        if name in seen:
            logger.debug("Duplicate ride filename %s at %s (already queued)", name, path)
            continue
        seen.add(name)
        found.append(path)
    return found


def effective_worker_count(requested: int | None, pooled: bool | None = None) -> int:
    """Worker count for a run, kept within half of the DB connection pool."""
    from ridetrace.database import is_pooled_database

    workers = requested if requested is not None else settings.IMPORT_WORKERS
    if workers < 1:
        raise ValueError(f"Worker count must be at least 1, got {workers}")
    if pooled is None:
        pooled = is_pooled_database()
    if pooled:
        ceiling = max(1, settings.DB_POOL_SIZE // 2)
        if workers > ceiling:
            logger.warning(
                "Requested %d import workers but DB pool size is %d; using %d",
                workers, settings.DB_POOL_SIZE, ceiling,
            )
            workers = ceiling
    return workers


def _process_file(
    path: Path,
    session_factory: Callable[[], Session],
    matcher_pool: Optional[MatcherPool],
    aggregator: Optional[SegmentAggregator],
) -> tuple[str, Optional[bool]]:
    """Import one file. Returns (outcome, matched) where matched is None if not attempted."""
    filename = path.name
    ride = parse_ride_path(path)
    build_trajectory(ride)

    if not ride.points:
        logger.warning("Ride has 0 points (skipping): %s", filename)
        return _OUTCOME_EMPTY, None

    db = session_factory()
    try:
        try:
            db.add(ride)
            db.commit()
        except Exception:
            db.rollback()
            raise

        if matcher_pool is None or aggregator is None:
            return _OUTCOME_IMPORTED, None

        matched = False
        try:
            matcher = matcher_pool.acquire(current_worker_id())
            matched = match_ride(db, ride, matcher, aggregator)
        except Exception:
            logger.exception("Failed to store matching result for ride %s", filename)
            matched = False
        return _OUTCOME_IMPORTED, matched
    finally:
        db.close()


def import_rides(
    root: str | Path | None = None,
    session_factory: Callable[[], Session] | None = None,
    workers: int | None = None,
    matcher_pool: Optional[MatcherPool] = None,
    aggregator: Optional[SegmentAggregator] = None,
    progress_every: int | None = None,
) -> dict[str, Any]:
    """Import all new ride files below ``root``.

    Blocks until every candidate file has been attempted. Returns a summary
    with counts of files found, imported, skipped (no points), failed, and of
    rides matched / not matched when matching is enabled.
    """
    if session_factory is None:
        from ridetrace.database import SessionLocal
        session_factory = SessionLocal
    root = Path(root if root is not None else settings.IMPORT_ROOT)
    progress_every = progress_every or settings.IMPORT_PROGRESS_EVERY

    summary: dict[str, Any] = {
        "files_found": 0,
        _OUTCOME_IMPORTED: 0,
        _OUTCOME_EMPTY: 0,
        "failed": 0,
        "matched": 0,
        "match_skipped": 0,
    }

    logger.info("Starting SimRa data import from: %s", root)
    if not root.exists():
        logger.warning("Data path does not exist: %s", root)
        return summary

    worker_count = effective_worker_count(workers)

    db = session_factory()
    try:
        existing = load_existing_filenames(db)
        logger.info("Found %d existing rides in DB. Skipping them.", len(existing))
        run = ImportRun(import_root=str(root), status=ImportRunStatusEnum.RUNNING)
        db.add(run)
        db.commit()
        run_id = run.run_id
    finally:
        db.close()

    status = ImportRunStatusEnum.FAILED
    total = completed = 0
    try:
        files = discover_ride_files(root, existing)
        total = len(files)
        summary["files_found"] = total
        logger.info("Found %d new files to process.", total)

        with ThreadPoolExecutor(max_workers=worker_count, thread_name_prefix="ridetrace-import") as executor:
            futures = {
                executor.submit(_process_file, path, session_factory, matcher_pool, aggregator): path
                for path in files
            }
            for future in as_completed(futures):
                path = futures[future]
                try:
                    outcome, matched = future.result()
                    summary[outcome] += 1
                    if matched is True:
                        summary["matched"] += 1
                    elif matched is False:
                        summary["match_skipped"] += 1
                except Exception:
                    logger.exception("Failed to process file: %s", path.name)
                    summary["failed"] += 1
                completed += 1
                if completed % progress_every == 0:
                    logger.info("Imported %d/%d rides...", completed, total)
        status = ImportRunStatusEnum.COMPLETED
    finally:
        if matcher_pool is not None:
            matcher_pool.close()
        _finish_run(session_factory, run_id, summary, status)
        if status is ImportRunStatusEnum.FAILED:
            logger.error("Import run %d aborted after %d of %d files", run_id, completed, total)

    logger.info(
        "SimRa data import completed: %d imported, %d empty, %d failed (of %d files)",
        summary[_OUTCOME_IMPORTED], summary[_OUTCOME_EMPTY], summary["failed"], total,
    )
    summary["run_id"] = run_id
    return summary


def _finish_run(
    session_factory: Callable[[], Session],
    run_id: int,
    summary: dict[str, Any],
    status: ImportRunStatusEnum,
) -> None:
    db = session_factory()
    try:
        run = db.get(ImportRun, run_id)
        if run is None:
            return
        run.files_found = summary["files_found"]
        run.imported = summary[_OUTCOME_IMPORTED]
        run.skipped_empty = summary[_OUTCOME_EMPTY]
        run.failed = summary["failed"]
        run.matched = summary["matched"]
        run.match_skipped = summary["match_skipped"]
        run.status = status
        run.completed_at = datetime.now(timezone.utc)
        db.commit()
    finally:
        db.close()
