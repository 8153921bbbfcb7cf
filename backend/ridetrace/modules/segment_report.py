"""Street segment usage reporting and export."""
from __future__ import annotations

import logging
from pathlib import Path

import polars as pl
from sqlalchemy.orm import Session

from ridetrace.models.street_segment import StreetSegment
from ridetrace.utils.geo import polyline_length_meters

logger = logging.getLogger(__name__)

_EXPORT_WRITERS = {
    ".csv": "write_csv",
    ".parquet": "write_parquet",
}


def top_segments(db: Session, limit: int = 20) -> list[StreetSegment]:
    """Most used segments first; ties broken by edge id."""
    return (
        db.query(StreetSegment)
        .order_by(StreetSegment.usage_count.desc(), StreetSegment.edge_id)
        .limit(limit)
        .all()
    )


def segment_usage_frame(db: Session) -> pl.DataFrame:
    """One row per stored segment with its usage counters and length."""
    segments = db.query(StreetSegment).order_by(StreetSegment.edge_id).all()
    return pl.DataFrame(
        {
            "edge_id": [s.edge_id for s in segments],
            "street_name": [s.street_name for s in segments],
            "usage_count": [s.usage_count for s in segments],
            "avoidance_count": [s.avoidance_count for s in segments],
            "length_m": [
                polyline_length_meters(list(s.geometry.coords)) if s.geometry is not None else None
                for s in segments
            ],
        },
        schema={
            "edge_id": pl.Int64,
            "street_name": pl.Utf8,
            "usage_count": pl.Int64,
            "avoidance_count": pl.Int64,
            "length_m": pl.Float64,
        },
    )


def usage_by_street(frame: pl.DataFrame) -> pl.DataFrame:
    """Total usage per street name, busiest first."""
    return (
        frame.group_by("street_name")
        .agg(
            pl.col("usage_count").sum().alias("usage_count"),
            pl.col("edge_id").count().alias("segments"),
            pl.col("length_m").sum().alias("length_m"),
        )
        .sort(["usage_count", "street_name"], descending=[True, False])
    )


def export_segment_usage(db: Session, path: str | Path) -> int:
    """Write the per-segment usage table to ``path`` (.csv or .parquet). Returns the row count."""
    path = Path(path)
    writer = _EXPORT_WRITERS.get(path.suffix.lower())
    if writer is None:
        raise ValueError(f"Unsupported export format '{path.suffix}' (use .csv or .parquet)")

    frame = segment_usage_frame(db)
    path.parent.mkdir(parents=True, exist_ok=True)
    getattr(frame, writer)(path)
    logger.info("Exported %d street segments to %s", frame.height, path)
    return frame.height
