"""ImportRun entity — bookkeeping for each batch import.

Counts come from the orchestrator's summary so that operators can see what the
last run did without trawling the logs.
"""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, String, DateTime, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column
from ridetrace.models.base import Base, ImportRunStatusEnum


class ImportRun(Base):
    __tablename__ = "import_runs"

    run_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    started_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())
    completed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, nullable=True)
    import_root: Mapped[str] = mapped_column(String(1000), nullable=False)
    status: Mapped[str] = mapped_column(
        SAEnum(ImportRunStatusEnum), nullable=False, default=ImportRunStatusEnum.RUNNING
    )
    files_found: Mapped[int] = mapped_column(Integer, default=0)
    imported: Mapped[int] = mapped_column(Integer, default=0)
    skipped_empty: Mapped[int] = mapped_column(Integer, default=0)
    failed: Mapped[int] = mapped_column(Integer, default=0)
    matched: Mapped[int] = mapped_column(Integer, default=0)
    match_skipped: Mapped[int] = mapped_column(Integer, default=0)
