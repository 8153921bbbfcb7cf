"""StreetSegment entity — usage aggregate for one road-network edge."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import BigInteger, Integer, String, CheckConstraint
from sqlalchemy.orm import Mapped, mapped_column
from ridetrace.models.base import Base
from ridetrace.models.geometry import WKTGeometry

UNKNOWN_STREET_NAME = "Unknown"


class StreetSegment(Base):
    __tablename__ = "street_segments"
    __table_args__ = (
        CheckConstraint("usage_count >= 0", name="ck_segment_usage_non_negative"),
        CheckConstraint("avoidance_count >= 0", name="ck_segment_avoidance_non_negative"),
    )

    # Edge id assigned by the road network, never generated here
    edge_id: Mapped[int] = mapped_column(BigInteger, primary_key=True, autoincrement=False)
    street_name: Mapped[str] = mapped_column(String(255), nullable=False, default=UNKNOWN_STREET_NAME)
    geometry: Mapped[Optional[object]] = mapped_column(WKTGeometry("LINESTRING"), nullable=True)
    usage_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    # Reserved for route-avoidance analysis; not populated by the importer
    avoidance_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
