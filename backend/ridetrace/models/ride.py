"""Ride entity — one imported SimRa trip."""
from __future__ import annotations

from datetime import datetime
from typing import Optional

from sqlalchemy import Integer, BigInteger, Float, String, Boolean, DateTime, JSON, Enum as SAEnum, func
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ridetrace.models.base import Base, BikeTypeEnum, PhoneLocationEnum
from ridetrace.models.geometry import WKTGeometry


class Ride(Base):
    __tablename__ = "rides"

    ride_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    # Natural key: rides are identified by their source filename only
    original_filename: Mapped[str] = mapped_column(String(255), nullable=False, unique=True, index=True)

    # Ride-level metadata, taken from the first incident row
    bike_type: Mapped[Optional[str]] = mapped_column(SAEnum(BikeTypeEnum), nullable=True)
    child_transport: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    trailer_attached: Mapped[Optional[bool]] = mapped_column(Boolean, nullable=True)
    phone_location: Mapped[Optional[str]] = mapped_column(SAEnum(PhoneLocationEnum), nullable=True)

    # Epoch milliseconds, derived from the usable points
    start_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    end_time: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    trajectory: Mapped[Optional[object]] = mapped_column(WKTGeometry("LINESTRING"), nullable=True)

    # Map-matching results, written once per ride
    matched_trajectory: Mapped[Optional[object]] = mapped_column(WKTGeometry("LINESTRING"), nullable=True)
    matched_length_m: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    traversed_edge_ids: Mapped[Optional[list]] = mapped_column(JSON(none_as_null=True), nullable=True)

    imported_at: Mapped[datetime] = mapped_column(DateTime, default=func.now())

    points: Mapped[list["RidePoint"]] = relationship(
        "RidePoint",
        back_populates="ride",
        cascade="all, delete-orphan",
        passive_deletes=True,
        order_by="RidePoint.sequence_index",
    )
    incidents: Mapped[list["Incident"]] = relationship(
        "Incident",
        back_populates="ride",
        cascade="all, delete-orphan",
        passive_deletes=True,
    )

    @property
    def is_matched(self) -> bool:
        return self.traversed_edge_ids is not None
