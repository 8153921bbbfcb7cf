"""Incident entity — a near-miss reported by the rider."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import Integer, BigInteger, Float, String, Boolean, ForeignKey, JSON, Enum as SAEnum
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ridetrace.models.base import Base, IncidentTypeEnum, ParticipantTypeEnum

DESCRIPTION_MAX_LENGTH = 1000


class Incident(Base):
    __tablename__ = "incidents"

    incident_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ride_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rides.ride_id", ondelete="CASCADE"), nullable=False, index=True
    )
    # "key" column of the source row
    incident_key: Mapped[Optional[int]] = mapped_column(Integer, nullable=True)
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    incident_type: Mapped[str] = mapped_column(
        SAEnum(IncidentTypeEnum), nullable=False, default=IncidentTypeEnum.NOTHING
    )
    scary: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    description: Mapped[Optional[str]] = mapped_column(String(DESCRIPTION_MAX_LENGTH), nullable=True)
    # Sorted list of ParticipantTypeEnum values
    participants: Mapped[list] = mapped_column(JSON, nullable=False, default=list)

    ride: Mapped["Ride"] = relationship("Ride", back_populates="incidents")

    @property
    def participant_types(self) -> set[ParticipantTypeEnum]:
        return {ParticipantTypeEnum(p) for p in self.participants or []}
