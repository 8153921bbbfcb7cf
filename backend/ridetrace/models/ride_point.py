"""RidePoint entity — one GPS/IMU sample of a ride."""
from __future__ import annotations

from typing import Optional

from sqlalchemy import Integer, BigInteger, Float, ForeignKey, Index, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship
from ridetrace.models.base import Base


class RidePoint(Base):
    __tablename__ = "ride_points"
    __table_args__ = (
        UniqueConstraint("ride_id", "sequence_index", name="uq_ride_point_sequence"),
        Index("ix_ride_points_ride_ts", "ride_id", "timestamp"),
    )

    ride_point_id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ride_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("rides.ride_id", ondelete="CASCADE"), nullable=False, index=True
    )
    # Position is optional: rows without a GPS fix still carry IMU readings
    lat: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    lon: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    timestamp: Mapped[Optional[int]] = mapped_column(BigInteger, nullable=True)
    # Accelerometer
    acc_x: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    acc_y: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    acc_z: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gps_accuracy: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Gyroscope (only in newer file versions)
    gyro_a: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gyro_b: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    gyro_c: Mapped[Optional[float]] = mapped_column(Float, nullable=True)
    # Original file order; tie-break for equal timestamps
    sequence_index: Mapped[int] = mapped_column(Integer, nullable=False)

    ride: Mapped["Ride"] = relationship("Ride", back_populates="points")

    @property
    def has_position(self) -> bool:
        return self.lat is not None and self.lon is not None
