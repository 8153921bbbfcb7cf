"""Import all models to register them with SQLAlchemy metadata."""
from ridetrace.models.base import Base
from ridetrace.models.ride import Ride
from ridetrace.models.ride_point import RidePoint
from ridetrace.models.incident import Incident
from ridetrace.models.street_segment import StreetSegment
from ridetrace.models.import_run import ImportRun

__all__ = [
    "Base",
    "Ride",
    "RidePoint",
    "Incident",
    "StreetSegment",
    "ImportRun",
]
