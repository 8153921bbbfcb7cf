"""SimRa ride file parser.

A SimRa ride file is two CSV sections joined by a line of ``=`` characters
(anything after the first six is ignored):

    <version>            e.g. ``58#2`` (optional)
    key,lat,lon,ts,bike,childCheckBox,trailerCheckBox,pLoc,incident,i1,...
    <incident rows>
    =========================
    <version>
    lat,lon,X,Y,Z,timeStamp,acc,a,b,c
    <ride point rows>

The files come from phones in the wild, so the parser is lenient: rows before
a section header are preamble, rows that are too short or carry a bad number
are dropped one at a time, and only an unreadable stream fails the file.
"""
from __future__ import annotations

import csv
import enum
import io
import logging
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Optional

from ridetrace.models.base import (
    BikeTypeEnum,
    IncidentTypeEnum,
    ParticipantTypeEnum,
    PhoneLocationEnum,
    INCIDENT_DUMMY_CODE,
)
from ridetrace.models.incident import Incident, DESCRIPTION_MAX_LENGTH
from ridetrace.models.ride import Ride
from ridetrace.models.ride_point import RidePoint

logger = logging.getLogger(__name__)

INCIDENT_HEADER_FIRST_COLUMN = "key"
POINT_HEADER_FIRST_COLUMNS = ("lat", "lon")

SEPARATOR_PREFIX = "======"

MIN_INCIDENT_FIELDS = 9
MIN_POINT_FIELDS = 6

# Participant flag columns of an incident row. "scary" (18) and the
# description (19) sit between OTHER and SCOOTER in the app's export format.
_PARTICIPANT_COLUMNS: tuple[tuple[int, ParticipantTypeEnum], ...] = (
    (9, ParticipantTypeEnum.BUS),
    (10, ParticipantTypeEnum.CYCLIST),
    (11, ParticipantTypeEnum.PEDESTRIAN),
    (12, ParticipantTypeEnum.DELIVERY_VAN),
    (13, ParticipantTypeEnum.TRUCK),
    (14, ParticipantTypeEnum.MOTORCYCLE),
    (15, ParticipantTypeEnum.CAR),
    (16, ParticipantTypeEnum.TAXI),
    (17, ParticipantTypeEnum.OTHER),
    (20, ParticipantTypeEnum.SCOOTER),
)
_SCARY_COLUMN = 18
_DESCRIPTION_COLUMN = 19


class RideFileError(OSError):
    """The ride file could not be read at all (as opposed to bad rows)."""


class ParserState(enum.Enum):
    SEEKING_INCIDENT_HEADER = "seeking_incident_header"
    READING_INCIDENTS = "reading_incidents"
    SEEKING_POINT_HEADER = "seeking_point_header"
    READING_POINTS = "reading_points"


@dataclass(frozen=True)
class RideMetadata:
    bike_type: Optional[BikeTypeEnum]
    child_transport: bool
    trailer_attached: bool
    phone_location: Optional[PhoneLocationEnum]


# ── Field helpers ──────────────────────────────────────────────────────────────

def _is_blank(fields: list[str]) -> bool:
    return len(fields) == 0 or (len(fields) == 1 and not fields[0].strip())


def _is_separator(fields: list[str]) -> bool:
    return len(fields) == 1 and fields[0].strip().startswith(SEPARATOR_PREFIX)


def _is_version_line(fields: list[str]) -> bool:
    return len(fields) == 1 and "#" in fields[0]


def _flag(fields: list[str], index: int) -> bool:
    return len(fields) > index and fields[index].strip() == "1"


def _opt_float(value: str) -> Optional[float]:
    value = value.strip()
    return float(value) if value else None


def _opt_int(value: str) -> Optional[int]:
    value = value.strip()
    return int(value) if value else None


# ── Row parsers ────────────────────────────────────────────────────────────────

def parse_ride_metadata(fields: list[str]) -> Optional[RideMetadata]:
    """Extract bike type, child/trailer flags and phone location from an incident row.

    Returns None if the row is too short or a code is not an integer.
    """
    if len(fields) < MIN_INCIDENT_FIELDS:
        return None
    try:
        bike_code = _opt_int(fields[4])
        phone_code = _opt_int(fields[7])
    except ValueError:
        return None
    return RideMetadata(
        bike_type=BikeTypeEnum.from_code(bike_code) if bike_code is not None else None,
        child_transport=fields[5].strip() == "1",
        trailer_attached=fields[6].strip() == "1",
        phone_location=PhoneLocationEnum.from_code(phone_code) if phone_code is not None else None,
    )


def parse_incident_row(fields: list[str]) -> Optional[Incident]:
    """Build an Incident from one row of the incident section.

    Returns None for rows that are too short, carry a malformed number (the
    metadata codes included), or are the app's dummy placeholder (type code -5).
    """
    if len(fields) < MIN_INCIDENT_FIELDS:
        return None
    try:
        type_code = int(fields[8].strip())
        if type_code == INCIDENT_DUMMY_CODE:
            return None
        key = int(fields[0].strip())
        lat = lon = None
        if fields[1].strip() and fields[2].strip():
            lat = float(fields[1])
            lon = float(fields[2])
        timestamp = _opt_int(fields[3])
        # Bike and phone-location codes belong to the row too
        _opt_int(fields[4])
        _opt_int(fields[7])
    except ValueError:
        logger.debug("Dropped malformed incident row: %s", fields)
        return None

    participants = sorted(p.value for index, p in _PARTICIPANT_COLUMNS if _flag(fields, index))
    description = None
    if len(fields) > _DESCRIPTION_COLUMN:
        description = fields[_DESCRIPTION_COLUMN][:DESCRIPTION_MAX_LENGTH]

    return Incident(
        incident_key=key,
        lat=lat,
        lon=lon,
        timestamp=timestamp,
        incident_type=IncidentTypeEnum.from_code(type_code),
        scary=_flag(fields, _SCARY_COLUMN),
        description=description,
        participants=participants,
    )


def parse_point_row(fields: list[str], sequence_index: int) -> Optional[RidePoint]:
    """Build a RidePoint from one row of the ride section.

    Blank optional columns stay None. The gyroscope columns are only read when
    the row is long enough to carry all three. Returns None for rows that are
    too short or carry a malformed number.
    """
    if len(fields) < MIN_POINT_FIELDS:
        return None
    try:
        lat = lon = None
        if fields[0].strip() and fields[1].strip():
            lat = float(fields[0])
            lon = float(fields[1])
        point = RidePoint(
            lat=lat,
            lon=lon,
            acc_x=_opt_float(fields[2]),
            acc_y=_opt_float(fields[3]),
            acc_z=_opt_float(fields[4]),
            timestamp=_opt_int(fields[5]),
            gps_accuracy=_opt_float(fields[6]) if len(fields) > 6 else None,
            sequence_index=sequence_index,
        )
        if len(fields) > 9:
            point.gyro_a = _opt_float(fields[7])
            point.gyro_b = _opt_float(fields[8])
            point.gyro_c = _opt_float(fields[9])
    except ValueError:
        logger.debug("Dropped malformed ride point row: %s", fields)
        return None
    return point


# ── File parser ────────────────────────────────────────────────────────────────

def parse_ride_file(stream: BinaryIO, filename: str) -> Ride:
    """Parse a SimRa ride file into an unsaved Ride with its points and incidents.

    The stream is consumed. Bytes that are not valid UTF-8 decode to U+FFFD.
    Raises RideFileError if the stream cannot be read; malformed rows never
    fail the file.
    """
    ride = Ride(original_filename=filename)
    state = ParserState.SEEKING_INCIDENT_HEADER
    metadata_captured = False
    points: list[RidePoint] = []
    incidents: list[Incident] = []

    try:
        text = io.TextIOWrapper(stream, encoding="utf-8-sig", errors="replace", newline="")
        # SimRa writes free text unquoted; quote characters are data
        reader = csv.reader(text, delimiter=",", quoting=csv.QUOTE_NONE)
        for fields in reader:
            if _is_blank(fields):
                continue
            if _is_separator(fields):
                if state in (ParserState.SEEKING_INCIDENT_HEADER, ParserState.READING_INCIDENTS):
                    state = ParserState.SEEKING_POINT_HEADER
                continue
            if _is_version_line(fields):
                continue

            if state is ParserState.SEEKING_INCIDENT_HEADER:
                if fields[0].strip() == INCIDENT_HEADER_FIRST_COLUMN:
                    state = ParserState.READING_INCIDENTS
                continue

            if state is ParserState.READING_INCIDENTS:
                if not metadata_captured:
                    metadata = parse_ride_metadata(fields)
                    if metadata is not None:
                        _apply_metadata(ride, metadata)
                        metadata_captured = True
                incident = parse_incident_row(fields)
                if incident is not None:
                    incidents.append(incident)
                continue

            if state is ParserState.SEEKING_POINT_HEADER:
                if len(fields) > 1 and tuple(f.strip() for f in fields[:2]) == POINT_HEADER_FIRST_COLUMNS:
                    state = ParserState.READING_POINTS
                continue

            point = parse_point_row(fields, len(points))
            if point is not None:
                points.append(point)
    except (OSError, csv.Error) as e:
        raise RideFileError(f"Cannot read ride file {filename}: {e}") from e

    ride.incidents = incidents
    ride.points = points
    logger.debug(
        "Parsed %s: %d points, %d incidents", filename, len(points), len(incidents),
    )
    return ride


def parse_ride_path(path: Path) -> Ride:
    """Open and parse a ride file from disk, keyed by its bare filename."""
    try:
        with open(path, "rb") as f:
            return parse_ride_file(f, path.name)
    except RideFileError:
        raise
    except OSError as e:
        raise RideFileError(f"Cannot open ride file {path}: {e}") from e


def _apply_metadata(ride: Ride, metadata: RideMetadata) -> None:
    ride.bike_type = metadata.bike_type
    ride.child_transport = metadata.child_transport
    ride.trailer_attached = metadata.trailer_attached
    ride.phone_location = metadata.phone_location
