"""Shared declarative base and enums for all models.

SimRa files encode the enums below as integers. Each enum decodes its wire
code with ``from_code``; unknown codes map to the enum's default member
instead of failing.
"""
from __future__ import annotations

import enum
from sqlalchemy.orm import DeclarativeBase


class Base(DeclarativeBase):
    pass


class BikeTypeEnum(str, enum.Enum):
    NOT_CHOSEN = "not_chosen"
    CITY_TREKKING_BIKE = "city_trekking_bike"
    ROAD_RACING_BIKE = "road_racing_bike"
    E_BIKE = "e_bike"
    RECUMBENT_BICYCLE = "recumbent_bicycle"
    FREIGHT_BICYCLE = "freight_bicycle"
    TANDEM_BICYCLE = "tandem_bicycle"
    MOUNTAIN_BIKE = "mountain_bike"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: int) -> BikeTypeEnum:
        return _BIKE_TYPE_CODES.get(code, cls.NOT_CHOSEN)


class PhoneLocationEnum(str, enum.Enum):
    POCKET = "pocket"
    HANDLEBAR = "handlebar"
    JACKET_POCKET = "jacket_pocket"
    HAND = "hand"
    BASKET = "basket"
    BAG = "bag"
    OTHER = "other"

    @classmethod
    def from_code(cls, code: int) -> PhoneLocationEnum:
        return _PHONE_LOCATION_CODES.get(code, cls.OTHER)


class IncidentTypeEnum(str, enum.Enum):
    NOTHING = "nothing"
    CLOSE_PASS = "close_pass"
    PULLING_IN_OUT = "pulling_in_out"
    NEAR_HOOK = "near_hook"
    HEAD_ON = "head_on"
    TAILGATING = "tailgating"
    NEAR_DOORING = "near_dooring"
    DODGING = "dodging"
    OTHER = "other"
    # Placeholder row written by the app when no incident was reported
    DUMMY = "dummy"

    @classmethod
    def from_code(cls, code: int) -> IncidentTypeEnum:
        return _INCIDENT_TYPE_CODES.get(code, cls.NOTHING)


class ParticipantTypeEnum(str, enum.Enum):
    BUS = "bus"
    CYCLIST = "cyclist"
    PEDESTRIAN = "pedestrian"
    DELIVERY_VAN = "delivery_van"
    TRUCK = "truck"
    MOTORCYCLE = "motorcycle"
    CAR = "car"
    TAXI = "taxi"
    OTHER = "other"
    SCOOTER = "scooter"

    @classmethod
    def from_code(cls, code: int) -> ParticipantTypeEnum:
        return _PARTICIPANT_TYPE_CODES.get(code, cls.OTHER)


class ImportRunStatusEnum(str, enum.Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"


# Wire codes as written by the SimRa app
_BIKE_TYPE_CODES: dict[int, BikeTypeEnum] = {
    0: BikeTypeEnum.NOT_CHOSEN,
    1: BikeTypeEnum.CITY_TREKKING_BIKE,
    2: BikeTypeEnum.ROAD_RACING_BIKE,
    3: BikeTypeEnum.E_BIKE,
    4: BikeTypeEnum.RECUMBENT_BICYCLE,
    5: BikeTypeEnum.FREIGHT_BICYCLE,
    6: BikeTypeEnum.TANDEM_BICYCLE,
    7: BikeTypeEnum.MOUNTAIN_BIKE,
    8: BikeTypeEnum.OTHER,
}

_PHONE_LOCATION_CODES: dict[int, PhoneLocationEnum] = {
    0: PhoneLocationEnum.POCKET,
    1: PhoneLocationEnum.HANDLEBAR,
    2: PhoneLocationEnum.JACKET_POCKET,
    3: PhoneLocationEnum.HAND,
    4: PhoneLocationEnum.BASKET,
    5: PhoneLocationEnum.BAG,
    6: PhoneLocationEnum.OTHER,
}

INCIDENT_DUMMY_CODE = -5

_INCIDENT_TYPE_CODES: dict[int, IncidentTypeEnum] = {
    0: IncidentTypeEnum.NOTHING,
    1: IncidentTypeEnum.CLOSE_PASS,
    2: IncidentTypeEnum.PULLING_IN_OUT,
    3: IncidentTypeEnum.NEAR_HOOK,
    4: IncidentTypeEnum.HEAD_ON,
    5: IncidentTypeEnum.TAILGATING,
    6: IncidentTypeEnum.NEAR_DOORING,
    7: IncidentTypeEnum.DODGING,
    8: IncidentTypeEnum.OTHER,
    INCIDENT_DUMMY_CODE: IncidentTypeEnum.DUMMY,
}

_PARTICIPANT_TYPE_CODES: dict[int, ParticipantTypeEnum] = {
    1: ParticipantTypeEnum.BUS,
    2: ParticipantTypeEnum.CYCLIST,
    3: ParticipantTypeEnum.PEDESTRIAN,
    4: ParticipantTypeEnum.DELIVERY_VAN,
    5: ParticipantTypeEnum.TRUCK,
    6: ParticipantTypeEnum.MOTORCYCLE,
    7: ParticipantTypeEnum.CAR,
    8: ParticipantTypeEnum.TAXI,
    9: ParticipantTypeEnum.OTHER,
    10: ParticipantTypeEnum.SCOOTER,
}
