"""WKT-backed geometry column type.

Geometries are stored as WKT text in WGS-84 (srid 4326, ``lon lat`` order) and
surface on the model as shapely objects, so the same schema runs on SQLite and
PostgreSQL without a spatial extension.
"""
from __future__ import annotations

from shapely import wkt as shapely_wkt
from shapely.geometry.base import BaseGeometry
from sqlalchemy import Text
from sqlalchemy.types import TypeDecorator


class WKTGeometry(TypeDecorator):
    impl = Text
    cache_ok = True

    def __init__(self, geometry_type: str = "GEOMETRY", srid: int = 4326, **kwargs):
        super().__init__(**kwargs)
        self.geometry_type = geometry_type.upper()
        self.srid = srid

    def process_bind_param(self, value, dialect):
        if value is None:
            return None
        if isinstance(value, str):
            value = shapely_wkt.loads(value)
        if not isinstance(value, BaseGeometry):
            raise TypeError(f"Expected a shapely geometry, got {type(value).__name__}")
        if self.geometry_type != "GEOMETRY" and value.geom_type.upper() != self.geometry_type:
            raise ValueError(
                f"Expected {self.geometry_type} geometry, got {value.geom_type}"
            )
        return value.wkt

    def process_result_value(self, value, dialect):
        if value is None:
            return None
        return shapely_wkt.loads(value)
