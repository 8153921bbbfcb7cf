"""Shared test fixtures: SQLite sessions and SimRa sample files."""
import csv

import pytest
from sqlalchemy import create_engine, event
from sqlalchemy.orm import sessionmaker

from ridetrace.models import Base  # noqa: F401 -- registers all models


SAMPLE_RIDE = """58#2
key,lat,lon,ts,bike,childCheckBox,trailerCheckBox,pLoc,incident,i1,i2,i3,i4,i5,i6,i7,i8,i9,scary,desc,i10
0,52.5,13.4,1600000000500,1,0,1,2,3,0,0,0,0,0,0,1,0,0,1,car door opened,1
1,,,,1,0,1,2,-5,0,0,0,0,0,0,0,0,0,0,,0

=========================
58#2
lat,lon,X,Y,Z,timeStamp,acc,a,b,c
52.50001,13.40001,0.1,0.2,9.8,1600000000000,5.0,,,
52.50011,13.40021,0.2,0.1,9.7,1600000001000,4.0,0.01,0.02,0.03
52.50021,13.40041,0.3,0.0,9.9,1600000002000,3.0,,,
"""

EMPTY_RIDE = """58#2
key,lat,lon,ts,bike,childCheckBox,trailerCheckBox,pLoc,incident,i1,i2,i3,i4,i5,i6,i7,i8,i9,scary,desc,i10
1,,,,1,0,0,0,-5,0,0,0,0,0,0,0,0,0,0,,0

=========================
58#2
lat,lon,X,Y,Z,timeStamp,acc,a,b,c
"""


def _sqlite_pragmas(engine, wal: bool = False):
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        if wal:
            cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()


@pytest.fixture
def db():
    """In-memory SQLite session with all tables."""
    engine = create_engine("sqlite:///:memory:")
    _sqlite_pragmas(engine)
    Base.metadata.create_all(bind=engine)
    Session = sessionmaker(bind=engine)
    session = Session()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def session_factory(tmp_path):
    """File-backed SQLite sessionmaker that worker threads can share."""
    engine = create_engine(
        f"sqlite:///{tmp_path / 'ridetrace.db'}",
        connect_args={"check_same_thread": False, "timeout": 30},
    )
    _sqlite_pragmas(engine, wal=True)
    Base.metadata.create_all(bind=engine)
    yield sessionmaker(bind=engine, autoflush=False)
    engine.dispose()


@pytest.fixture
def sample_ride_bytes():
    return SAMPLE_RIDE.encode("utf-8")


@pytest.fixture
def export_tree(tmp_path):
    """A SimRa export root with one good ride, one empty ride and one unreadable file.

    VM2_1003 holds a field past the csv module's size limit, which fails the
    read itself rather than a single row.
    """
    root = tmp_path / "SimRa"
    rides = root / "Berlin" / "Rides"
    rides.mkdir(parents=True)
    (rides / "VM2_1001").write_text(SAMPLE_RIDE, encoding="utf-8")
    (rides / "VM2_1002").write_text(EMPTY_RIDE, encoding="utf-8")
    (rides / "VM2_1003").write_bytes(b"key,lat\n" + b"x" * (csv.field_size_limit() + 1) + b"\n")
    profiles = root / "Berlin" / "Profiles"
    profiles.mkdir()
    (profiles / "VM2_profile").write_text("not a ride", encoding="utf-8")
    return root
