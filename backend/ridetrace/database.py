from sqlalchemy import create_engine, event
from ridetrace.config import settings
from sqlalchemy.orm import sessionmaker

_engine_kwargs: dict = {"pool_pre_ping": True}
if "sqlite" in settings.DATABASE_URL:
    # Import workers share the engine across threads; writers queue on the file lock
    _engine_kwargs["connect_args"] = {"check_same_thread": False, "timeout": 30}
else:
    _engine_kwargs["pool_size"] = settings.DB_POOL_SIZE
    _engine_kwargs["max_overflow"] = settings.DB_MAX_OVERFLOW
engine = create_engine(settings.DATABASE_URL, **_engine_kwargs)

if "sqlite" in settings.DATABASE_URL:
    @event.listens_for(engine, "connect")
    def _set_sqlite_pragmas(dbapi_conn, connection_record):
        cursor = dbapi_conn.cursor()
        cursor.execute("PRAGMA journal_mode=WAL")
        cursor.execute("PRAGMA foreign_keys=ON")
        cursor.close()

SessionLocal = sessionmaker(autocommit=False, autoflush=False, bind=engine)


def init_db() -> None:
    """Create all tables. Safe to call on every start."""
    from ridetrace.models import Base  # noqa: F401 -- registers all models
    Base.metadata.create_all(bind=engine)


def is_pooled_database() -> bool:
    """True when the engine keeps a bounded connection pool (i.e. not SQLite)."""
    return engine.dialect.name != "sqlite"
