from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8")

    DATABASE_URL: str = "sqlite:///ridetrace.db"
    LOG_LEVEL: str = "INFO"
    # Root of the SimRa export tree
    IMPORT_ROOT: str = "data/SimRa"
    # Only files below a directory with this name are rides
    RIDE_DIR_MARKER: str = "Rides"
    RIDE_FILE_PREFIX: str = "VM"
    # Fixed worker count; must stay within half of DB_POOL_SIZE
    IMPORT_WORKERS: int = 5
    IMPORT_PROGRESS_EVERY: int = 500
    # Road network (OSM extract + GraphML cache). Matching is skipped when unset.
    # OSM XML only (.osm, .osm.bz2); .osm.pbf extracts are rejected, convert them first.
    OSM_FILE: str | None = None
    GRAPH_CACHE_DIR: str = "graph-cache"
    MATCH_MAX_SNAP_METERS: float = 40.0
    # ~20 m around an unnamed edge's midpoint
    STREET_NAME_SEARCH_RADIUS_DEG: float = 0.0002
    # Connection pool
    DB_POOL_SIZE: int = 10
    DB_MAX_OVERFLOW: int = 20


settings = Settings()
