"""SQLModel engine singleton and schema setup."""
from sqlalchemy import event
from sqlalchemy.engine import Engine
from sqlmodel import SQLModel, create_engine

from trackgen.config import get_settings

_engine = None


def create_db_engine(url: str, **kwargs) -> Engine:
    """
    Create an engine for ``url``.

    For SQLite, pysqlite's own transaction handling is switched off and
    BEGIN is emitted by SQLAlchemy instead, so SAVEPOINTs (used by the track
    builder and merges) behave as on other databases.
    """
    if url.startswith("sqlite"):
        connect_args = kwargs.pop("connect_args", {})
        connect_args.setdefault("check_same_thread", False)  # scheduler threads share it
        engine = create_engine(url, connect_args=connect_args, **kwargs)

        @event.listens_for(engine, "connect")
        def _disable_pysqlite_transactions(dbapi_connection, connection_record):
            dbapi_connection.isolation_level = None

        @event.listens_for(engine, "begin")
        def _emit_begin(conn):
            conn.exec_driver_sql("BEGIN")

        return engine
    return create_engine(url, **kwargs)


def init_db(engine: Engine) -> None:
    """Create all tables and apply pending column migrations."""
    # Import all models so metadata is populated before create_all
    from trackgen.models.cache import CacheEntry  # noqa
    from trackgen.models.point import Point  # noqa
    from trackgen.models.track import Track, TrackSegment  # noqa
    from trackgen.models.user import User  # noqa
    SQLModel.metadata.create_all(engine)
    from trackgen.db.migrations import run_migrations
    run_migrations(engine)


def get_engine():
    """Return the module-level engine, creating it on first call."""
    global _engine
    if _engine is None:
        _engine = create_db_engine(get_settings().database_url)
        init_db(_engine)
    return _engine

