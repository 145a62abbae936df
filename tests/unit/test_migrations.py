"""Tests for database migration helpers."""
import pytest
from sqlalchemy import inspect, text
from sqlalchemy.pool import StaticPool

from trackgen.db.engine import create_db_engine, init_db
from trackgen.db.migrations import run_migrations


@pytest.fixture(name="legacy_engine")
def legacy_engine_fixture():
    """In-memory SQLite engine with the first schema, before added columns."""
    engine = create_db_engine("sqlite:///:memory:", poolclass=StaticPool)
    with engine.connect() as conn:
        conn.execute(text(
            "CREATE TABLE track (id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL, "
            "start_at DATETIME NOT NULL, end_at DATETIME NOT NULL)"
        ))
        conn.execute(text(
            "CREATE TABLE point (id INTEGER PRIMARY KEY, user_id INTEGER NOT NULL, "
            "timestamp INTEGER NOT NULL, latitude FLOAT NOT NULL, longitude FLOAT NOT NULL, "
            "track_id INTEGER)"
        ))
        conn.commit()
    yield engine


def _columns(engine, table):
    return {c["name"] for c in inspect(engine).get_columns(table)}


class TestRunMigrations:
    def test_adds_missing_columns(self, legacy_engine):
        run_migrations(legacy_engine)
        assert "dominant_mode" in _columns(legacy_engine, "track")
        assert "import_id" in _columns(legacy_engine, "point")

    def test_run_migrations_is_idempotent(self, legacy_engine):
        """Running migrations twice must not raise (columns already exist)."""
        run_migrations(legacy_engine)
        run_migrations(legacy_engine)

    def test_fresh_schema_unaffected(self, engine):
        """init_db already ran migrations on the fixture engine; re-running is a no-op."""
        before = _columns(engine, "track")
        run_migrations(engine)
        assert _columns(engine, "track") == before

    def test_existing_rows_get_null(self, legacy_engine):
        with legacy_engine.connect() as conn:
            conn.execute(text(
                "INSERT INTO point (user_id, timestamp, latitude, longitude) VALUES (1, 0, 52.0, 13.0)"
            ))
            conn.commit()
        run_migrations(legacy_engine)
        with legacy_engine.connect() as conn:
            assert conn.execute(text("SELECT import_id FROM point")).scalar() is None

    def test_init_db_upgrades_legacy_schema(self, legacy_engine):
        init_db(legacy_engine)
        assert "dominant_mode" in _columns(legacy_engine, "track")
        assert "cacheentry" in inspect(legacy_engine).get_table_names()
