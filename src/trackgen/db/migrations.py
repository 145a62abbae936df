"""
Database migrations for trackgen.

Uses ALTER TABLE ADD COLUMN for incremental schema evolution.
Each migration is idempotent: columns are only added if absent.

Called automatically from init_db() after create_all() so both
fresh installs and existing DBs are handled without manual steps.
"""
from sqlalchemy import inspect, text


def run_migrations(engine) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times — checks column existence before altering.

    Args:
        engine: SQLAlchemy engine (create_db_engine result).
    """
    with engine.connect() as conn:
        # Track: dominant transportation mode written by mode detection
        _add_column_if_missing(conn, "track", "dominant_mode", "VARCHAR")

        # Point: source import, used to keep backfills off the realtime path
        _add_column_if_missing(conn, "point", "import_id", "INTEGER")

        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> None:
    """Add a column to a table if it doesn't already exist.

    Args:
        conn: SQLAlchemy connection.
        table: Table name (lowercase, as SQLModel names it).
        column: Column name to add.
        col_type: SQL type string, e.g. "INTEGER", "REAL", "VARCHAR".
    """
    existing_columns = {c["name"] for c in inspect(conn).get_columns(table)}
    if column not in existing_columns:
        conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
