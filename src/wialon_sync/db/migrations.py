"""
Incremental schema migrations.

create_all() never alters existing tables. Columns added to a model once
databases exist in the field are appended to COLUMN_MIGRATIONS and patched
in with ALTER TABLE ADD COLUMN. Each step is idempotent: columns are only
added if absent.

Called automatically from get_engine() after create_all().
"""
from typing import List, Optional, Tuple

from sqlalchemy import inspect, text

# (table, column, SQL type) in the order they were introduced.
# Empty: every column so far ships with the initial schema.
COLUMN_MIGRATIONS: List[Tuple[str, str, str]] = []


def run_migrations(engine, migrations: Optional[List[Tuple[str, str, str]]] = None) -> None:
    """Apply all pending schema migrations.

    Safe to call multiple times. Tables that do not exist yet are skipped;
    create_all() builds them with the full column set.

    Args:
        engine: SQLAlchemy engine (SQLModel create_engine result).
        migrations: Steps to apply, COLUMN_MIGRATIONS by default.
    """
    steps = COLUMN_MIGRATIONS if migrations is None else migrations
    with engine.connect() as conn:
        for table, column, col_type in steps:
            _add_column_if_missing(conn, table, column, col_type)
        conn.commit()


def _add_column_if_missing(conn, table: str, column: str, col_type: str) -> bool:
    """Add a column to a table if it doesn't already exist.

    Returns:
        True if the column was added.
    """
    inspector = inspect(conn)
    if not inspector.has_table(table):
        return False
    existing_columns = {col["name"] for col in inspector.get_columns(table)}
    if column in existing_columns:
        return False
    conn.execute(text(f"ALTER TABLE {table} ADD COLUMN {column} {col_type}"))
    return True
