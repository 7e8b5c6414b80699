"""Tests for database migration helpers."""
import pytest
from sqlalchemy import inspect, text
from sqlalchemy.pool import StaticPool
from sqlmodel import SQLModel, create_engine

from wialon_sync.db.migrations import COLUMN_MIGRATIONS, _add_column_if_missing, run_migrations


@pytest.fixture(name="bare_engine")
def bare_engine_fixture():
    """In-memory SQLite engine with no tables."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    yield engine
    engine.dispose()


class TestRunMigrations:
    def test_run_migrations_does_not_raise(self, engine):
        """Migration should complete without errors on a fresh DB."""
        run_migrations(engine)

    def test_run_migrations_is_idempotent(self, engine):
        run_migrations(engine)
        run_migrations(engine)

    def test_missing_tables_are_skipped(self, bare_engine):
        run_migrations(bare_engine)
        assert inspect(bare_engine).get_table_names() == []

    def test_adds_columns_to_old_schema(self, bare_engine):
        """A table created before a column existed gets it added."""
        with bare_engine.connect() as conn:
            conn.execute(text(
                "CREATE TABLE syncsession (id INTEGER PRIMARY KEY, status VARCHAR, "
                "start_time TIMESTAMP)"
            ))
            conn.commit()

        run_migrations(bare_engine, [
            ("syncsession", "error_message", "TEXT"),
            ("syncsession", "updated_at", "TIMESTAMP"),
        ])

        columns = {c["name"] for c in inspect(bare_engine).get_columns("syncsession")}
        assert {"error_message", "updated_at"} <= columns

    def test_initial_schema_needs_no_column_patches(self, engine):
        assert COLUMN_MIGRATIONS == []
        before = {c["name"] for c in inspect(engine).get_columns("syncsession")}
        run_migrations(engine)
        assert {c["name"] for c in inspect(engine).get_columns("syncsession")} == before

    def test_every_migrated_column_is_in_the_models(self):
        for table, column, _ in COLUMN_MIGRATIONS:
            assert column in SQLModel.metadata.tables[table].columns


class TestAddColumnIfMissing:
    def test_returns_false_when_present(self, engine):
        with engine.connect() as conn:
            assert _add_column_if_missing(conn, "syncsession", "error_message", "TEXT") is False

    def test_returns_true_when_added(self, engine):
        with engine.connect() as conn:
            assert _add_column_if_missing(conn, "client", "region", "VARCHAR") is True
            conn.commit()
        columns = {c["name"] for c in inspect(engine).get_columns("client")}
        assert "region" in columns
