"""Shared test fixtures."""
from typing import Generator

import pytest
from sqlalchemy.pool import StaticPool
from sqlmodel import Session, SQLModel, create_engine

# Import all models so SQLModel.metadata knows about them
from wialon_sync.models.audit import AuditLog  # noqa: F401
from wialon_sync.models.fleet import Client, WialonObject  # noqa: F401
from wialon_sync.models.staging import StagingClient, StagingObject  # noqa: F401
from wialon_sync.models.sync import (  # noqa: F401
    SyncDiscrepancy,
    SyncLog,
    SyncRule,
    SyncRuleExecution,
    SyncSession,
)


@pytest.fixture(name="engine")
def engine_fixture():
    """In-memory SQLite engine. Tables recreated fresh for each test."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    SQLModel.metadata.create_all(engine)
    yield engine
    SQLModel.metadata.drop_all(engine)


@pytest.fixture(name="test_session")
def test_session_fixture(engine) -> Generator[Session, None, None]:
    """Provides a DB session connected to in-memory SQLite."""
    with Session(engine) as session:
        yield session


@pytest.fixture(name="sync_session")
def sync_session_fixture(test_session: Session) -> SyncSession:
    """A persisted running SyncSession."""
    session = SyncSession(created_by=7)
    test_session.add(session)
    test_session.commit()
    test_session.refresh(session)
    return session
