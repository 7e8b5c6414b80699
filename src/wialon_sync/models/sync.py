"""Sync bookkeeping models: sessions, logs, discrepancies, ad hoc rules."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column, Index, Text, text
from sqlmodel import Field, SQLModel

from wialon_sync.db.types import utc_column, utcnow


class SessionStatus(str, Enum):
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    CANCELLED = "cancelled"  # administrative only, never set by a run


class LogLevel(str, Enum):
    DEBUG = "debug"
    INFO = "info"
    WARNING = "warning"
    ERROR = "error"


class DiscrepancyType(str, Enum):
    NEW_CLIENT = "new_client"
    NEW_OBJECT = "new_object"
    NEW_OBJECT_WITH_KNOWN_CLIENT = "new_object_with_known_client"
    CLIENT_NAME_CHANGED = "client_name_changed"
    OBJECT_NAME_CHANGED = "object_name_changed"
    OWNER_CHANGED = "owner_changed"


class DiscrepancyStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    IGNORED = "ignored"


RESOLUTION_ACTIONS = (
    DiscrepancyStatus.APPROVED.value,
    DiscrepancyStatus.REJECTED.value,
    DiscrepancyStatus.IGNORED.value,
)


class SyncSession(SQLModel, table=True):
    """One end-to-end Load + Analyze run."""

    # At most one running session; the database enforces it
    __table_args__ = (
        Index(
            "uq_syncsession_running",
            "status",
            unique=True,
            sqlite_where=text("status = 'running'"),
            postgresql_where=text("status = 'running'"),
        ),
    )

    id: Optional[int] = Field(default=None, primary_key=True)
    start_time: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))
    end_time: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    status: str = Field(default=SessionStatus.RUNNING.value, index=True)
    created_by: int = Field(default=1)
    total_clients_checked: int = 0
    total_objects_checked: int = 0
    discrepancies_found: int = 0
    error_message: Optional[str] = None
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())


class SyncLog(SQLModel, table=True):
    """Append-only diagnostic entry, always owned by one session."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="syncsession.id", index=True)
    log_level: str = LogLevel.INFO.value
    message: str
    details: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))


class SyncDiscrepancy(SQLModel, table=True):
    """
    A mismatch between Wialon and local data, queued for review.

    Both snapshots are frozen when the row is created. A mismatch that
    persists produces a fresh row in every later session.
    """

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="syncsession.id", index=True)
    discrepancy_type: str = Field(index=True)
    entity_type: str  # "client" or "object"

    external_entity_data: Dict[str, Any] = Field(
        default_factory=dict, sa_column=Column(JSON, nullable=False)
    )
    # Null for new_* discrepancies
    local_entity_data: Optional[Dict[str, Any]] = Field(
        default=None, sa_column=Column(JSON)
    )
    local_entity_id: Optional[int] = None
    suggested_client_id: Optional[int] = None
    suggested_action: Optional[str] = None

    status: str = Field(default=DiscrepancyStatus.PENDING.value, index=True)
    resolution_notes: Optional[str] = None
    resolved_by: Optional[int] = None
    resolved_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))


class SyncRule(SQLModel, table=True):
    """User-editable ad hoc check, run outside the built-in predicates."""

    id: Optional[int] = Field(default=None, primary_key=True)
    name: str = Field(index=True)
    description: Optional[str] = None
    rule_type: str = "custom"
    sql_query: str = Field(sa_column=Column(Text, nullable=False))
    # Named bind values for sql_query (":name" placeholders)
    parameters: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    execution_order: int = 1
    is_active: bool = True
    created_by: Optional[int] = None
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())


class SyncRuleExecution(SQLModel, table=True):
    """One manual execution of a SyncRule."""

    id: Optional[int] = Field(default=None, primary_key=True)
    rule_id: int = Field(foreign_key="syncrule.id", index=True)
    executed_by: Optional[int] = None
    status: str = "completed"  # "completed" or "failed"
    row_count: int = 0
    error_message: Optional[str] = None
    started_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    finished_at: Optional[datetime] = Field(default=None, sa_column=utc_column(nullable=True))
