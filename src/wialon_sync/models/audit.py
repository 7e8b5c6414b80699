"""Business audit trail of user-initiated sync actions."""
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel

from wialon_sync.db.types import utc_column, utcnow


class AuditAction(str, Enum):
    WIALON_SYNC_START = "WIALON_SYNC_START"
    WIALON_SYNC_RESOLVE = "WIALON_SYNC_RESOLVE"
    WIALON_SYNC_LOGS_CLEAR = "WIALON_SYNC_LOGS_CLEAR"
    SYNC_RULE_CREATE = "SYNC_RULE_CREATE"
    SYNC_RULE_UPDATE = "SYNC_RULE_UPDATE"
    SYNC_RULE_DELETE = "SYNC_RULE_DELETE"
    SYNC_RULE_EXECUTE = "SYNC_RULE_EXECUTE"


class AuditEntity(str, Enum):
    SYNC_SESSION = "SYNC_SESSION"
    SYNC_DISCREPANCY = "SYNC_DISCREPANCY"
    SYNC_LOGS = "SYNC_LOGS"
    SYNC_RULE = "SYNC_RULE"


class AuditLog(SQLModel, table=True):
    """One audited action. Never updated once written."""

    id: Optional[int] = Field(default=None, primary_key=True)
    user_id: Optional[int] = Field(default=None, index=True)
    action_type: str = Field(index=True)
    entity_type: str = Field(index=True)
    # Text, not a key: may be "all" or a comma-separated id list
    entity_id: Optional[str] = Field(default=None, index=True)
    old_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    new_values: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
    ip_address: Optional[str] = Field(default=None, max_length=45)  # IPv4 or IPv6
    user_agent: Optional[str] = Field(default=None, max_length=500)
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column(index=True))
