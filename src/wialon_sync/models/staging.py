"""Session-scoped staging tables holding one Loader pull of Wialon data."""
from typing import Any, Dict, List, Optional

from sqlalchemy import JSON, Column
from sqlmodel import Field, SQLModel


class StagingClient(SQLModel, table=True):
    """One Wialon account (avl_resource) seen during a session's load."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="syncsession.id", index=True)
    external_id: str = Field(index=True)  # resource id, used for billing
    external_user_id: Optional[str] = None  # creator user id ("crt")
    name: str
    full_name: Optional[str] = None
    description: Optional[str] = None
    wialon_username: Optional[str] = None
    raw_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))


class StagingObject(SQLModel, table=True):
    """One Wialon unit (avl_unit) seen during a session's load."""

    id: Optional[int] = Field(default=None, primary_key=True)
    session_id: int = Field(foreign_key="syncsession.id", index=True)
    external_id: str = Field(index=True)
    name: str
    description: Optional[str] = None
    tracker_id: Optional[str] = None
    phone_numbers: List[str] = Field(default_factory=list, sa_column=Column(JSON))
    owner_external_id: Optional[str] = Field(default=None, index=True)
    raw_data: Optional[Dict[str, Any]] = Field(default=None, sa_column=Column(JSON))
