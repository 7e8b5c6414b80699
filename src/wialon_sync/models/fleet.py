"""System-of-record tables for clients and their tracked objects."""
from datetime import datetime
from typing import List, Optional

from sqlmodel import Field, Relationship, SQLModel

from wialon_sync.db.types import utc_column, utcnow


class Client(SQLModel, table=True):
    """A billed customer, optionally linked to a Wialon account resource."""

    id: Optional[int] = Field(default=None, primary_key=True)
    wialon_id: Optional[str] = Field(default=None, unique=True, index=True)
    name: str
    full_name: Optional[str] = None
    description: Optional[str] = None
    is_active: bool = True
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    objects: List["WialonObject"] = Relationship(back_populates="client")


class WialonObject(SQLModel, table=True):
    """A monitored unit (vehicle, tracker) billed to a client."""

    id: Optional[int] = Field(default=None, primary_key=True)
    wialon_id: str = Field(unique=True, index=True)
    name: str
    description: Optional[str] = None
    tracker_id: Optional[str] = None
    client_id: Optional[int] = Field(default=None, foreign_key="client.id", index=True)
    status: str = "active"
    created_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())
    updated_at: datetime = Field(default_factory=utcnow, sa_column=utc_column())

    client: Optional[Client] = Relationship(back_populates="objects")
