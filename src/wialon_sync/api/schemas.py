"""Request bodies for the sync API."""
from datetime import datetime
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, Field


class ResolveRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    discrepancy_ids: List[int] = Field(alias="discrepancyIds", min_length=1)
    action: Literal["approved", "ignored", "rejected"]
    notes: Optional[str] = None


class PurgeLogsRequest(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    session_id: Optional[int] = Field(default=None, alias="sessionId")
    older_than: Optional[datetime] = Field(default=None, alias="olderThan")


class RuleCreate(BaseModel):
    name: str = Field(min_length=1)
    description: Optional[str] = None
    rule_type: str = "custom"
    sql_query: str = Field(min_length=1)
    parameters: Optional[Dict[str, Any]] = None
    execution_order: int = 1
    is_active: bool = True


class RuleUpdate(BaseModel):
    name: Optional[str] = Field(default=None, min_length=1)
    description: Optional[str] = None
    rule_type: Optional[str] = None
    sql_query: Optional[str] = Field(default=None, min_length=1)
    parameters: Optional[Dict[str, Any]] = None
    execution_order: Optional[int] = None
    is_active: Optional[bool] = None
