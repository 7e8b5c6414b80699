"""
Audit writer for user-initiated sync actions.

Entries are added to the caller's session and committed by the caller,
in the same transaction as the action where the action leaves one open.
Values are stored as plain JSON, so datetimes and enums are converted on
the way in.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, Optional, Union

from pydantic_core import to_jsonable_python
from sqlmodel import Session

from wialon_sync.models.audit import AuditAction, AuditEntity, AuditLog

logger = logging.getLogger(__name__)


def record_action(
    db: Session,
    *,
    user_id: Optional[int],
    action_type: Union[AuditAction, str],
    entity_type: Union[AuditEntity, str],
    entity_id: Any = None,
    old_values: Optional[Dict[str, Any]] = None,
    new_values: Optional[Dict[str, Any]] = None,
    ip_address: Optional[str] = None,
    user_agent: Optional[str] = None,
) -> AuditLog:
    """Add an audit entry to ``db``. The caller commits."""
    action_type = AuditAction(action_type).value
    entry = AuditLog(
        user_id=user_id,
        action_type=action_type,
        entity_type=AuditEntity(entity_type).value,
        entity_id=None if entity_id is None else str(entity_id),
        old_values=to_jsonable_python(old_values) if old_values is not None else None,
        new_values=to_jsonable_python(new_values) if new_values is not None else None,
        ip_address=ip_address,
        user_agent=user_agent,
    )
    db.add(entry)
    logger.info("Audit %s on %s %s by user %s", action_type, entry.entity_type, entry.entity_id, user_id)
    return entry


@dataclass
class AuditContext:
    """Who is acting and from where, captured once per request."""

    user_id: int
    ip_address: Optional[str] = None
    user_agent: Optional[str] = None

    def record(
        self,
        db: Session,
        action_type: Union[AuditAction, str],
        entity_type: Union[AuditEntity, str],
        entity_id: Any = None,
        **values: Optional[Dict[str, Any]],
    ) -> AuditLog:
        return record_action(
            db,
            user_id=self.user_id,
            action_type=action_type,
            entity_type=entity_type,
            entity_id=entity_id,
            ip_address=self.ip_address,
            user_agent=self.user_agent,
            **values,
        )
