"""Shared FastAPI dependencies."""
from typing import Callable, Optional

from fastapi import Depends, Header, Request

from wialon_sync.config import get_settings
from wialon_sync.db.engine import get_engine
from wialon_sync.sync.audit import AuditContext
from wialon_sync.wialon.client import WialonClient


def get_current_user_id(x_user_id: Optional[int] = Header(default=None)) -> int:
    """Caller identity, set by the authenticating proxy in front of the API."""
    if x_user_id is not None:
        return x_user_id
    return get_settings().user_id


def get_audit_context(
    request: Request,
    user_id: int = Depends(get_current_user_id),
) -> AuditContext:
    """Caller identity plus client address for audit entries."""
    return AuditContext(
        user_id=user_id,
        ip_address=request.client.host if request.client else None,
        user_agent=request.headers.get("user-agent"),
    )


def get_db_engine():
    return get_engine()


def get_wialon_client_factory() -> Callable[[], WialonClient]:
    """Return a callable building a fresh WialonClient per sync run."""
    return WialonClient
