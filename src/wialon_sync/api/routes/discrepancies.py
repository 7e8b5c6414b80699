"""Discrepancy queue routes."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from sqlmodel import Session

from wialon_sync.api.deps import get_audit_context
from wialon_sync.api.schemas import ResolveRequest
from wialon_sync.config import get_settings
from wialon_sync.db.engine import get_session
from wialon_sync.db.pagination import pagination_meta
from wialon_sync.models.audit import AuditAction, AuditEntity
from wialon_sync.models.sync import DiscrepancyStatus
from wialon_sync.sync import discrepancies as queue
from wialon_sync.sync.audit import AuditContext
from wialon_sync.sync.corrections import apply_corrections

router = APIRouter()


@router.get("/")
def list_discrepancies(
    session_id: Optional[int] = Query(None, alias="sessionId"),
    status: Optional[str] = None,
    discrepancy_type: Optional[str] = Query(None, alias="type"),
    search: Optional[str] = None,
    sort_by: str = Query("created_at", alias="sortBy"),
    descending: bool = True,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, alias="perPage", ge=1),
    session: Session = Depends(get_session),
):
    """Filtered page of discrepancies with filtered and queue-wide status counts."""
    filters = queue.DiscrepancyFilters(
        session_id=session_id,
        status=status,
        discrepancy_type=discrepancy_type,
        search=search,
    )
    rows, total = queue.list_discrepancies(
        session, filters, page=page, per_page=per_page, sort_by=sort_by, descending=descending
    )
    return {
        "success": True,
        "discrepancies": rows,
        "total": total,
        "pagination": pagination_meta(page, per_page, total),
        "stats": queue.status_counts(session, filters),
        "globalStats": queue.status_counts(session),
    }


@router.post("/resolve")
def resolve_discrepancies(
    request: ResolveRequest,
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    """
    Resolve pending discrepancies with one action.

    Only rows still pending are updated; ``resolvedCount`` says how many.
    """
    try:
        rows = queue.resolve(
            session, request.discrepancy_ids, request.action, audit.user_id, request.notes
        )
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))

    applied = None
    if request.action == DiscrepancyStatus.APPROVED.value and get_settings().sync_apply_approved_corrections:
        report = apply_corrections(session, rows)
        applied = {"applied": report.applied, "skipped": report.skipped}
    audit.record(
        session, AuditAction.WIALON_SYNC_RESOLVE, AuditEntity.SYNC_DISCREPANCY,
        ",".join(str(i) for i in request.discrepancy_ids),
        new_values={"action": request.action, "notes": request.notes, "resolvedCount": len(rows)},
    )
    session.commit()
    for row in rows:
        session.refresh(row)

    body = {
        "success": True,
        "message": f"Resolved {len(rows)} discrepancies",
        "resolvedCount": len(rows),
        "discrepancies": rows,
    }
    if applied is not None:
        body["corrections"] = applied
    return body
