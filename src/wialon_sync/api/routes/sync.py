"""Sync session, log and trigger routes."""
import logging
from datetime import date
from typing import Optional

from fastapi import APIRouter, BackgroundTasks, Body, Depends, HTTPException, Query
from fastapi.responses import JSONResponse
from fastapi.encoders import jsonable_encoder
from sqlmodel import Session

from wialon_sync.api.deps import get_audit_context, get_db_engine, get_wialon_client_factory
from wialon_sync.api.schemas import PurgeLogsRequest
from wialon_sync.db.engine import get_session
from wialon_sync.db.pagination import pagination_meta
from wialon_sync.models.audit import AuditAction, AuditEntity
from wialon_sync.sync import sessions as session_queries
from wialon_sync.sync.audit import AuditContext
from wialon_sync.sync.service import SyncRunError, WialonSyncService
from wialon_sync.sync.sessions import SyncAlreadyRunningError

logger = logging.getLogger(__name__)

router = APIRouter()


@router.get("/sessions")
def list_sessions(
    page: int = Query(1, ge=1),
    per_page: int = Query(20, alias="perPage", ge=1),
    sort_by: str = Query("start_time", alias="sortBy"),
    descending: bool = True,
    search: Optional[str] = None,
    session: Session = Depends(get_session),
):
    """List sync sessions with totals over all sessions."""
    sessions, total = session_queries.list_sessions(
        session,
        page=page,
        per_page=per_page,
        sort_by=sort_by,
        descending=descending,
        search=search,
    )
    return {
        "success": True,
        "sessions": sessions,
        "total": total,
        "pagination": pagination_meta(page, per_page, total),
        "globalStats": session_queries.session_global_stats(session),
    }


@router.get("/sessions/{session_id}")
def get_sync_session(session_id: int, session: Session = Depends(get_session)):
    """One session with its logs, newest first."""
    sync_session, logs = session_queries.get_session_detail(session, session_id)
    if sync_session is None:
        raise HTTPException(status_code=404, detail="Sync session not found")
    return {"success": True, "session": sync_session, "logs": logs}


@router.get("/logs")
def list_logs(
    session_id: Optional[int] = Query(None, alias="sessionId"),
    level: Optional[str] = None,
    date_from: Optional[date] = Query(None, alias="dateFrom"),
    date_to: Optional[date] = Query(None, alias="dateTo"),
    search: Optional[str] = None,
    sort_by: str = Query("created_at", alias="sortBy"),
    descending: bool = True,
    page: int = Query(1, ge=1),
    per_page: int = Query(50, alias="perPage", ge=1),
    session: Session = Depends(get_session),
):
    """List sync logs across sessions with filtered and global level counts."""
    logs, total, stats, global_stats = session_queries.list_logs(
        session,
        session_id=session_id,
        level=level,
        date_from=date_from,
        date_to=date_to,
        search=search,
        page=page,
        per_page=per_page,
        sort_by=sort_by,
        descending=descending,
    )
    return {
        "success": True,
        "logs": logs,
        "total": total,
        "pagination": pagination_meta(page, per_page, total),
        "stats": stats,
        "globalStats": global_stats,
    }


@router.delete("/logs")
def purge_logs(
    request: Optional[PurgeLogsRequest] = Body(default=None),
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    """Delete logs of one session and/or older than a timestamp (all if neither)."""
    request = request or PurgeLogsRequest()
    deleted = session_queries.purge_logs(
        session, session_id=request.session_id, older_than=request.older_than
    )
    audit.record(
        session, AuditAction.WIALON_SYNC_LOGS_CLEAR, AuditEntity.SYNC_LOGS,
        request.session_id if request.session_id is not None else "all",
        new_values={
            "deletedCount": deleted,
            "sessionId": request.session_id,
            "olderThan": request.older_than,
        },
    )
    session.commit()
    return {
        "success": True,
        "message": f"Deleted {deleted} log entries",
        "deletedCount": deleted,
    }


def _audit_run(engine, audit: AuditContext, result) -> None:
    with Session(engine) as db:
        audit.record(
            db, AuditAction.WIALON_SYNC_START, AuditEntity.SYNC_SESSION, result.session.id,
            new_values=result.stats(),
        )
        db.commit()


async def _run_in_background(service: WialonSyncService, session_id: int, audit: AuditContext) -> None:
    """Background task: run an already created session to completion."""
    try:
        result = await service.run_session(session_id)
    except SyncRunError as exc:
        logger.warning("Background sync session %s failed: %s", session_id, exc)
    else:
        _audit_run(service.engine, audit, result)
    finally:
        await service.client.close()


@router.post("/start")
async def start_sync(
    background_tasks: BackgroundTasks,
    background: bool = False,
    audit: AuditContext = Depends(get_audit_context),
    engine=Depends(get_db_engine),
    client_factory=Depends(get_wialon_client_factory),
):
    """
    Run one full sync cycle.

    By default the run completes before the response is sent. With
    ``?background=true`` the session is created, the run is scheduled,
    and 202 is returned at once; poll ``GET /sessions/{id}`` for progress.
    """
    client = client_factory()
    service = WialonSyncService(client=client, engine=engine)

    try:
        sync_session = service.start_session(audit.user_id)
    except SyncAlreadyRunningError as exc:
        await client.close()
        raise HTTPException(status_code=409, detail=str(exc))

    if background:
        background_tasks.add_task(_run_in_background, service, sync_session.id, audit)
        return JSONResponse(
            status_code=202,
            content=jsonable_encoder({
                "success": True,
                "message": "Sync started",
                "session": sync_session,
            }),
        )

    try:
        result = await service.run_session(sync_session.id)
    except SyncRunError as exc:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": str(exc), "sessionId": exc.session_id},
        )
    finally:
        await client.close()

    _audit_run(engine, audit, result)
    return {"success": True, "session": result.session, "stats": result.stats()}
