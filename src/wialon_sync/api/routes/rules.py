"""Ad hoc sync rule routes."""
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from sqlmodel import Session

from wialon_sync.api.deps import get_audit_context
from wialon_sync.api.schemas import RuleCreate, RuleUpdate
from wialon_sync.db.engine import get_session
from wialon_sync.db.pagination import pagination_meta
from wialon_sync.models.audit import AuditAction, AuditEntity
from wialon_sync.models.sync import SyncRule
from wialon_sync.sync import rules as rule_store
from wialon_sync.sync.audit import AuditContext
from wialon_sync.sync.rules import RuleExecutionError

router = APIRouter()


@router.get("/")
def list_rules(
    rule_type: Optional[str] = Query(None, alias="type"),
    active_only: bool = Query(False, alias="activeOnly"),
    search: Optional[str] = None,
    sort_by: str = Query("execution_order", alias="sortBy"),
    descending: bool = False,
    page: int = Query(1, ge=1),
    per_page: int = Query(20, alias="perPage", ge=1),
    session: Session = Depends(get_session),
):
    rules, total = rule_store.list_rules(
        session,
        rule_type=rule_type,
        active_only=active_only,
        search=search,
        page=page,
        per_page=per_page,
        sort_by=sort_by,
        descending=descending,
    )
    return {
        "success": True,
        "rules": rules,
        "total": total,
        "pagination": pagination_meta(page, per_page, total),
    }


@router.post("/")
def create_rule(
    request: RuleCreate,
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    fields = request.model_dump()
    rule = rule_store.create_rule(session, fields, audit.user_id)
    audit.record(session, AuditAction.SYNC_RULE_CREATE, AuditEntity.SYNC_RULE, rule.id, new_values=fields)
    session.commit()
    session.refresh(rule)
    return JSONResponse(
        status_code=201,
        content=jsonable_encoder({"success": True, "message": "Rule created", "rule": rule}),
    )


@router.put("/{rule_id}")
def update_rule(
    rule_id: int,
    request: RuleUpdate,
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    """Partial update: only fields present in the body are changed."""
    fields = request.model_dump(exclude_unset=True)
    rule = rule_store.update_rule(session, rule_id, fields)
    if rule is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    audit.record(session, AuditAction.SYNC_RULE_UPDATE, AuditEntity.SYNC_RULE, rule_id, new_values=fields)
    session.commit()
    session.refresh(rule)
    return {"success": True, "message": "Rule updated", "rule": rule}


@router.delete("/{rule_id}")
def delete_rule(
    rule_id: int,
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    deleted = rule_store.delete_rule(session, rule_id)
    if deleted is None:
        raise HTTPException(status_code=404, detail="Rule not found")
    audit.record(session, AuditAction.SYNC_RULE_DELETE, AuditEntity.SYNC_RULE, rule_id, old_values=deleted)
    session.commit()
    return {"success": True, "message": f"Rule '{deleted['name']}' deleted", "rule": deleted}


@router.post("/{rule_id}/execute")
def execute_rule(
    rule_id: int,
    audit: AuditContext = Depends(get_audit_context),
    session: Session = Depends(get_session),
):
    """Run one active rule now. Failures are recorded and reported as 400."""
    rule = session.get(SyncRule, rule_id)
    if rule is None or not rule.is_active:
        raise HTTPException(status_code=404, detail="Rule not found or inactive")

    rule_name = rule.name
    try:
        execution = rule_store.execute_rule(session, rule, audit.user_id)
    except RuleExecutionError as exc:
        return JSONResponse(
            status_code=400,
            content={"success": False, "message": str(exc), "executionId": exc.execution_id},
        )

    audit.record(
        session, AuditAction.SYNC_RULE_EXECUTE, AuditEntity.SYNC_RULE, rule_id,
        new_values={"ruleName": rule_name, "rowCount": execution.row_count, "executionId": execution.id},
    )
    session.commit()
    session.refresh(execution)
    return {
        "success": True,
        "message": f"Rule '{rule_name}' executed",
        "result": {
            "executionId": execution.id,
            "rowCount": execution.row_count,
            "ruleName": rule_name,
        },
    }
