"""
Ad hoc sync rules: stored SQL statements run on demand.

A rule's ``sql_query`` is executed through SQLAlchemy ``text()`` with the
rule's ``parameters`` as named bind values (``:name`` placeholders). Rules
sit beside the built-in predicates and never run as part of a sync.
"""
import logging
from typing import Any, Dict, Optional

from sqlalchemy import or_, text
from sqlmodel import Session, col, select

from wialon_sync.db.pagination import order_by_clause, paginate
from wialon_sync.db.types import utcnow
from wialon_sync.models.sync import SyncRule, SyncRuleExecution

logger = logging.getLogger(__name__)

RULE_SORT_COLUMNS = ("id", "name", "rule_type", "execution_order", "is_active", "created_at", "updated_at")
EDITABLE_FIELDS = ("name", "description", "rule_type", "sql_query", "parameters", "execution_order", "is_active")


class RuleExecutionError(RuntimeError):
    """Raised when a rule's SQL fails; the failure is recorded first."""

    def __init__(self, message: str, execution_id: Optional[int] = None):
        super().__init__(message)
        self.execution_id = execution_id


def list_rules(
    db: Session,
    *,
    rule_type: Optional[str] = None,
    active_only: bool = False,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 20,
    sort_by: str = "execution_order",
    descending: bool = False,
):
    """Return (rules, total) for one page of rules."""
    stmt = select(SyncRule)
    if rule_type:
        stmt = stmt.where(SyncRule.rule_type == rule_type)
    if active_only:
        stmt = stmt.where(col(SyncRule.is_active).is_(True))
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                col(SyncRule.name).ilike(pattern),
                col(SyncRule.description).ilike(pattern),
                col(SyncRule.rule_type).ilike(pattern),
            )
        )
    stmt = stmt.order_by(
        order_by_clause(SyncRule, sort_by, descending, RULE_SORT_COLUMNS),
        col(SyncRule.name).asc(),
    )
    return paginate(db, stmt, page, per_page)


def create_rule(db: Session, fields: Dict[str, Any], created_by: int) -> SyncRule:
    rule = SyncRule(**{k: v for k, v in fields.items() if k in EDITABLE_FIELDS}, created_by=created_by)
    db.add(rule)
    db.commit()
    db.refresh(rule)
    logger.info("Sync rule %s (%s) created by user %s", rule.id, rule.name, created_by)
    return rule


def update_rule(db: Session, rule_id: int, fields: Dict[str, Any]) -> Optional[SyncRule]:
    """Apply the given fields to a rule. Returns None if it does not exist."""
    rule = db.get(SyncRule, rule_id)
    if rule is None:
        return None
    for key, value in fields.items():
        if key in EDITABLE_FIELDS:
            setattr(rule, key, value)
    rule.updated_at = utcnow()
    db.add(rule)
    db.commit()
    db.refresh(rule)
    return rule


def delete_rule(db: Session, rule_id: int) -> Optional[Dict[str, Any]]:
    """Delete a rule and its execution history.

    Returns:
        The deleted rule's fields, or None if it does not exist.
    """
    rule = db.get(SyncRule, rule_id)
    if rule is None:
        return None
    executions = db.exec(
        select(SyncRuleExecution).where(SyncRuleExecution.rule_id == rule_id)
    ).all()
    snapshot = rule.model_dump()
    for execution in executions:
        db.delete(execution)
    db.delete(rule)
    db.commit()
    logger.info("Sync rule %s (%s) deleted", rule_id, snapshot["name"])
    return snapshot


def execute_rule(db: Session, rule: SyncRule, executed_by: int) -> SyncRuleExecution:
    """
    Run a rule's SQL and record the execution.

    The row count is the number of rows returned for SELECT-like
    statements, or the affected row count otherwise.

    Raises:
        RuleExecutionError: if the SQL fails (the failed execution is committed).
    """
    rule_id, rule_name = rule.id, rule.name
    execution = SyncRuleExecution(rule_id=rule_id, executed_by=executed_by, started_at=utcnow())
    try:
        result = db.execute(text(rule.sql_query), dict(rule.parameters or {}))
        if result.returns_rows:
            row_count = len(result.fetchall())
        else:
            row_count = max(result.rowcount, 0)
    except Exception as exc:
        db.rollback()
        execution.status = "failed"
        execution.error_message = str(exc)
        execution.finished_at = utcnow()
        db.add(execution)
        db.commit()
        db.refresh(execution)
        logger.error("Sync rule %s (%s) failed: %s", rule_id, rule_name, exc)
        raise RuleExecutionError(f"Rule '{rule_name}' failed: {exc}", execution.id) from exc

    execution.status = "completed"
    execution.row_count = row_count
    execution.finished_at = utcnow()
    db.add(execution)
    db.commit()
    db.refresh(execution)
    logger.info("Sync rule %s (%s) executed: %d rows", rule_id, rule_name, row_count)
    return execution
