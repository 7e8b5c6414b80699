"""
Discrepancy queue: listing, statistics and the resolution workflow.

Resolution moves a discrepancy from ``pending`` to one of ``approved``,
``rejected`` or ``ignored`` exactly once. Rows that are no longer pending
are skipped, not reported as errors, so resolving the same ids twice is
harmless.
"""
import logging
from dataclasses import dataclass
from typing import Dict, Iterable, List, Optional

from sqlalchemy import func, or_
from sqlmodel import Session, col, select

from wialon_sync.db.pagination import order_by_clause, paginate
from wialon_sync.db.types import utcnow
from wialon_sync.models.sync import (
    RESOLUTION_ACTIONS,
    DiscrepancyStatus,
    SyncDiscrepancy,
)

logger = logging.getLogger(__name__)

DISCREPANCY_SORT_COLUMNS = (
    "id", "created_at", "session_id", "discrepancy_type", "entity_type",
    "status", "resolved_at",
)


@dataclass
class DiscrepancyFilters:
    session_id: Optional[int] = None
    status: Optional[str] = None
    discrepancy_type: Optional[str] = None
    search: Optional[str] = None

    def clauses(self) -> list:
        clauses = []
        if self.session_id is not None:
            clauses.append(SyncDiscrepancy.session_id == self.session_id)
        if self.status:
            clauses.append(SyncDiscrepancy.status == self.status)
        if self.discrepancy_type:
            clauses.append(SyncDiscrepancy.discrepancy_type == self.discrepancy_type)
        if self.search:
            pattern = f"%{self.search}%"
            clauses.append(
                or_(
                    col(SyncDiscrepancy.discrepancy_type).ilike(pattern),
                    col(SyncDiscrepancy.external_entity_data)["name"].as_string().ilike(pattern),
                    col(SyncDiscrepancy.local_entity_data)["name"].as_string().ilike(pattern),
                )
            )
        return clauses


def list_discrepancies(
    db: Session,
    filters: Optional[DiscrepancyFilters] = None,
    *,
    page: int = 1,
    per_page: int = 50,
    sort_by: str = "created_at",
    descending: bool = True,
):
    """Return (discrepancies, total) for one page of the filtered queue."""
    filters = filters or DiscrepancyFilters()
    stmt = (
        select(SyncDiscrepancy)
        .where(*filters.clauses())
        .order_by(
            order_by_clause(SyncDiscrepancy, sort_by, descending, DISCREPANCY_SORT_COLUMNS),
            col(SyncDiscrepancy.id).desc() if descending else col(SyncDiscrepancy.id).asc(),
        )
    )
    return paginate(db, stmt, page, per_page)


def status_counts(db: Session, filters: Optional[DiscrepancyFilters] = None) -> Dict[str, int]:
    """
    Count discrepancies per status.

    With no filters the counts cover the whole queue, which lets a caller
    show "X of Y" next to a filtered view.
    """
    stmt = select(SyncDiscrepancy.status, func.count()).group_by(SyncDiscrepancy.status)
    if filters is not None:
        stmt = stmt.where(*filters.clauses())
    counts = dict(db.exec(stmt).all())
    stats = {status.value: counts.get(status.value, 0) for status in DiscrepancyStatus}
    stats["total"] = sum(counts.values())
    return stats


def resolve(
    db: Session,
    discrepancy_ids: Iterable[int],
    action: str,
    resolved_by: int,
    notes: Optional[str] = None,
) -> List[SyncDiscrepancy]:
    """
    Resolve pending discrepancies with one action.

    Ids that are unknown or already resolved are skipped. The change is
    flushed, not committed.

    Returns:
        The rows that were actually updated.

    Raises:
        ValueError: if ``action`` is not a resolution action.
    """
    if action not in RESOLUTION_ACTIONS:
        raise ValueError(f"Invalid resolution action '{action}'")
    ids = sorted(set(discrepancy_ids))
    if not ids:
        return []

    # Row locks (where supported) keep a concurrent resolver from flipping a row twice
    rows = db.exec(
        select(SyncDiscrepancy)
        .where(
            col(SyncDiscrepancy.id).in_(ids),
            SyncDiscrepancy.status == DiscrepancyStatus.PENDING.value,
        )
        .order_by(SyncDiscrepancy.id)
        .with_for_update()
    ).all()

    now = utcnow()
    for row in rows:
        row.status = action
        row.resolution_notes = notes
        row.resolved_by = resolved_by
        row.resolved_at = now
        db.add(row)
    db.flush()

    logger.info(
        "Resolved %d of %d discrepancies as %s (user %s)",
        len(rows), len(ids), action, resolved_by,
    )
    return list(rows)
