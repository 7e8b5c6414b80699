"""Shared helpers for paginated, sortable list queries."""
from typing import Any, Dict, Iterable, List, Tuple

from sqlalchemy import func
from sqlmodel import Session, col, select

MAX_PER_PAGE = 500


class InvalidSortError(ValueError):
    """Raised when a list endpoint is asked to sort by a column it does not expose."""


def order_by_clause(model, sort_by: str, descending: bool, allowed: Iterable[str]):
    """Build an ORDER BY clause for a whitelisted column name."""
    if sort_by not in allowed:
        raise InvalidSortError(f"Cannot sort by '{sort_by}'")
    column = col(getattr(model, sort_by))
    return column.desc() if descending else column.asc()


def count_rows(db: Session, stmt) -> int:
    """Count the rows a SELECT would return, ignoring ordering and limits."""
    subquery = stmt.order_by(None).limit(None).offset(None).subquery()
    return db.exec(select(func.count()).select_from(subquery)).one()


def paginate(db: Session, stmt, page: int, per_page: int) -> Tuple[List[Any], int]:
    """Return one page of results plus the unpaginated total.

    ``page`` starts at 1; out-of-range values are clamped.
    """
    page = max(1, page)
    per_page = min(max(1, per_page), MAX_PER_PAGE)
    total = count_rows(db, stmt)
    rows = db.exec(stmt.offset((page - 1) * per_page).limit(per_page)).all()
    return list(rows), total


def pagination_meta(page: int, per_page: int, total: int) -> Dict[str, Any]:
    page = max(1, page)
    per_page = min(max(1, per_page), MAX_PER_PAGE)
    return {
        "page": page,
        "perPage": per_page,
        "total": total,
        "hasMore": page * per_page < total,
    }
