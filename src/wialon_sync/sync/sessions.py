"""
Session tracking: lifecycle of sync runs and their diagnostic logs.

A session moves from ``running`` to exactly one terminal state
(``completed`` or ``failed``) and is never moved again. ``end_time`` is
null exactly while the session is running.

SyncLog rows are written through :meth:`SessionTracker.log`, which also
mirrors each entry to the Python logger. Callers holding an open
transaction pass it as ``db`` so the entry commits (or rolls back) with
their work; otherwise the entry is committed on its own.
"""
import logging
from datetime import date, datetime, time, timedelta, timezone
from typing import Any, Dict, List, Optional

from sqlalchemy import String, cast, delete, func, or_
from sqlalchemy.exc import IntegrityError
from sqlmodel import Session, col, select

from wialon_sync.db.pagination import order_by_clause, paginate
from wialon_sync.db.types import utcnow
from wialon_sync.models.sync import (
    DiscrepancyStatus,
    LogLevel,
    SessionStatus,
    SyncDiscrepancy,
    SyncLog,
    SyncSession,
)

logger = logging.getLogger(__name__)

_PY_LEVELS = {
    LogLevel.DEBUG.value: logging.DEBUG,
    LogLevel.INFO.value: logging.INFO,
    LogLevel.WARNING.value: logging.WARNING,
    LogLevel.ERROR.value: logging.ERROR,
}

SESSION_SORT_COLUMNS = (
    "id", "start_time", "end_time", "status", "created_by",
    "total_clients_checked", "total_objects_checked", "discrepancies_found",
)
LOG_SORT_COLUMNS = ("id", "created_at", "log_level", "session_id", "message")


# ── Exceptions ────────────────────────────────────────────────────────────────

class SyncAlreadyRunningError(RuntimeError):
    """Raised when a new session is requested while another is running."""

    def __init__(self, session_id: Optional[int]):
        name = f"Sync session {session_id}" if session_id is not None else "Another sync session"
        super().__init__(f"{name} is already running. Wait for it to finish.")
        self.session_id = session_id


class SessionStateError(RuntimeError):
    """Raised on a transition the session state machine does not allow."""


# ── Tracker ───────────────────────────────────────────────────────────────────

class SessionTracker:
    """Creates, completes and fails sync sessions; appends their logs."""

    def __init__(self, engine):
        """
        Args:
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        self.engine = engine

    def create(
        self,
        created_by: int,
        *,
        stale_after: Optional[timedelta] = None,
    ) -> SyncSession:
        """
        Open a new ``running`` session.

        Args:
            created_by: id of the requesting user.
            stale_after: if given, running sessions older than this are
                failed first so a crashed run cannot block new ones.

        Raises:
            SyncAlreadyRunningError: if another session is still running.
        """
        with Session(self.engine) as db:
            if stale_after is not None and self._fail_stale(db, stale_after, utcnow()):
                db.commit()

            active = self._running(db)
            if active is not None:
                raise SyncAlreadyRunningError(active.id)

            session = SyncSession(created_by=created_by, status=SessionStatus.RUNNING.value)
            db.add(session)
            try:
                db.commit()
            except IntegrityError:
                # Lost the race: uq_syncsession_running rejected the insert
                db.rollback()
                active = self._running(db)
                raise SyncAlreadyRunningError(active.id if active is not None else None)
            db.refresh(session)
        logger.info("Sync session %s started by user %s", session.id, created_by)
        return session

    @staticmethod
    def _running(db: Session) -> Optional[SyncSession]:
        return db.exec(
            select(SyncSession).where(SyncSession.status == SessionStatus.RUNNING.value)
        ).first()

    def get(self, session_id: int) -> Optional[SyncSession]:
        with Session(self.engine) as db:
            return db.get(SyncSession, session_id)

    def complete(
        self,
        session_id: int,
        *,
        clients_checked: int = 0,
        objects_checked: int = 0,
        discrepancies_found: int = 0,
        db: Optional[Session] = None,
    ) -> SyncSession:
        """
        Mark a running session completed and store its counters.

        When ``db`` is given the change joins that transaction and is not
        committed here.

        Raises:
            SessionStateError: if the session is missing or not running.
        """
        if db is None:
            with Session(self.engine) as own:
                session = self.complete(
                    session_id,
                    clients_checked=clients_checked,
                    objects_checked=objects_checked,
                    discrepancies_found=discrepancies_found,
                    db=own,
                )
                own.commit()
                own.refresh(session)
                return session

        session = db.get(SyncSession, session_id)
        if session is None:
            raise SessionStateError(f"Sync session {session_id} not found")
        if session.status != SessionStatus.RUNNING.value:
            raise SessionStateError(
                f"Sync session {session_id} is {session.status}, cannot complete"
            )
        now = utcnow()
        session.status = SessionStatus.COMPLETED.value
        session.end_time = now
        session.updated_at = now
        session.total_clients_checked = clients_checked
        session.total_objects_checked = objects_checked
        session.discrepancies_found = discrepancies_found
        db.add(session)
        db.flush()
        return session

    def fail(self, session_id: Optional[int], error_message: str) -> Optional[SyncSession]:
        """
        Mark a session failed and append an error log with the reason.

        Missing sessions are ignored with a warning. A session that already
        reached a terminal state keeps it; only the error log is appended.
        """
        if session_id is None:
            logger.warning("Sync failed before a session was created: %s", error_message)
            return None

        with Session(self.engine) as db:
            session = db.get(SyncSession, session_id)
            if session is None:
                logger.warning(
                    "Cannot mark sync session %s failed: not found (%s)",
                    session_id, error_message,
                )
                return None

            if session.status == SessionStatus.RUNNING.value:
                now = utcnow()
                session.status = SessionStatus.FAILED.value
                session.end_time = now
                session.updated_at = now
                session.error_message = error_message
                db.add(session)
            else:
                logger.warning(
                    "Sync session %s already %s; not marking failed",
                    session_id, session.status,
                )

            self.log(
                session_id, LogLevel.ERROR, "Sync session failed",
                {"error": error_message}, db=db,
            )
            db.commit()
            db.refresh(session)
            return session

    def fail_stale(self, max_age: timedelta, now: Optional[datetime] = None) -> List[int]:
        """Fail running sessions started more than ``max_age`` ago.

        Returns:
            Ids of the sessions that were failed.
        """
        with Session(self.engine) as db:
            failed = self._fail_stale(db, max_age, now or utcnow())
            db.commit()
        return failed

    def _fail_stale(self, db: Session, max_age: timedelta, now: datetime) -> List[int]:
        cutoff = now - max_age
        stale = db.exec(
            select(SyncSession).where(
                SyncSession.status == SessionStatus.RUNNING.value,
                SyncSession.start_time < cutoff,
            )
        ).all()
        for session in stale:
            message = f"Session exceeded {int(max_age.total_seconds() // 60)} minutes without finishing"
            session.status = SessionStatus.FAILED.value
            session.end_time = now
            session.updated_at = now
            session.error_message = message
            db.add(session)
            self.log(
                session.id, LogLevel.ERROR, "Stale sync session marked failed",
                {"error": message, "startTime": session.start_time.isoformat()}, db=db,
            )
            logger.warning("Marked stale sync session %s failed", session.id)
        return [s.id for s in stale]

    def log(
        self,
        session_id: int,
        level,
        message: str,
        details: Optional[Dict[str, Any]] = None,
        *,
        db: Optional[Session] = None,
    ) -> SyncLog:
        """Append one SyncLog entry and mirror it to the Python logger."""
        level = LogLevel(level).value
        logger.log(_PY_LEVELS[level], "[session %s] %s", session_id, message)

        entry = SyncLog(session_id=session_id, log_level=level, message=message, details=details)
        if db is not None:
            db.add(entry)
            return entry
        with Session(self.engine) as own:
            own.add(entry)
            own.commit()
            own.refresh(entry)
        return entry


# ── Queries ───────────────────────────────────────────────────────────────────

def list_sessions(
    db: Session,
    *,
    page: int = 1,
    per_page: int = 20,
    sort_by: str = "start_time",
    descending: bool = True,
    search: Optional[str] = None,
):
    """Return (sessions, total) for one page of the session list."""
    stmt = select(SyncSession)
    if search:
        pattern = f"%{search}%"
        stmt = stmt.where(
            or_(
                cast(col(SyncSession.id), String).ilike(pattern),
                col(SyncSession.status).ilike(pattern),
            )
        )
    stmt = stmt.order_by(order_by_clause(SyncSession, sort_by, descending, SESSION_SORT_COLUMNS))
    return paginate(db, stmt, page, per_page)


def session_global_stats(db: Session) -> Dict[str, int]:
    """Counts over all sessions plus pending discrepancies, ignoring filters."""
    counts = dict(
        db.exec(
            select(SyncSession.status, func.count()).group_by(SyncSession.status)
        ).all()
    )
    pending = db.exec(
        select(func.count()).select_from(SyncDiscrepancy).where(
            SyncDiscrepancy.status == DiscrepancyStatus.PENDING.value
        )
    ).one()
    stats = {status.value: counts.get(status.value, 0) for status in SessionStatus}
    stats["total"] = sum(counts.values())
    stats["pendingDiscrepancies"] = pending
    return stats


def get_session_detail(db: Session, session_id: int):
    """Return (session, logs newest first), or (None, []) if missing."""
    session = db.get(SyncSession, session_id)
    if session is None:
        return None, []
    logs = db.exec(
        select(SyncLog)
        .where(SyncLog.session_id == session_id)
        .order_by(col(SyncLog.created_at).desc(), col(SyncLog.id).desc())
    ).all()
    return session, list(logs)


def _log_filters(
    session_id: Optional[int] = None,
    level: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
) -> list:
    clauses = []
    if session_id is not None:
        clauses.append(SyncLog.session_id == session_id)
    if level:
        clauses.append(SyncLog.log_level == level)
    # Dates are UTC days
    if date_from:
        clauses.append(SyncLog.created_at >= datetime.combine(date_from, time.min, timezone.utc))
    if date_to:
        clauses.append(SyncLog.created_at <= datetime.combine(date_to, time.max, timezone.utc))
    if search:
        pattern = f"%{search}%"
        clauses.append(
            or_(col(SyncLog.message).ilike(pattern), col(SyncLog.log_level).ilike(pattern))
        )
    return clauses


def list_logs(
    db: Session,
    *,
    session_id: Optional[int] = None,
    level: Optional[str] = None,
    date_from: Optional[date] = None,
    date_to: Optional[date] = None,
    search: Optional[str] = None,
    page: int = 1,
    per_page: int = 50,
    sort_by: str = "created_at",
    descending: bool = True,
):
    """Return (logs, total, filtered level counts, global level counts)."""
    clauses = _log_filters(session_id, level, date_from, date_to, search)
    stmt = (
        select(SyncLog)
        .where(*clauses)
        .order_by(
            order_by_clause(SyncLog, sort_by, descending, LOG_SORT_COLUMNS),
            col(SyncLog.id).desc() if descending else col(SyncLog.id).asc(),
        )
    )
    logs, total = paginate(db, stmt, page, per_page)
    return logs, total, log_level_counts(db, clauses), log_level_counts(db)


def log_level_counts(db: Session, clauses: Optional[list] = None) -> Dict[str, int]:
    stmt = select(SyncLog.log_level, func.count()).group_by(SyncLog.log_level)
    if clauses:
        stmt = stmt.where(*clauses)
    counts = dict(db.exec(stmt).all())
    stats = {level.value: counts.get(level.value, 0) for level in LogLevel}
    stats["total"] = sum(counts.values())
    return stats


def purge_logs(
    db: Session,
    *,
    session_id: Optional[int] = None,
    older_than: Optional[datetime] = None,
) -> int:
    """Delete logs of one session and/or older than a timestamp.

    With neither filter every log is deleted. Commits and returns the
    number of rows removed.
    """
    stmt = delete(SyncLog)
    if session_id is not None:
        stmt = stmt.where(SyncLog.session_id == session_id)
    if older_than is not None:
        stmt = stmt.where(SyncLog.created_at < older_than)
    result = db.execute(stmt)
    db.commit()
    logger.info(
        "Purged %s sync logs (session=%s, older_than=%s)",
        result.rowcount, session_id, older_than,
    )
    return result.rowcount
