"""
WialonSyncService: orchestrates one reconciliation run.

Flow for a single run:
  1. Create SyncSession (status="running"), failing stale sessions first
  2. Clear staging rows for the session
  3. Load clients and objects from Wialon into staging
  4. Evaluate the predicates and queue discrepancies
  5. Complete the session with its counters (same transaction as 4)

On any exception: roll back the evaluation transaction, mark the session
failed with the error message, and raise SyncRunError.

Runs are never retried or resumed; a new run starts from an empty staging
area under a new session.
"""
import logging
from dataclasses import dataclass
from datetime import timedelta
from typing import Optional

from sqlmodel import Session

from wialon_sync.config import get_settings
from wialon_sync.models.sync import LogLevel, SyncSession
from wialon_sync.reconcile.evaluator import evaluate
from wialon_sync.sync.sessions import SessionTracker
from wialon_sync.wialon.loader import LoadStats, WialonLoader

logger = logging.getLogger(__name__)


class SyncRunError(RuntimeError):
    """A run failed; the session has been marked failed."""

    def __init__(self, message: str, session_id: Optional[int]):
        super().__init__(message)
        self.session_id = session_id


@dataclass
class SyncRunResult:
    session: SyncSession
    clients_loaded: int
    objects_loaded: int
    discrepancies_found: int

    def stats(self) -> dict:
        return {
            "clientsLoaded": self.clients_loaded,
            "objectsLoaded": self.objects_loaded,
            "discrepanciesFound": self.discrepancies_found,
        }


class WialonSyncService:
    """Runs Load + Analyze for a session and records its outcome."""

    def __init__(self, client, engine, *, tracker: Optional[SessionTracker] = None, fetch_usernames: Optional[bool] = None):
        """
        Args:
            client: WialonClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
        """
        settings = get_settings()
        self.client = client
        self.engine = engine
        self.tracker = tracker or SessionTracker(engine)
        self.loader = WialonLoader(
            client, engine, self.tracker,
            fetch_usernames=settings.wialon_fetch_usernames if fetch_usernames is None else fetch_usernames,
        )
        self.stale_after = timedelta(minutes=settings.stale_session_minutes)

    def start_session(self, created_by: int) -> SyncSession:
        """
        Open a running session and log who started it.

        Raises:
            SyncAlreadyRunningError: if another session is still running.
        """
        session = self.tracker.create(created_by, stale_after=self.stale_after)
        self.tracker.log(
            session.id, LogLevel.INFO, "Sync session started by user", {"userId": created_by}
        )
        return session

    async def run(self, created_by: int) -> SyncRunResult:
        """Start a session and run it to completion."""
        session = self.start_session(created_by)
        return await self.run_session(session.id)

    async def run_session(self, session_id: int) -> SyncRunResult:
        """
        Load and analyze an already created session.

        Returns:
            SyncRunResult with the completed session and run counters.

        Raises:
            SyncRunError: after the session has been marked failed.
        """
        try:
            self.loader.clear_staging(session_id)
            load_stats = await self.loader.load(session_id)
            session, found = self._analyze(session_id, load_stats)
        except Exception as exc:
            logger.error("Sync session %s failed: %s", session_id, exc)
            self.tracker.fail(session_id, str(exc))
            raise SyncRunError(str(exc) or type(exc).__name__, session_id) from exc

        logger.info(
            "Sync session %s completed: %d clients, %d objects, %d discrepancies",
            session_id, load_stats.clients_loaded, load_stats.objects_loaded, found,
        )
        return SyncRunResult(
            session=session,
            clients_loaded=load_stats.clients_loaded,
            objects_loaded=load_stats.objects_loaded,
            discrepancies_found=found,
        )

    # ─── Internal helpers ─────────────────────────────────────────────────────

    def _analyze(self, session_id: int, load_stats: LoadStats):
        """Evaluate predicates and complete the session in one transaction."""
        with Session(self.engine) as db:
            try:
                self.tracker.log(session_id, LogLevel.INFO, "Starting discrepancy analysis", db=db)
                report = evaluate(db, session_id)

                for outcome in report.outcomes:
                    if outcome.ok:
                        self.tracker.log(
                            session_id, LogLevel.INFO, f"Check completed: {outcome.name}",
                            {"discrepanciesFound": outcome.found}, db=db,
                        )
                    else:
                        self.tracker.log(
                            session_id, LogLevel.ERROR, f"Check failed: {outcome.name}",
                            {"error": outcome.error}, db=db,
                        )
                self.tracker.log(
                    session_id, LogLevel.INFO,
                    f"Discrepancy analysis completed. Found {report.total} discrepancies",
                    db=db,
                )

                session = self.tracker.complete(
                    session_id,
                    clients_checked=load_stats.clients_loaded,
                    objects_checked=load_stats.objects_loaded,
                    discrepancies_found=report.total,
                    db=db,
                )
                db.commit()
                db.refresh(session)
            except Exception:
                db.rollback()
                raise
        return session, report.total
