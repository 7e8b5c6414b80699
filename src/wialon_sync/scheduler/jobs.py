"""
APScheduler jobs for session housekeeping.

A sync that crashes between creating its session and recording the outcome
leaves the session ``running`` forever and blocks new syncs. The sweep job
fails such sessions once they exceed ``stale_session_minutes``.

The scheduler runs inside the API process (wired in __main__).
"""
import logging
from datetime import timedelta

from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wialon_sync.config import get_settings

logger = logging.getLogger(__name__)


def build_scheduler(engine) -> AsyncIOScheduler:
    """
    Create and configure the APScheduler.

    Args:
        engine: SQLAlchemy engine passed to the sweep job.

    Returns:
        Configured AsyncIOScheduler (not yet started).
    """
    settings = get_settings()
    scheduler = AsyncIOScheduler()

    scheduler.add_job(
        _sweep_stale_sessions,
        trigger="interval",
        minutes=settings.stale_sweep_interval_minutes,
        id="stale_session_sweep",
        replace_existing=True,
        kwargs={"engine": engine},
    )

    return scheduler


async def _sweep_stale_sessions(engine) -> None:
    """Fail running sessions older than the configured bound."""
    from wialon_sync.sync.sessions import SessionTracker

    settings = get_settings()
    try:
        failed = SessionTracker(engine).fail_stale(
            timedelta(minutes=settings.stale_session_minutes)
        )
        if failed:
            logger.warning("Marked %d stale sync sessions failed: %s", len(failed), failed)
    except Exception as exc:
        logger.error("Stale session sweep failed: %s", exc)
