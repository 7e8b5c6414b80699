"""Tests for APScheduler job configuration and the stale-session sweep."""
from datetime import datetime, timedelta, timezone
from unittest.mock import MagicMock, patch

import pytest
from apscheduler.schedulers.asyncio import AsyncIOScheduler

from wialon_sync.models.sync import SessionStatus, SyncSession
from wialon_sync.scheduler.jobs import _sweep_stale_sessions, build_scheduler


class TestBuildScheduler:
    def test_returns_scheduler(self):
        scheduler = build_scheduler(MagicMock())
        assert isinstance(scheduler, AsyncIOScheduler)

    def test_sweep_job_registered_as_interval(self):
        scheduler = build_scheduler(MagicMock())
        job = next(j for j in scheduler.get_jobs() if j.id == "stale_session_sweep")
        assert job.trigger.__class__.__name__ == "IntervalTrigger"

    def test_interval_from_settings(self):
        with patch("wialon_sync.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.stale_sweep_interval_minutes = 5
            scheduler = build_scheduler(MagicMock())

        job = next(j for j in scheduler.get_jobs() if j.id == "stale_session_sweep")
        assert job.trigger.interval == timedelta(minutes=5)

    def test_scheduler_not_running_on_creation(self):
        scheduler = build_scheduler(MagicMock())
        assert not scheduler.running


# ─── _sweep_stale_sessions job body ───────────────────────────────────────────

class TestSweepJob:
    @pytest.mark.asyncio
    async def test_fails_old_running_sessions(self, engine, test_session):
        old = SyncSession(created_by=1, start_time=datetime.now(timezone.utc) - timedelta(hours=5))
        test_session.add(old)
        test_session.commit()

        with patch("wialon_sync.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.stale_session_minutes = 60
            await _sweep_stale_sessions(engine=engine)

        test_session.refresh(old)
        assert old.status == SessionStatus.FAILED.value
        assert old.end_time is not None

    @pytest.mark.asyncio
    async def test_leaves_recent_running_session(self, engine, test_session):
        recent = SyncSession(created_by=1)
        test_session.add(recent)
        test_session.commit()

        with patch("wialon_sync.scheduler.jobs.get_settings") as mock_settings:
            mock_settings.return_value.stale_session_minutes = 60
            await _sweep_stale_sessions(engine=engine)

        test_session.refresh(recent)
        assert recent.status == SessionStatus.RUNNING.value

    @pytest.mark.asyncio
    async def test_exception_does_not_propagate(self):
        """The sweep catches all exceptions so the scheduler stays alive."""
        with patch("wialon_sync.sync.sessions.SessionTracker.fail_stale", side_effect=Exception("db gone")):
            await _sweep_stale_sessions(engine=MagicMock())
