"""Tests for DB models."""
from datetime import datetime, timedelta, timezone

import sqlalchemy.exc
import pytest
from sqlmodel import Session, select

from wialon_sync.models.fleet import Client, WialonObject
from wialon_sync.models.staging import StagingObject
from wialon_sync.models.sync import (
    RESOLUTION_ACTIONS,
    DiscrepancyStatus,
    SessionStatus,
    SyncDiscrepancy,
    SyncLog,
    SyncRule,
    SyncSession,
)


class TestSyncSession:
    def test_defaults(self):
        session = SyncSession(created_by=3)
        assert session.status == SessionStatus.RUNNING.value
        assert session.end_time is None
        assert session.total_clients_checked == 0
        assert session.discrepancies_found == 0
        assert session.error_message is None

    def test_persists(self, test_session: Session):
        test_session.add(SyncSession(created_by=3))
        test_session.commit()
        result = test_session.exec(select(SyncSession)).one()
        assert result.id is not None
        assert result.start_time is not None

    def test_second_running_session_rejected_by_database(self, test_session: Session):
        test_session.add(SyncSession(created_by=1))
        test_session.commit()
        test_session.add(SyncSession(created_by=2))
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            test_session.commit()

    def test_many_finished_sessions_allowed(self, test_session: Session):
        test_session.add_all([
            SyncSession(created_by=1, status="completed"),
            SyncSession(created_by=1, status="completed"),
            SyncSession(created_by=1, status="failed"),
            SyncSession(created_by=1),
        ])
        test_session.commit()
        assert len(test_session.exec(select(SyncSession)).all()) == 4


class TestTimestamps:
    def test_defaults_are_utc_aware(self):
        session = SyncSession(created_by=1)
        assert session.start_time.tzinfo is not None
        assert session.start_time.utcoffset() == timedelta(0)

    def test_reloaded_values_are_utc_aware(self, test_session: Session, sync_session):
        test_session.add(SyncLog(session_id=sync_session.id, message="hello"))
        test_session.commit()

        log = test_session.exec(select(SyncLog)).one()
        session = test_session.get(SyncSession, sync_session.id)

        for value in (log.created_at, session.start_time, session.updated_at):
            assert value.tzinfo is not None
            assert value.utcoffset() == timedelta(0)

    def test_naive_values_are_stored_as_utc(self, test_session: Session, sync_session):
        test_session.add(
            SyncLog(session_id=sync_session.id, message="naive", created_at=datetime(2026, 1, 1, 8))
        )
        test_session.commit()

        log = test_session.exec(select(SyncLog)).one()
        assert log.created_at == datetime(2026, 1, 1, 8, tzinfo=timezone.utc)

    def test_offsets_are_converted_to_utc(self, test_session: Session, sync_session):
        moscow = timezone(timedelta(hours=3))
        test_session.add(
            SyncLog(session_id=sync_session.id, message="local", created_at=datetime(2026, 1, 1, 11, tzinfo=moscow))
        )
        test_session.commit()

        log = test_session.exec(select(SyncLog)).one()
        assert log.created_at == datetime(2026, 1, 1, 8, tzinfo=timezone.utc)
        assert log.created_at.tzinfo == timezone.utc

class TestSyncLog:
    def test_details_roundtrip_json(self, test_session: Session, sync_session):
        test_session.add(
            SyncLog(
                session_id=sync_session.id,
                log_level="warning",
                message="Skipped",
                details={"clientCrt": 42, "nested": {"a": [1, 2]}},
            )
        )
        test_session.commit()
        log = test_session.exec(select(SyncLog)).one()
        assert log.details == {"clientCrt": 42, "nested": {"a": [1, 2]}}


class TestSyncDiscrepancy:
    def test_defaults_to_pending(self, sync_session):
        d = SyncDiscrepancy(
            session_id=sync_session.id,
            discrepancy_type="new_client",
            entity_type="client",
            external_entity_data={"name": "Acme"},
        )
        assert d.status == DiscrepancyStatus.PENDING.value
        assert d.local_entity_data is None
        assert d.resolved_at is None

    def test_resolution_actions_exclude_pending(self):
        assert DiscrepancyStatus.PENDING.value not in RESOLUTION_ACTIONS
        assert set(RESOLUTION_ACTIONS) == {"approved", "rejected", "ignored"}


class TestFleet:
    def test_object_belongs_to_client(self, test_session: Session):
        client = Client(wialon_id="100", name="Acme")
        test_session.add(client)
        test_session.commit()
        test_session.refresh(client)

        test_session.add(WialonObject(wialon_id="500", name="Truck 1", client_id=client.id))
        test_session.commit()
        test_session.refresh(client)

        assert [o.name for o in client.objects] == ["Truck 1"]

    def test_client_wialon_id_is_unique(self, test_session: Session):
        test_session.add(Client(wialon_id="100", name="A"))
        test_session.commit()
        test_session.add(Client(wialon_id="100", name="B"))
        with pytest.raises(sqlalchemy.exc.IntegrityError):
            test_session.commit()

    def test_clients_without_wialon_id_allowed(self, test_session: Session):
        test_session.add(Client(name="Local only 1"))
        test_session.add(Client(name="Local only 2"))
        test_session.commit()
        assert len(test_session.exec(select(Client)).all()) == 2


class TestStagingAndRules:
    def test_phone_numbers_stored_as_list(self, test_session: Session, sync_session):
        test_session.add(
            StagingObject(
                session_id=sync_session.id,
                external_id="500",
                name="Truck",
                phone_numbers=["+100", "+200"],
            )
        )
        test_session.commit()
        staged = test_session.exec(select(StagingObject)).one()
        assert staged.phone_numbers == ["+100", "+200"]

    def test_rule_defaults(self):
        rule = SyncRule(name="Orphans", sql_query="SELECT 1")
        assert rule.rule_type == "custom"
        assert rule.execution_order == 1
        assert rule.is_active is True
