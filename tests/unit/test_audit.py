"""Tests for the audit writer."""
from datetime import datetime, timezone

import pytest
from sqlmodel import select

from wialon_sync.models.audit import AuditAction, AuditEntity, AuditLog
from wialon_sync.sync.audit import AuditContext, record_action


class TestRecordAction:
    def test_joins_callers_transaction(self, test_session):
        record_action(
            test_session, user_id=1, action_type=AuditAction.SYNC_RULE_CREATE,
            entity_type=AuditEntity.SYNC_RULE, entity_id=5,
        )
        test_session.rollback()
        assert test_session.exec(select(AuditLog)).all() == []

    def test_values_stored_as_json(self, test_session):
        record_action(
            test_session,
            user_id=1,
            action_type="WIALON_SYNC_LOGS_CLEAR",
            entity_type="SYNC_LOGS",
            entity_id="all",
            new_values={"olderThan": datetime(2026, 1, 1, tzinfo=timezone.utc), "status": AuditEntity.SYNC_LOGS},
        )
        test_session.commit()

        entry = test_session.exec(select(AuditLog)).one()
        assert entry.new_values == {"olderThan": "2026-01-01T00:00:00Z", "status": "SYNC_LOGS"}
        assert entry.old_values is None

    def test_entity_id_is_text(self, test_session):
        entry = record_action(
            test_session, user_id=None, action_type=AuditAction.WIALON_SYNC_START,
            entity_type=AuditEntity.SYNC_SESSION, entity_id=17,
        )
        assert entry.entity_id == "17"

    def test_unknown_action_rejected(self, test_session):
        with pytest.raises(ValueError):
            record_action(test_session, user_id=1, action_type="DROP_EVERYTHING", entity_type="SYNC_RULE")


class TestAuditContext:
    def test_record_carries_caller_and_address(self, test_session):
        context = AuditContext(user_id=9, ip_address="10.0.0.5", user_agent="curl/8")

        context.record(
            test_session, AuditAction.SYNC_RULE_DELETE, AuditEntity.SYNC_RULE, 3,
            old_values={"name": "Orphans"},
        )
        test_session.commit()

        entry = test_session.exec(select(AuditLog)).one()
        assert (entry.user_id, entry.ip_address, entry.user_agent) == (9, "10.0.0.5", "curl/8")
        assert entry.action_type == "SYNC_RULE_DELETE"
        assert entry.old_values == {"name": "Orphans"}
