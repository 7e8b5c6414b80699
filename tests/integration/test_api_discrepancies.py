"""Integration tests for the discrepancy routes."""
from unittest.mock import patch

import pytest
from sqlmodel import Session, select

from wialon_sync.models.fleet import Client
from wialon_sync.models.sync import SyncDiscrepancy, SyncSession

PREFIX = "/wialon-sync/discrepancies"


@pytest.fixture(name="queued")
def queued_fixture(engine):
    """Two pending and one approved discrepancy; returns their ids."""
    with Session(engine) as db:
        session = SyncSession(created_by=1, status="completed")
        db.add(session)
        db.commit()
        rows = [
            SyncDiscrepancy(session_id=session.id, discrepancy_type="new_client", entity_type="client",
                            external_entity_data={"wialon_id": "W1", "name": "Acme"}),
            SyncDiscrepancy(session_id=session.id, discrepancy_type="new_client", entity_type="client",
                            external_entity_data={"wialon_id": "W2", "name": "Globex"}),
            SyncDiscrepancy(session_id=session.id, discrepancy_type="new_client", entity_type="client",
                            external_entity_data={"wialon_id": "W3", "name": "Initech"}, status="approved"),
        ]
        db.add_all(rows)
        db.commit()
        return [r.id for r in rows]


class TestList:
    def test_filtered_list_with_both_stats(self, client, queued):
        resp = client.get(f"{PREFIX}/", params={"status": "pending"})

        assert resp.status_code == 200
        body = resp.json()
        assert body["total"] == 2
        assert body["stats"]["pending"] == 2
        assert body["stats"]["approved"] == 0
        assert body["globalStats"] == {"pending": 2, "approved": 1, "rejected": 0, "ignored": 0, "total": 3}

    def test_search_by_name(self, client, queued):
        body = client.get(f"{PREFIX}/", params={"search": "glob"}).json()
        assert [d["external_entity_data"]["name"] for d in body["discrepancies"]] == ["Globex"]

    def test_pagination(self, client, queued):
        body = client.get(f"{PREFIX}/", params={"perPage": 2, "page": 2}).json()
        assert len(body["discrepancies"]) == 1
        assert body["pagination"]["hasMore"] is False


class TestResolve:
    def test_skips_already_resolved(self, client, engine, queued):
        acme, _, initech = queued

        resp = client.post(
            f"{PREFIX}/resolve",
            json={"discrepancyIds": [acme, initech], "action": "rejected", "notes": "not ours"},
            headers={"X-User-Id": "3"},
        )

        assert resp.status_code == 200
        body = resp.json()
        assert body["resolvedCount"] == 1
        assert [d["id"] for d in body["discrepancies"]] == [acme]
        with Session(engine) as db:
            assert db.get(SyncDiscrepancy, acme).status == "rejected"
            assert db.get(SyncDiscrepancy, acme).resolved_by == 3
            assert db.get(SyncDiscrepancy, initech).status == "approved"

    def test_invalid_action_is_400(self, client, queued):
        resp = client.post(f"{PREFIX}/resolve", json={"discrepancyIds": [queued[0]], "action": "pending"})
        assert resp.status_code == 400
        assert resp.json()["success"] is False

    def test_empty_ids_is_400(self, client):
        resp = client.post(f"{PREFIX}/resolve", json={"discrepancyIds": [], "action": "approved"})
        assert resp.status_code == 400

    def test_approval_records_only_by_default(self, client, engine, queued):
        client.post(f"{PREFIX}/resolve", json={"discrepancyIds": [queued[0]], "action": "approved"})
        with Session(engine) as db:
            assert db.exec(select(Client)).all() == []

    def test_approval_applies_corrections_when_enabled(self, client, engine, queued):
        with patch("wialon_sync.api.routes.discrepancies.get_settings") as mock_settings:
            mock_settings.return_value.sync_apply_approved_corrections = True
            resp = client.post(f"{PREFIX}/resolve", json={"discrepancyIds": [queued[0]], "action": "approved"})

        assert resp.json()["corrections"]["applied"] == [queued[0]]
        with Session(engine) as db:
            assert [c.wialon_id for c in db.exec(select(Client))] == ["W1"]
