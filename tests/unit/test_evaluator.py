"""Tests for the predicate evaluator."""
import itertools

from sqlmodel import Session, select

from wialon_sync.models.fleet import Client, WialonObject
from wialon_sync.models.staging import StagingClient, StagingObject
from wialon_sync.models.sync import SyncDiscrepancy
from wialon_sync.reconcile.evaluator import evaluate
from wialon_sync.reconcile.predicates import BUILTIN_PREDICATES, Predicate


def _seed_mixed(db: Session, session_id: int) -> None:
    """One of every discrepancy kind except new_object."""
    acme = Client(wialon_id="W1", name="Acme")
    globex = Client(wialon_id="W2", name="Globex")
    db.add_all([acme, globex])
    db.commit()
    db.add(WialonObject(wialon_id="U1", name="Truck 1", client_id=acme.id))
    db.add_all([
        StagingClient(session_id=session_id, external_id="W1", name="Acme Ltd"),
        StagingClient(session_id=session_id, external_id="W2", name="globex"),
        StagingClient(session_id=session_id, external_id="W3", name="Initech"),
        StagingObject(session_id=session_id, external_id="U1", name="Truck 01", owner_external_id="W2"),
        StagingObject(session_id=session_id, external_id="U2", name="Van", owner_external_id="W1"),
    ])
    db.commit()


def _boom(db, session_id):
    raise RuntimeError("predicate exploded")


def _signature(rows):
    return sorted(
        (d.discrepancy_type, d.external_entity_data["wialon_id"], d.local_entity_id, d.suggested_client_id)
        for d in rows
    )


class TestEvaluate:
    def test_counts_per_predicate(self, test_session, sync_session):
        _seed_mixed(test_session, sync_session.id)

        report = evaluate(test_session, sync_session.id)
        test_session.commit()

        found = {o.name: o.found for o in report.outcomes}
        assert found == {
            "new_clients": 1,
            "new_objects": 1,
            "client_name_changes": 1,
            "object_name_changes": 1,
            "owner_changes": 1,
        }
        assert report.total == 5
        assert report.failed == []
        stored = test_session.exec(select(SyncDiscrepancy)).all()
        assert len(stored) == 5
        assert all(d.session_id == sync_session.id for d in stored)

    def test_order_does_not_change_result(self, engine, test_session, sync_session):
        session_id = sync_session.id
        _seed_mixed(test_session, session_id)

        baseline = None
        for order in itertools.permutations(BUILTIN_PREDICATES):
            with Session(engine) as db:
                report = evaluate(db, session_id, order)
                signature = _signature(report.discrepancies)
                db.rollback()
            if baseline is None:
                baseline = signature
            assert signature == baseline

    def test_failing_predicate_is_isolated(self, test_session, sync_session):
        _seed_mixed(test_session, sync_session.id)
        predicates = (
            BUILTIN_PREDICATES[0],
            Predicate("exploding", "client", _boom),
            BUILTIN_PREDICATES[2],
        )

        report = evaluate(test_session, sync_session.id, predicates)
        test_session.commit()

        assert [o.name for o in report.failed] == ["exploding"]
        assert report.failed[0].found == 0
        assert "predicate exploded" in report.failed[0].error
        assert report.total == 2
        types = sorted(d.discrepancy_type for d in test_session.exec(select(SyncDiscrepancy)))
        assert types == ["client_name_changed", "new_client"]

    def test_empty_staging_finds_nothing(self, test_session, sync_session):
        report = evaluate(test_session, sync_session.id)
        assert report.total == 0
        assert len(report.outcomes) == len(BUILTIN_PREDICATES)
