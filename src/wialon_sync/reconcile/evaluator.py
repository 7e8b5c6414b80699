"""
Runs the comparison predicates for one session and queues their findings.

Each predicate runs inside its own SAVEPOINT. A predicate that raises is
rolled back to that savepoint, reported with zero findings, and the
remaining predicates still run. Only an error outside a predicate (the
caller's connection going away) propagates.

New rows are added to the caller's session; committing is the caller's
job so the findings land together with the session's completion.
"""
import logging
from dataclasses import dataclass, field
from typing import List, Optional, Sequence

from sqlmodel import Session

from wialon_sync.models.sync import SyncDiscrepancy
from wialon_sync.reconcile.predicates import BUILTIN_PREDICATES, Predicate

logger = logging.getLogger(__name__)


@dataclass
class PredicateOutcome:
    name: str
    found: int = 0
    error: Optional[str] = None

    @property
    def ok(self) -> bool:
        return self.error is None


@dataclass
class EvaluationReport:
    session_id: int
    outcomes: List[PredicateOutcome] = field(default_factory=list)
    discrepancies: List[SyncDiscrepancy] = field(default_factory=list)

    @property
    def total(self) -> int:
        return sum(o.found for o in self.outcomes)

    @property
    def failed(self) -> List[PredicateOutcome]:
        return [o for o in self.outcomes if not o.ok]


def evaluate(
    db: Session,
    session_id: int,
    predicates: Sequence[Predicate] = BUILTIN_PREDICATES,
) -> EvaluationReport:
    """
    Compare the session's staged data with local tables.

    Args:
        db: Open session; findings are added and flushed, not committed.
        session_id: Sync session whose staging rows are compared.
        predicates: Predicates to run (defaults to the five built-ins).

    Returns:
        EvaluationReport with per-predicate outcomes and the queued rows.
    """
    report = EvaluationReport(session_id=session_id)

    for predicate in predicates:
        outcome = PredicateOutcome(name=predicate.name)
        try:
            with db.begin_nested():
                found = predicate.find(db, session_id)
                db.add_all(found)
        except Exception as exc:
            logger.error(
                "Predicate %s failed for session %s: %s", predicate.name, session_id, exc
            )
            outcome.error = str(exc)
        else:
            outcome.found = len(found)
            report.discrepancies.extend(found)
            logger.info(
                "Predicate %s found %d discrepancies for session %s",
                predicate.name, outcome.found, session_id,
            )
        report.outcomes.append(outcome)

    return report
