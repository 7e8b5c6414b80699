"""
Optional write-back of approved discrepancies to the local tables.

Disabled by default (``SYNC_APPLY_APPROVED_CORRECTIONS``): approving a
discrepancy then only records the decision. When enabled, each approved
row is applied inside its own SAVEPOINT; a correction that cannot be
applied is logged and skipped without touching the others or the
approval itself.
"""
import logging
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional

from sqlmodel import Session, select

from wialon_sync.db.types import utcnow
from wialon_sync.models.fleet import Client, WialonObject
from wialon_sync.models.sync import DiscrepancyType, SyncDiscrepancy

logger = logging.getLogger(__name__)


class CorrectionError(RuntimeError):
    """Raised when an approved discrepancy cannot be applied."""


@dataclass
class CorrectionReport:
    applied: List[int] = field(default_factory=list)
    skipped: Dict[int, str] = field(default_factory=dict)


def _add_client(db: Session, d: SyncDiscrepancy) -> None:
    data = d.external_entity_data
    db.add(
        Client(
            wialon_id=data.get("wialon_id"),
            name=data.get("name"),
            full_name=data.get("full_name") or data.get("name"),
            description=data.get("description"),
            is_active=True,
        )
    )


def _add_object(db: Session, d: SyncDiscrepancy) -> None:
    data = d.external_entity_data
    client_id = d.suggested_client_id
    if client_id is None and data.get("owner_wialon_id"):
        owner = db.exec(
            select(Client).where(Client.wialon_id == data["owner_wialon_id"])
        ).first()
        client_id = owner.id if owner else None
    if client_id is None:
        raise CorrectionError("No local client found for the object")

    db.add(
        WialonObject(
            wialon_id=data.get("wialon_id"),
            name=data.get("name"),
            description=data.get("description"),
            tracker_id=data.get("tracker_id"),
            client_id=client_id,
            status="active",
        )
    )


def _rename_client(db: Session, d: SyncDiscrepancy) -> None:
    client = db.get(Client, d.local_entity_id) if d.local_entity_id else None
    if client is None:
        raise CorrectionError("Local client no longer exists")
    client.name = d.external_entity_data.get("name")
    client.updated_at = utcnow()
    db.add(client)


def _rename_object(db: Session, d: SyncDiscrepancy) -> None:
    obj = db.get(WialonObject, d.local_entity_id) if d.local_entity_id else None
    if obj is None:
        raise CorrectionError("Local object no longer exists")
    obj.name = d.external_entity_data.get("name")
    obj.updated_at = utcnow()
    db.add(obj)


def _change_owner(db: Session, d: SyncDiscrepancy) -> None:
    if d.suggested_client_id is None:
        raise CorrectionError("No new owner suggested")
    obj = db.get(WialonObject, d.local_entity_id) if d.local_entity_id else None
    if obj is None:
        raise CorrectionError("Local object no longer exists")
    obj.client_id = d.suggested_client_id
    obj.updated_at = utcnow()
    db.add(obj)


_APPLIERS: Dict[str, Callable[[Session, SyncDiscrepancy], None]] = {
    DiscrepancyType.NEW_CLIENT.value: _add_client,
    DiscrepancyType.NEW_OBJECT.value: _add_object,
    DiscrepancyType.NEW_OBJECT_WITH_KNOWN_CLIENT.value: _add_object,
    DiscrepancyType.CLIENT_NAME_CHANGED.value: _rename_client,
    DiscrepancyType.OBJECT_NAME_CHANGED.value: _rename_object,
    DiscrepancyType.OWNER_CHANGED.value: _change_owner,
}


def apply_corrections(db: Session, discrepancies: List[SyncDiscrepancy]) -> CorrectionReport:
    """Apply approved discrepancies to the local tables (flushed, not committed)."""
    report = CorrectionReport()
    for d in discrepancies:
        applier: Optional[Callable] = _APPLIERS.get(d.discrepancy_type)
        if applier is None:
            report.skipped[d.id] = f"No correction for type {d.discrepancy_type}"
            continue
        try:
            with db.begin_nested():
                applier(db, d)
        except Exception as exc:
            logger.warning("Could not apply discrepancy %s (%s): %s", d.id, d.discrepancy_type, exc)
            report.skipped[d.id] = str(exc)
        else:
            report.applied.append(d.id)
    return report
