"""
Built-in comparison predicates between staged Wialon data and local tables.

Each predicate is one query over the staging tables of a single session
joined against the system-of-record, returning unsaved SyncDiscrepancy
rows. Predicates read only staging and local tables, never the
discrepancy queue, so they are independent of each other and of the order
they run in.

Name comparison ignores case and surrounding whitespace. It runs in Python
(``str.casefold``) on the joined pairs because SQLite's ``lower()`` only
folds ASCII and account names are frequently Cyrillic.
"""
from typing import Any, Callable, Dict, List, NamedTuple, Optional

from sqlalchemy import or_
from sqlalchemy.orm import aliased
from sqlmodel import Session, col, select

from wialon_sync.models.fleet import Client, WialonObject
from wialon_sync.models.staging import StagingClient, StagingObject
from wialon_sync.models.sync import DiscrepancyType, SyncDiscrepancy

ENTITY_CLIENT = "client"
ENTITY_OBJECT = "object"

ACTION_ASSIGN_TO_EXISTING_CLIENT = "assign to existing client"
ACTION_CHANGE_OWNER = "change owner"


class Predicate(NamedTuple):
    name: str
    entity_type: str
    find: Callable[[Session, int], List[SyncDiscrepancy]]


# ── Snapshots ─────────────────────────────────────────────────────────────────

def staged_client_snapshot(staged: StagingClient) -> Dict[str, Any]:
    return {
        "wialon_id": staged.external_id,
        "wialon_user_id": staged.external_user_id,
        "name": staged.name,
        "full_name": staged.full_name,
        "description": staged.description,
        "wialon_username": staged.wialon_username,
    }


def staged_object_snapshot(staged: StagingObject) -> Dict[str, Any]:
    return {
        "wialon_id": staged.external_id,
        "name": staged.name,
        "description": staged.description,
        "tracker_id": staged.tracker_id,
        "phone_numbers": list(staged.phone_numbers or []),
        "owner_wialon_id": staged.owner_external_id,
    }


def local_client_snapshot(client: Client) -> Dict[str, Any]:
    return {
        "id": client.id,
        "wialon_id": client.wialon_id,
        "name": client.name,
        "full_name": client.full_name,
        "description": client.description,
        "is_active": client.is_active,
    }


def local_object_snapshot(obj: WialonObject) -> Dict[str, Any]:
    return {
        "id": obj.id,
        "wialon_id": obj.wialon_id,
        "name": obj.name,
        "description": obj.description,
        "tracker_id": obj.tracker_id,
        "client_id": obj.client_id,
        "status": obj.status,
    }


def normalize_name(name: Optional[str]) -> str:
    return (name or "").strip().casefold()


def names_differ(staged_name: Optional[str], local_name: Optional[str]) -> bool:
    """True if two names differ after trimming and case folding."""
    return normalize_name(staged_name) != normalize_name(local_name)


# ── Predicates ────────────────────────────────────────────────────────────────

def find_new_clients(db: Session, session_id: int) -> List[SyncDiscrepancy]:
    """Staged clients whose external id matches no local client."""
    rows = db.exec(
        select(StagingClient)
        .outerjoin(Client, col(Client.wialon_id) == col(StagingClient.external_id))
        .where(StagingClient.session_id == session_id, col(Client.id).is_(None))
        .order_by(StagingClient.id)
    ).all()
    return [
        SyncDiscrepancy(
            session_id=session_id,
            discrepancy_type=DiscrepancyType.NEW_CLIENT.value,
            entity_type=ENTITY_CLIENT,
            external_entity_data=staged_client_snapshot(staged),
            local_entity_data=None,
        )
        for staged in rows
    ]


def find_new_objects(db: Session, session_id: int) -> List[SyncDiscrepancy]:
    """Staged objects with no local match, split by whether the owner is known."""
    owner = aliased(Client)
    rows = db.exec(
        select(StagingObject, owner)
        .outerjoin(WialonObject, col(WialonObject.wialon_id) == col(StagingObject.external_id))
        .outerjoin(owner, owner.wialon_id == col(StagingObject.owner_external_id))
        .where(StagingObject.session_id == session_id, col(WialonObject.id).is_(None))
        .order_by(StagingObject.id)
    ).all()

    found = []
    for staged, known_owner in rows:
        discrepancy = SyncDiscrepancy(
            session_id=session_id,
            discrepancy_type=DiscrepancyType.NEW_OBJECT.value,
            entity_type=ENTITY_OBJECT,
            external_entity_data=staged_object_snapshot(staged),
            local_entity_data=None,
        )
        if known_owner is not None:
            discrepancy.discrepancy_type = DiscrepancyType.NEW_OBJECT_WITH_KNOWN_CLIENT.value
            discrepancy.suggested_client_id = known_owner.id
            discrepancy.suggested_action = ACTION_ASSIGN_TO_EXISTING_CLIENT
        found.append(discrepancy)
    return found


def find_renamed_clients(db: Session, session_id: int) -> List[SyncDiscrepancy]:
    """Matched clients whose staged and local names differ."""
    rows = db.exec(
        select(StagingClient, Client)
        .join(Client, col(Client.wialon_id) == col(StagingClient.external_id))
        .where(StagingClient.session_id == session_id)
        .order_by(StagingClient.id)
    ).all()
    return [
        SyncDiscrepancy(
            session_id=session_id,
            discrepancy_type=DiscrepancyType.CLIENT_NAME_CHANGED.value,
            entity_type=ENTITY_CLIENT,
            external_entity_data=staged_client_snapshot(staged),
            local_entity_data=local_client_snapshot(local),
            local_entity_id=local.id,
        )
        for staged, local in rows
        if names_differ(staged.name, local.name)
    ]


def find_renamed_objects(db: Session, session_id: int) -> List[SyncDiscrepancy]:
    """Matched objects whose staged and local names differ."""
    rows = db.exec(
        select(StagingObject, WialonObject)
        .join(WialonObject, col(WialonObject.wialon_id) == col(StagingObject.external_id))
        .where(StagingObject.session_id == session_id)
        .order_by(StagingObject.id)
    ).all()
    return [
        SyncDiscrepancy(
            session_id=session_id,
            discrepancy_type=DiscrepancyType.OBJECT_NAME_CHANGED.value,
            entity_type=ENTITY_OBJECT,
            external_entity_data=staged_object_snapshot(staged),
            local_entity_data=local_object_snapshot(local),
            local_entity_id=local.id,
        )
        for staged, local in rows
        if names_differ(staged.name, local.name)
    ]


def find_owner_changes(db: Session, session_id: int) -> List[SyncDiscrepancy]:
    """
    Matched objects whose Wialon owner is a different, locally known client.

    The inner join on the owner drops objects whose staged owner resolves
    to no local client: ownership is left alone when it is ambiguous. An
    object without a local owner counts as owned by a different client.
    """
    owner = aliased(Client)
    rows = db.exec(
        select(StagingObject, WialonObject, owner)
        .join(WialonObject, col(WialonObject.wialon_id) == col(StagingObject.external_id))
        .join(owner, owner.wialon_id == col(StagingObject.owner_external_id))
        .where(
            StagingObject.session_id == session_id,
            or_(col(WialonObject.client_id).is_(None), col(WialonObject.client_id) != owner.id),
        )
        .order_by(StagingObject.id)
    ).all()
    return [
        SyncDiscrepancy(
            session_id=session_id,
            discrepancy_type=DiscrepancyType.OWNER_CHANGED.value,
            entity_type=ENTITY_OBJECT,
            external_entity_data=staged_object_snapshot(staged),
            local_entity_data=local_object_snapshot(local),
            local_entity_id=local.id,
            suggested_client_id=new_owner.id,
            suggested_action=ACTION_CHANGE_OWNER,
        )
        for staged, local, new_owner in rows
    ]


BUILTIN_PREDICATES = (
    Predicate("new_clients", ENTITY_CLIENT, find_new_clients),
    Predicate("new_objects", ENTITY_OBJECT, find_new_objects),
    Predicate("client_name_changes", ENTITY_CLIENT, find_renamed_clients),
    Predicate("object_name_changes", ENTITY_OBJECT, find_renamed_objects),
    Predicate("owner_changes", ENTITY_OBJECT, find_owner_changes),
)
