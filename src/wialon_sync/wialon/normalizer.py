"""
Wialon item normalizer.

Converts raw item dicts from ``core/search_items`` into field dicts that
map directly onto the staging models. No DB access here; the loader
handles persistence.

Field extraction is best-effort: Wialon only returns a property when the
matching data flag was requested and the item has it set, and accounts
often carry odd values. Every extractor returns a default (None or an
empty list) instead of raising, so a single malformed item never aborts
a load.

Relevant item keys:
  - id    item id (int)
  - nm    name
  - desc  description (not always present)
  - crt   creator user id
  - bact  billing account (resource) id the unit belongs to
  - uid   unique hardware id of the tracker (units, flag 0x100)
  - ph    phone number of the tracker SIM (units, flag 0x100)
  - ph2   second phone number (units, flag 0x100)
"""
import logging
from typing import Any, Dict, List, Optional

logger = logging.getLogger(__name__)

UNKNOWN_CLIENT_NAME = "Unknown Client"
UNKNOWN_OBJECT_NAME = "Unknown Object"

_PHONE_KEYS = ("ph", "ph2", "phone")


def _as_id(value: Any) -> Optional[str]:
    """Stringify a Wialon id. Returns None for missing, zero or negative ids."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, (int, float)):
        return str(int(value)) if value > 0 else None
    text = str(value).strip()
    return text or None


def extract_phone_numbers(item: Dict[str, Any]) -> List[str]:
    """Return the distinct non-empty phone numbers of a unit, in key order."""
    try:
        phones: List[str] = []
        for key in _PHONE_KEYS:
            value = item.get(key)
            if value is None:
                continue
            phone = str(value).strip()
            if phone and phone not in phones:
                phones.append(phone)
        return phones
    except Exception as exc:
        logger.warning("Could not extract phone numbers from item %r: %s", _safe_id(item), exc)
        return []


def extract_tracker_id(item: Dict[str, Any]) -> Optional[str]:
    """Return the tracker's unique id (``uid``), or None."""
    try:
        value = item.get("uid") or item.get("trackerId")
        if value is None:
            return None
        tracker_id = str(value).strip()
        return tracker_id or None
    except Exception as exc:
        logger.warning("Could not extract tracker id from item %r: %s", _safe_id(item), exc)
        return None


def extract_owner_id(item: Dict[str, Any]) -> Optional[str]:
    """Return the external id of the account owning a unit.

    The billing account (``bact``) is the account resource the unit is
    billed to; the creator (``crt``) is used when billing data is absent.
    """
    try:
        return _as_id(item.get("bact")) or _as_id(item.get("crt"))
    except Exception as exc:
        logger.warning("Could not extract owner from item %r: %s", _safe_id(item), exc)
        return None


def _safe_id(item: Any) -> Any:
    try:
        return item.get("id")
    except Exception:
        return None


def _text(item: Dict[str, Any], key: str) -> Optional[str]:
    value = item.get(key)
    if value is None:
        return None
    value = str(value).strip()
    return value or None


def normalize_client(item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an ``avl_resource`` item into StagingClient fields.

    Returns:
        Dict with keys matching StagingClient columns (minus session_id and
        wialon_username, which the loader fills in).
    """
    name = _text(item, "nm")
    return {
        "external_id": _as_id(item.get("id")) or "",
        "external_user_id": _as_id(item.get("crt")),
        "name": name or UNKNOWN_CLIENT_NAME,
        "full_name": name,
        "description": _text(item, "desc"),
        "raw_data": item,
    }


def normalize_object(item: Dict[str, Any]) -> Dict[str, Any]:
    """
    Normalize an ``avl_unit`` item into StagingObject fields.

    Returns:
        Dict with keys matching StagingObject columns (minus session_id).
    """
    return {
        "external_id": _as_id(item.get("id")) or "",
        "name": _text(item, "nm") or UNKNOWN_OBJECT_NAME,
        "description": _text(item, "desc"),
        "tracker_id": extract_tracker_id(item),
        "phone_numbers": extract_phone_numbers(item),
        "owner_external_id": extract_owner_id(item),
        "raw_data": item,
    }
