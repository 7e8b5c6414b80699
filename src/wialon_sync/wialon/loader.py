"""
WialonLoader: pulls clients and objects from Wialon into the staging tables.

Flow for one session:
  1. Log "Starting data load from Wialon"
  2. Log in with the configured token
  3. Fetch all account resources → stage StagingClient rows
  4. Fetch all units → stage StagingObject rows

Each entity type is fetched completely before anything is written, and
its rows are committed together, so a failed fetch never leaves a partial
set of rows for that type.

On any exception: write an error SyncLog and re-raise. Marking the
session failed is the caller's job.
"""
import logging
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

from sqlalchemy import delete
from sqlmodel import Session

from wialon_sync.models.staging import StagingClient, StagingObject
from wialon_sync.models.sync import LogLevel
from wialon_sync.sync.sessions import SessionTracker
from wialon_sync.wialon.normalizer import normalize_client, normalize_object

logger = logging.getLogger(__name__)


@dataclass
class LoadStats:
    clients_loaded: int = 0
    objects_loaded: int = 0


class WialonLoader:
    """Stages one complete snapshot of Wialon clients and objects per session."""

    def __init__(self, client, engine, tracker: Optional[SessionTracker] = None, *, fetch_usernames: bool = True):
        """
        Args:
            client: WialonClient instance (or AsyncMock in tests).
            engine: SQLAlchemy engine (SQLModel create_engine result).
            tracker: SessionTracker used for SyncLog entries.
            fetch_usernames: look up each account's user name (one extra
                request per client).
        """
        self.client = client
        self.engine = engine
        self.tracker = tracker or SessionTracker(engine)
        self.fetch_usernames = fetch_usernames

    def clear_staging(self, session_id: int) -> None:
        """Delete any staging rows left for this session. Safe if none exist."""
        with Session(self.engine) as s:
            s.execute(delete(StagingClient).where(StagingClient.session_id == session_id))
            s.execute(delete(StagingObject).where(StagingObject.session_id == session_id))
            s.commit()

    async def load(self, session_id: int) -> LoadStats:
        """
        Authenticate and stage every client and object for the session.

        Raises:
            IntegrationUnavailableError: integration not configured or unreachable.
            ExternalFetchError: Wialon answered with an error payload.
        """
        try:
            self.tracker.log(session_id, LogLevel.INFO, "Starting data load from Wialon")

            await self.client.login()
            self.tracker.log(session_id, LogLevel.INFO, "Wialon authorization successful")

            stats = LoadStats()
            stats.clients_loaded = await self._load_clients(session_id)
            stats.objects_loaded = await self._load_objects(session_id)

            self.tracker.log(
                session_id, LogLevel.INFO, "Data load completed",
                {"clientsLoaded": stats.clients_loaded, "objectsLoaded": stats.objects_loaded},
            )
            return stats

        except Exception as exc:
            self.tracker.log(
                session_id, LogLevel.ERROR, "Failed to load data from Wialon",
                {"error": str(exc), "errorType": type(exc).__name__},
            )
            raise

    # ─── Internal helpers ─────────────────────────────────────────────────────

    async def _load_clients(self, session_id: int) -> int:
        items = await self.client.get_clients()

        rows: List[StagingClient] = []
        usernames_fetched = 0
        for item, fields in self._with_ids(session_id, items, "client", normalize_client):
            if self.fetch_usernames and fields["external_user_id"]:
                fields["wialon_username"] = await self._fetch_username(session_id, item)
                if fields["wialon_username"]:
                    usernames_fetched += 1
            rows.append(StagingClient(session_id=session_id, **fields))

        self._stage(rows)
        self.tracker.log(
            session_id, LogLevel.INFO, f"Loaded {len(rows)} clients from Wialon",
            {
                "totalClients": len(rows),
                "usernamesFetched": usernames_fetched,
                "usernamesNotFetched": len(rows) - usernames_fetched,
            },
        )
        return len(rows)

    async def _load_objects(self, session_id: int) -> int:
        items = await self.client.get_objects()

        rows = [
            StagingObject(session_id=session_id, **fields)
            for _, fields in self._with_ids(session_id, items, "object", normalize_object)
        ]

        self._stage(rows)
        self.tracker.log(
            session_id, LogLevel.INFO, f"Loaded {len(rows)} objects from Wialon",
            {"totalObjects": len(rows)},
        )
        return len(rows)

    async def _fetch_username(self, session_id: int, item: Dict[str, Any]) -> Optional[str]:
        """Best-effort lookup of the account's user name. Never raises."""
        details = {"clientCrt": item.get("crt"), "clientResourceId": item.get("id")}
        try:
            user = await self.client.search_item(int(item["crt"]))
        except Exception as exc:
            self.tracker.log(
                session_id, LogLevel.WARNING,
                f"Error fetching username for client {item.get('nm')}",
                {**details, "error": str(exc)},
            )
            return None

        username = (user or {}).get("nm") or None
        if username is None:
            self.tracker.log(
                session_id, LogLevel.WARNING,
                f"Failed to fetch username for client {item.get('nm')}",
                {**details, "error": "No item data"},
            )
        return username

    def _with_ids(self, session_id: int, items: List[Dict[str, Any]], kind: str, normalize):
        """Yield (item, fields) for items with a usable id; log and skip the rest.

        Zero, negative and blank ids count as missing.
        """
        for item in items:
            fields = normalize(item) if isinstance(item, dict) else None
            if fields and fields["external_id"]:
                yield item, fields
            else:
                self.tracker.log(
                    session_id, LogLevel.WARNING, f"Skipped Wialon {kind} without id",
                    {"item": item if isinstance(item, dict) else repr(item)},
                )

    def _stage(self, rows: list) -> None:
        with Session(self.engine) as s:
            s.add_all(rows)
            s.commit()
