"""
Async client for the Wialon Remote API (``/wialon/ajax.html``).

Every call is a ``svc=<service>`` request with a JSON-encoded ``params``
argument. Wialon answers HTTP 200 even on failure and signals errors with
an ``{"error": <code>, "reason": ...}`` body, so each response is checked
for that marker before use.

Authentication uses a long-lived API token (``token/login``), which yields
a session id (``eid``) passed as ``sid`` on subsequent calls.
"""
import json
import logging
from typing import Any, Dict, List, Optional

import httpx

from wialon_sync.config import get_settings

logger = logging.getLogger(__name__)

AJAX_PATH = "/wialon/ajax.html"

# Item types and data flags for core/search_items
CLIENT_ITEMS_TYPE = "avl_resource"
CLIENT_FLAGS = 0x1 | 0x4  # base + billing
OBJECT_ITEMS_TYPE = "avl_unit"
OBJECT_FLAGS = 0x1 | 0x100  # base + advanced properties (uid, phones)
USER_DETAIL_FLAGS = 0x1


# ── Exceptions ────────────────────────────────────────────────────────────────

class IntegrationUnavailableError(RuntimeError):
    """Raised when the Wialon integration is not configured or unreachable."""


class ExternalFetchError(RuntimeError):
    """Raised when Wialon answers with an error payload."""

    def __init__(self, message: str, *, code: Optional[int] = None, reason: Optional[str] = None):
        super().__init__(message)
        self.code = code
        self.reason = reason


class AuthenticationRejectedError(IntegrationUnavailableError, ExternalFetchError):
    """Raised when Wialon rejects the configured token."""

    def __init__(self, message: str, *, code: Optional[int] = None, reason: Optional[str] = None):
        ExternalFetchError.__init__(self, message, code=code, reason=reason)


# ── Main class ────────────────────────────────────────────────────────────────

class WialonClient:
    """
    Thin async wrapper over the Wialon Remote API.

    Usage:
        async with WialonClient() as client:
            await client.login()
            units = await client.search_items(OBJECT_ITEMS_TYPE, OBJECT_FLAGS)
    """

    def __init__(
        self,
        api_url: Optional[str] = None,
        token: Optional[str] = None,
        *,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        """
        Args:
            api_url: Wialon hosting base URL. Defaults to settings.wialon_api_url.
            token: Wialon API token. Defaults to settings.wialon_token.
            timeout: Per-request timeout in seconds.
            transport: Optional httpx transport (tests use httpx.MockTransport).
        """
        settings = get_settings()
        self.api_url = (api_url if api_url is not None else settings.wialon_api_url).rstrip("/")
        self._token = token if token is not None else settings.wialon_token
        self._timeout = timeout if timeout is not None else settings.wialon_timeout_seconds
        self._transport = transport
        self._http: Optional[httpx.AsyncClient] = None
        self.sid: Optional[str] = None

    async def __aenter__(self) -> "WialonClient":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    async def close(self) -> None:
        if self._http is not None:
            await self._http.aclose()
            self._http = None

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self._timeout,
                transport=self._transport,
                headers={"User-Agent": "wialon-sync/0.1"},
            )
        return self._http

    async def _call(self, svc: str, params: Dict[str, Any], *, with_sid: bool = True) -> Any:
        """POST one svc call and return the decoded body.

        Raises:
            IntegrationUnavailableError: on transport failure or a non-JSON body.
            ExternalFetchError: if Wialon returns an error payload.
        """
        form = {"svc": svc, "params": json.dumps(params)}
        if with_sid and self.sid:
            form["sid"] = self.sid

        try:
            response = await self._client().post(AJAX_PATH, data=form)
            response.raise_for_status()
            body = response.json()
        except (httpx.HTTPError, ValueError) as exc:
            raise IntegrationUnavailableError(f"Wialon request {svc} failed: {exc}") from exc

        if isinstance(body, dict) and body.get("error"):
            code = body.get("error")
            reason = body.get("reason") or body.get("error_text") or "Unknown error"
            raise ExternalFetchError(
                f"Wialon {svc} returned error {code}: {reason}", code=code, reason=reason
            )
        return body

    async def login(self) -> str:
        """
        Authenticate with the configured token and remember the session id.

        Returns:
            The Wialon session id (eid).

        Raises:
            IntegrationUnavailableError: if URL or token is not configured.
            AuthenticationRejectedError: if Wialon rejects the token.
        """
        if not self.api_url or not self._token:
            raise IntegrationUnavailableError("Wialon integration not configured")

        try:
            body = await self._call("token/login", {"token": self._token}, with_sid=False)
        except ExternalFetchError as exc:
            raise AuthenticationRejectedError(
                f"Wialon authorization failed: {exc.reason}", code=exc.code, reason=exc.reason
            ) from exc

        eid = body.get("eid") if isinstance(body, dict) else None
        if not eid:
            raise AuthenticationRejectedError("Wialon authorization failed: no session id in response")
        self.sid = eid
        logger.info("Wialon login succeeded for %s", self.api_url)
        return eid

    async def search_items(self, items_type: str, flags: int) -> List[Dict[str, Any]]:
        """Fetch every item of one type (``from=0, to=0`` means all)."""
        params = {
            "spec": {
                "itemsType": items_type,
                "propName": "sys_name",
                "propValueMask": "*",
                "sortType": "sys_name",
            },
            "force": 1,
            "flags": flags,
            "from": 0,
            "to": 0,
        }
        body = await self._call("core/search_items", params)
        return list(body.get("items") or [])

    async def search_item(self, item_id: int, flags: int = USER_DETAIL_FLAGS) -> Optional[Dict[str, Any]]:
        """Fetch one item by id. Returns None if the body has no item."""
        body = await self._call("core/search_item", {"id": item_id, "flags": flags})
        return body.get("item")

    async def get_clients(self) -> List[Dict[str, Any]]:
        return await self.search_items(CLIENT_ITEMS_TYPE, CLIENT_FLAGS)

    async def get_objects(self) -> List[Dict[str, Any]]:
        return await self.search_items(OBJECT_ITEMS_TYPE, OBJECT_FLAGS)
