"""Request/response client for the hub's REST API.

Every call goes to ``{base_url}/api/{path}`` and carries the same auth
header as the event stream.  Failures are classified::

    transport failure (connect, timeout, reset)  → NetworkError
    non-2xx status                               → ResponseStatusError
    2xx, body is not JSON / not the right shape  → DecodeError

There is no caching, retrying or request coalescing: two identical
concurrent calls are sent independently.
"""

from __future__ import annotations

import logging
import threading
from datetime import date
from typing import Any, Callable, Optional, TypeVar

import httpx
import orjson

from ha_remote.config import ConnectionConfig
from ha_remote.errors import DecodeError, NetworkError, ResponseStatusError
from ha_remote.models import ConfigInfo, Entity, HistoryRecord, ServiceDescriptor, StatusInfo

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Longest body excerpt kept on errors and in log lines.
MAX_BODY_EXCERPT = 512


class PendingRequestTracker:
    """Remembers the path of the most recently issued POST.

    Nothing in this package reads it back; it is kept for diagnostics and
    is lock-protected so concurrent writers never interleave.
    """

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._path: Optional[str] = None

    def record(self, path: str) -> None:
        with self._lock:
            self._path = path

    @property
    def last_path(self) -> Optional[str]:
        with self._lock:
            return self._path


class RequestClient:
    """Authenticated GET/POST against the hub.

    Parameters
    ----------
    config:
        Base URL and access token.
    timeout:
        Per-request timeout in seconds.
    client:
        Optional pre-built :class:`httpx.AsyncClient` (tests inject one with
        an ``httpx.MockTransport``).  A client passed in is not closed by
        :meth:`aclose`.
    """

    def __init__(
        self,
        config: ConnectionConfig,
        timeout: float = 10.0,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self._config = config
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._tracker = PendingRequestTracker()

    @property
    def config(self) -> ConnectionConfig:
        return self._config

    @property
    def last_post_path(self) -> Optional[str]:
        return self._tracker.last_path

    async def aclose(self) -> None:
        if self._owns_client:
            await self._client.aclose()

    async def __aenter__(self) -> "RequestClient":
        return self

    async def __aexit__(self, *_: object) -> None:
        await self.aclose()

    # ── raw JSON calls ──────────────────────────────────────────────

    async def get(self, path: str) -> Any:
        """GET *path* (relative to ``/api/``) and return the decoded JSON."""
        return await self._request("GET", path)

    async def post(self, path: str, body: Optional[dict[str, Any]] = None) -> Any:
        """POST *body* as JSON to *path* and return the decoded JSON."""
        self._tracker.record(path)
        return await self._request("POST", path, body if body is not None else {})

    async def get_decoded(self, path: str, decode: Callable[[Any], T]) -> T:
        """GET *path* and decode it with *decode* (e.g. ``Entity.from_json``)."""
        return _decode(path, await self.get(path), decode)

    async def get_decoded_list(self, path: str, decode: Callable[[Any], T]) -> list[T]:
        """GET *path*, require a JSON array and decode every element."""
        raw = await self.get(path)
        if not isinstance(raw, list):
            raise DecodeError(f"Expected a JSON array from {path}, got {type(raw).__name__}")
        return [_decode(path, item, decode) for item in raw]

    # ── endpoints ───────────────────────────────────────────────────

    async def get_config(self) -> ConfigInfo:
        return await self.get_decoded("config", ConfigInfo.from_json)

    async def get_status(self) -> StatusInfo:
        return await self.get_decoded("config", StatusInfo.from_json)

    async def get_bootstrap(self) -> Any:
        return await self.get("bootstrap")

    async def get_events(self) -> Any:
        return await self.get("events")

    async def get_services(self) -> list[ServiceDescriptor]:
        return await self.get_decoded("services", ServiceDescriptor.list_from_json)

    async def get_history(self) -> Any:
        return await self.get("history")

    async def get_history_period(self, start: date | str) -> list[HistoryRecord]:
        """History since *start* (a date or an ISO-8601 string)."""
        stamp = start.isoformat() if isinstance(start, date) else start
        return await self.get_decoded(f"history/period/{stamp}", HistoryRecord.list_from_json)

    async def get_states(self) -> list[Entity]:
        return await self.get_decoded_list("states", Entity.from_json)

    async def get_state(self, entity_id: str) -> Any:
        return await self.get(f"states/{entity_id}")

    async def get_entity(self, entity_id: str) -> Entity:
        return await self.get_decoded(f"states/{entity_id}", Entity.from_json)

    async def get_error_log(self) -> Any:
        return await self.get("error_log")

    # ── internal ────────────────────────────────────────────────────

    async def _request(self, method: str, path: str, body: Optional[dict] = None) -> Any:
        url = self._config.api_url + path.lstrip("/")
        headers = self._config.headers()
        content = None
        if body is not None:
            headers["Content-Type"] = "application/json"
            content = orjson.dumps(body)

        logger.debug("%s %s", method, url)
        try:
            response = await self._client.request(method, url, headers=headers, content=content)
        except httpx.TransportError as exc:
            logger.warning("Error on %s request to %s: %s", method, path, exc)
            raise NetworkError(f"Cannot reach hub at {url}: {exc}") from exc

        if not response.is_success:
            logger.warning("%s %s returned HTTP %d", method, path, response.status_code)
            raise ResponseStatusError(response.status_code, response.text[:MAX_BODY_EXCERPT])

        try:
            return orjson.loads(response.content)
        except orjson.JSONDecodeError as exc:
            excerpt = response.text[:MAX_BODY_EXCERPT]
            logger.warning("Response to %s %s was not JSON: %r", method, path, excerpt)
            raise DecodeError(f"Response from {path} was not JSON: {exc}", raw=excerpt) from exc


def _decode(path: str, raw: Any, decode: Callable[[Any], T]) -> T:
    try:
        return decode(raw)
    except (KeyError, TypeError, ValueError) as exc:
        raise DecodeError(f"Unexpected response shape from {path}: {exc!r}") from exc
