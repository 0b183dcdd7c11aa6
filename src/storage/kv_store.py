# src/storage/kv_store.py

"""Key-value store adapters holding the price history documents.

The production backend is an Upstash (Vercel KV) Redis instance
reached over its REST API.  Every document is stored whole as a
JSON string under a fixed key; there are no transactions, so the
last ``set`` to complete wins.
"""

import copy
import json
import logging
from typing import Any, Protocol, runtime_checkable

from curl_cffi.requests import AsyncSession

from src.config.settings import Settings

logger = logging.getLogger("gersang_market.kv")


class KVReadError(Exception):
    """The backend could not be read; distinct from a missing key."""


@runtime_checkable
class KVStore(Protocol):
    """Document-level get/set contract shared by all backends."""

    @property
    def available(self) -> bool:
        """Whether the backend is configured and usable."""
        ...

    async def get(self, key: str) -> dict[str, Any] | None:
        """Return the document stored under *key*, or ``None``.

        Raises :class:`KVReadError` when the backend failed to answer.
        """
        ...

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        """Store *document* under *key*. Returns ``True`` on success."""
        ...


class UpstashKVStore:
    """Upstash REST client with lazy, once-only session creation.

    Without both an endpoint URL and an access token the store is
    unavailable: reads return ``None`` and writes return ``False``
    without touching the network.  A failed read raises
    :class:`KVReadError`; failed writes and undecodable values are
    logged and degrade to ``False`` and ``None``.
    """

    def __init__(
        self,
        url: str | None = None,
        token: str | None = None,
        timeout: int | None = None,
    ) -> None:
        self._url = (
            url if url is not None else Settings.KV_REST_API_URL
        )
        self._token = (
            token if token is not None else Settings.KV_REST_API_TOKEN
        )
        self._timeout = timeout or Settings.KV_REQUEST_TIMEOUT
        self._session: AsyncSession | None = None
        self._warned_unavailable = False

    @property
    def available(self) -> bool:
        return bool(self._url and self._token)

    def _get_session(self) -> AsyncSession:
        """Create the HTTP session on first use."""
        if self._session is None:
            self._session = AsyncSession()
            logger.debug("KV session opened for %s", self._url)
        return self._session

    def _note_unavailable(self) -> None:
        if not self._warned_unavailable:
            logger.info(
                "KV credentials not configured; history is disabled",
            )
            self._warned_unavailable = True

    async def _command(self, *args: str) -> tuple[bool, Any]:
        """Run one Redis command. Returns ``(ok, result)``."""
        session = self._get_session()
        resp = await session.post(
            str(self._url),
            json=list(args),
            headers={"Authorization": f"Bearer {self._token}"},
            timeout=self._timeout,
        )
        if resp.status_code != 200:
            logger.warning(
                "KV %s %s failed: HTTP %d",
                args[0],
                args[1] if len(args) > 1 else "",
                resp.status_code,
            )
            return False, None
        payload: dict[str, Any] = resp.json()
        if "error" in payload:
            logger.warning(
                "KV %s returned error: %s", args[0], payload["error"],
            )
            return False, None
        return True, payload.get("result")

    async def get(self, key: str) -> dict[str, Any] | None:
        if not self.available:
            self._note_unavailable()
            return None
        try:
            ok, result = await self._command("GET", key)
        except Exception as exc:
            logger.error(
                "KV read of '%s' failed: %s", key, exc, exc_info=True,
            )
            raise KVReadError(key) from exc
        if not ok:
            raise KVReadError(key)
        if result is None:
            return None
        try:
            document = (
                json.loads(result) if isinstance(result, str) else result
            )
        except ValueError as exc:
            logger.warning(
                "KV value under '%s' is not JSON: %s", key, exc,
            )
            return None
        if not isinstance(document, dict):
            logger.warning(
                "KV value under '%s' is not a document (%s)",
                key,
                type(document).__name__,
            )
            return None
        return document

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        if not self.available:
            self._note_unavailable()
            return False
        try:
            ok, _ = await self._command(
                "SET", key, json.dumps(document, ensure_ascii=False),
            )
        except Exception as exc:
            logger.error(
                "KV write of '%s' failed: %s", key, exc, exc_info=True,
            )
            return False
        if ok:
            logger.debug("KV wrote '%s'", key)
        return ok

    async def close(self) -> None:
        """Release the HTTP session if one was opened."""
        if self._session is not None:
            await self._session.close()
            self._session = None


class MemoryKVStore:
    """In-process store implementing the same contract.

    Documents are deep-copied on the way in and out, so a caller
    mutating a document it read never changes the stored value.
    """

    def __init__(self) -> None:
        self._data: dict[str, dict[str, Any]] = {}
        self.set_calls = 0

    @property
    def available(self) -> bool:
        return True

    async def get(self, key: str) -> dict[str, Any] | None:
        document = self._data.get(key)
        return copy.deepcopy(document) if document is not None else None

    async def set(self, key: str, document: dict[str, Any]) -> bool:
        self._data[key] = copy.deepcopy(document)
        self.set_calls += 1
        return True

    async def close(self) -> None:
        self._data.clear()
