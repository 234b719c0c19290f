"""REST collaborators and the persisted auth token.

``MessagingApiClient`` wraps the server's message endpoints with httpx:
    GET /api/messages/history/{id} -> {success, messages}
    GET /api/messages/recent       -> {success, recentChats}
    GET /api/messages/unseen       -> {success, unseenMessages}
"""
from __future__ import annotations

import logging
from pathlib import Path
from typing import Any, List, Protocol

import httpx

from core.config.schemas.messaging import ApiConfig
from core.messaging.exceptions import FetchError
from core.messaging.types import Message, RecentConversation

_log = logging.getLogger("fanchat.client")


class TokenStore(Protocol):  # pragma: no cover
    def load(self) -> str | None:
        ...

    def save(self, token: str) -> None:
        ...

    def clear(self) -> None:
        ...


class MemoryTokenStore:
    def __init__(self, token: str | None = None) -> None:
        self._token = token

    def load(self) -> str | None:
        return self._token

    def save(self, token: str) -> None:
        self._token = token

    def clear(self) -> None:
        self._token = None


class FileTokenStore:
    """Access token persisted as a single-line file (0600)."""

    def __init__(self, path: str | Path) -> None:
        self.path = Path(path).expanduser()

    def load(self) -> str | None:
        try:
            token = self.path.read_text(encoding="utf-8").strip()
        except FileNotFoundError:
            return None
        except OSError as e:
            _log.warning("token file unreadable path=%s err=%s", self.path, e)
            return None
        return token or None

    def save(self, token: str) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)
        self.path.write_text(token.strip() + "\n", encoding="utf-8")
        try:
            self.path.chmod(0o600)
        except OSError:  # pragma: no cover - platform dependent
            pass

    def clear(self) -> None:
        self.path.unlink(missing_ok=True)


class MessagingApiClient:
    def __init__(
        self,
        config: ApiConfig,
        token_store: TokenStore,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._token_store = token_store
        self._http = httpx.AsyncClient(
            base_url=config.base_url.rstrip("/"),
            timeout=config.timeout_s,
            transport=transport,
        )

    def _headers(self) -> dict[str, str]:
        token = self._token_store.load()
        return {"Authorization": f"Bearer {token}"} if token else {}

    async def _get(self, path: str, key: str) -> List[Any]:
        try:
            resp = await self._http.get(path, headers=self._headers())
        except httpx.HTTPError as e:
            raise FetchError(f"GET {path} failed: {e}") from e
        if resp.is_error:
            raise FetchError(
                f"GET {path} -> HTTP {resp.status_code}",
                status_code=resp.status_code,
            )
        try:
            body = resp.json()
        except ValueError as e:
            raise FetchError(f"GET {path}: invalid JSON body") from e
        if not isinstance(body, dict) or not body.get("success"):
            err = body.get("error") if isinstance(body, dict) else None
            raise FetchError(f"GET {path}: {err or 'success=false'}")
        items = body.get(key) or []
        if not isinstance(items, list):
            raise FetchError(f"GET {path}: '{key}' is not a list")
        return items

    async def fetch_history(self, counterpart_id: str) -> List[Message]:
        items = await self._get(
            f"/api/messages/history/{counterpart_id}", "messages"
        )
        return [Message.parse(m) for m in items]

    async def fetch_recent(self) -> List[RecentConversation]:
        items = await self._get("/api/messages/recent", "recentChats")
        return [RecentConversation.model_validate(c) for c in items]

    async def fetch_unseen(self) -> List[Message]:
        items = await self._get("/api/messages/unseen", "unseenMessages")
        return [Message.parse(m) for m in items]

    async def aclose(self) -> None:
        await self._http.aclose()


__all__ = [
    "TokenStore",
    "MemoryTokenStore",
    "FileTokenStore",
    "MessagingApiClient",
]
