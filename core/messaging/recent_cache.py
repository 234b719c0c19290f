"""Recent-conversations cache (TTL, default 5 minutes).

Read far more often than it changes, so brief staleness is fine; callers
``invalidate()`` whenever a send/receive may reorder "most recently
active". Failed fetches are never cached.
"""
from __future__ import annotations

import asyncio
import logging
import time
from datetime import datetime, timezone
from typing import Awaitable, Callable, List

from core import metrics
from core.errors import map_exception
from core.eventbus import EventBus
from core.events import RecentChatsInvalidated, publish
from core.messaging.types import CacheResult, RecentConversation

_log = logging.getLogger("fanchat.recent")

RecentFetcher = Callable[[], Awaitable[List[RecentConversation]]]

DEFAULT_TTL_S = 5 * 60
DEFAULT_MAX_ENTRIES = 10

_EPOCH = datetime.min.replace(tzinfo=timezone.utc)


def _sort_key(chat: RecentConversation) -> datetime:
    # timestamps arrive UTC-normalised from the model
    return chat.last_message_time or _EPOCH


def normalize_recent(
    chats: List[RecentConversation], max_entries: int
) -> List[RecentConversation]:
    """Most-recent first, one entry per counterpart, at most max_entries."""
    ordered = sorted(chats, key=_sort_key, reverse=True)
    seen: set[str] = set()
    out: List[RecentConversation] = []
    for chat in ordered:
        if chat.counterpart.id in seen:
            continue
        seen.add(chat.counterpart.id)
        out.append(chat)
        if len(out) >= max_entries:
            break
    return out


class RecentConversationsCache:
    def __init__(
        self,
        fetch_recent: RecentFetcher,
        ttl_s: float = DEFAULT_TTL_S,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        clock: Callable[[], float] = time.monotonic,
        events: EventBus | None = None,
    ) -> None:
        self._fetch = fetch_recent
        self.ttl_s = ttl_s
        self.max_entries = max_entries
        self._clock = clock
        self._events = events
        self._data: List[RecentConversation] | None = None
        self._loaded_at: float | None = None
        self._generation = 0
        self._pending: asyncio.Task | None = None

    def get(self) -> List[RecentConversation] | None:
        if self._data is None or self._loaded_at is None:
            return None
        if self._clock() - self._loaded_at >= self.ttl_s:
            return None
        return list(self._data)

    def age(self) -> float | None:
        if self._loaded_at is None:
            return None
        return self._clock() - self._loaded_at

    async def load(self) -> CacheResult[RecentConversation]:
        cached = self.get()
        if cached is not None:
            metrics.inc_recent_cache("hit")
            return CacheResult(cached, from_cache=True)
        if self._pending is not None and not self._pending.done():
            metrics.inc_recent_cache("shared")
            data = await asyncio.shield(self._pending)
            return CacheResult(list(data), from_cache=False)
        metrics.inc_recent_cache("miss")
        self._pending = asyncio.ensure_future(self._refresh())
        data = await asyncio.shield(self._pending)
        return CacheResult(list(data), from_cache=False)

    async def _refresh(self) -> List[RecentConversation]:
        generation = self._generation
        try:
            fetched = await self._fetch()
        except Exception as e:  # noqa: BLE001
            code = map_exception(e, "fetch")
            metrics.inc(
                "recent_chats_fetch_errors_total", {"error_type": code}
            )
            _log.warning(
                "recent chats fetch failed error_type=%s err=%s", code, e
            )
            return []
        chats = normalize_recent(list(fetched), self.max_entries)
        if generation == self._generation:
            self._data = chats
            self._loaded_at = self._clock()
        else:
            _log.debug("recent chats invalidated during fetch; not cached")
        return chats

    def invalidate(self, reason: str | None = None) -> None:
        self._data = None
        self._loaded_at = None
        self._generation += 1
        self._pending = None
        publish(self._events, RecentChatsInvalidated(reason=reason))


__all__ = [
    "RecentConversationsCache",
    "RecentFetcher",
    "normalize_recent",
    "DEFAULT_TTL_S",
    "DEFAULT_MAX_ENTRIES",
]
