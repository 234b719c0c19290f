"""Message cache store: the single source of truth per counterpart.

Each entry is an ordered list of Message, deduplicated by id and sorted
ascending by ``created_at`` (stable, so ties keep insertion order). Every
UI surface reads through the store; nobody else mutates entries.

Stale fetches: each history fetch takes a per-counterpart sequence number.
A response whose number is no longer the latest (a newer fetch was issued,
or the entry was cleared meanwhile) is discarded. Messages appended while a
fetch is in flight are merged into the fetched list.

An entry only counts as a cache hit once a history fetch for it has
succeeded. Live messages appended before that (the fetch failed or never
ran) are kept and merged into the next successful fetch.
"""
from __future__ import annotations

import logging
from operator import attrgetter
from typing import Awaitable, Callable, Dict, List

from core import metrics
from core.errors import map_exception
from core.eventbus import EventBus, Subscription
from core.events import ConversationUpdated, HistoryLoaded, publish
from core.messaging.types import CacheResult, Message

_log = logging.getLogger("fanchat.store")

HistoryFetcher = Callable[[str], Awaitable[List[Message]]]
Listener = Callable[[List[Message]], None]

_by_time = attrgetter("created_at")


def _merge(base: List[Message], extra: List[Message]) -> List[Message]:
    seen = {m.id for m in base}
    merged = list(base)
    for m in extra:
        if m.id not in seen:
            seen.add(m.id)
            merged.append(m)
    merged.sort(key=_by_time)
    return merged


class MessageCacheStore:
    def __init__(
        self, fetch_history: HistoryFetcher, events: EventBus | None = None
    ) -> None:
        self._fetch = fetch_history
        self._events = events
        self._entries: Dict[str, List[Message]] = {}
        self._ids: Dict[str, set[str]] = {}
        self._listeners = EventBus("store")
        self._seq: Dict[str, int] = {}
        self._inflight: Dict[str, List[Message]] = {}
        self._loaded: set[str] = set()

    def get(self, counterpart_id: str) -> List[Message] | None:
        entry = self._entries.get(counterpart_id)
        return list(entry) if entry is not None else None

    def __contains__(self, counterpart_id: object) -> bool:
        return counterpart_id in self._entries

    async def load_history(
        self, counterpart_id: str, force_refresh: bool = False
    ) -> CacheResult[Message]:
        cached = self._entries.get(counterpart_id)
        if (
            cached is not None
            and counterpart_id in self._loaded
            and not force_refresh
        ):
            metrics.inc_message_cache("hit")
            publish(
                self._events,
                HistoryLoaded(
                    counterpart_id, from_cache=True, count=len(cached)
                ),
            )
            return CacheResult(list(cached), from_cache=True)

        metrics.inc_message_cache("miss")
        seq = self._seq.get(counterpart_id, 0) + 1
        self._seq[counterpart_id] = seq
        self._inflight[counterpart_id] = []
        try:
            fetched = list(await self._fetch(counterpart_id))
        except Exception as e:  # noqa: BLE001
            code = map_exception(e, "fetch")
            metrics.inc("history_fetch_errors_total", {"error_type": code})
            _log.warning(
                "history fetch failed counterpart=%s error_type=%s err=%s",
                counterpart_id,
                code,
                e,
            )
            if self._seq.get(counterpart_id) == seq:
                self._inflight.pop(counterpart_id, None)
            return CacheResult([], from_cache=False)

        if self._seq.get(counterpart_id) != seq:
            metrics.inc("history_fetch_stale_total")
            _log.info(
                "discarding stale history response counterpart=%s seq=%d",
                counterpart_id,
                seq,
            )
            current = self._entries.get(counterpart_id)
            data = list(current) if current is not None else fetched
            return CacheResult(data, from_cache=False)

        pending = self._inflight.pop(counterpart_id, [])
        if counterpart_id not in self._loaded:
            # live messages received before history was ever loaded
            pending = self._entries.get(counterpart_id, []) + pending
        entry = _merge(fetched, pending)
        self._loaded.add(counterpart_id)
        self._entries[counterpart_id] = entry
        self._ids[counterpart_id] = {m.id for m in entry}
        publish(
            self._events,
            HistoryLoaded(counterpart_id, from_cache=False, count=len(entry)),
        )
        self._notify(counterpart_id, entry, "load")
        return CacheResult(list(entry), from_cache=False)

    def append(self, counterpart_id: str, message: Message) -> List[Message]:
        entry = self._entries.get(counterpart_id, [])
        ids = self._ids.get(counterpart_id, set())
        if message.id in ids:
            metrics.inc_append(False)
            return list(entry)
        entry = sorted([*entry, message], key=_by_time)
        self._entries[counterpart_id] = entry
        self._ids[counterpart_id] = ids | {message.id}
        pending = self._inflight.get(counterpart_id)
        if pending is not None:
            pending.append(message)
        metrics.inc_append(True)
        self._notify(counterpart_id, entry, "append")
        return list(entry)

    def subscribe(
        self, counterpart_id: str, callback: Listener
    ) -> Subscription:
        """Register for full-list updates; the handle unsubscribes."""
        return self._listeners.subscribe(counterpart_id, callback)

    def clear(self, counterpart_id: str) -> None:
        self._entries.pop(counterpart_id, None)
        self._ids.pop(counterpart_id, None)
        self._loaded.discard(counterpart_id)
        self._inflight.pop(counterpart_id, None)
        if counterpart_id in self._seq:
            # invalidates any fetch in flight for this counterpart
            self._seq[counterpart_id] += 1
        publish(
            self._events,
            ConversationUpdated(counterpart_id, size=0, source="clear"),
        )

    def clear_all(self) -> None:
        for counterpart_id in list(self._entries):
            self.clear(counterpart_id)
        for counterpart_id in list(self._seq):
            self._seq[counterpart_id] += 1
        self._inflight.clear()
        self._loaded.clear()

    def stats(self) -> dict:
        return {
            "cached_conversations": len(self._entries),
            "messages": sum(len(v) for v in self._entries.values()),
        }

    def _notify(
        self, counterpart_id: str, entry: List[Message], source: str
    ) -> None:
        publish(
            self._events,
            ConversationUpdated(
                counterpart_id, size=len(entry), source=source
            ),
        )
        if self._listeners.has_subscribers(counterpart_id):
            self._listeners.emit(counterpart_id, list(entry))


__all__ = ["MessageCacheStore", "HistoryFetcher"]
