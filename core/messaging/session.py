"""Chat session controller: one per open chat window.

States: CLOSED -> LOADING (open, cache-first) -> READY -> CLOSED (close).

While open, inbound messages from the counterpart and send acks addressed
to it are merged through the shared MessageCacheStore, and the read
callback fires on load and on every inbound message so unread state stays
correct. Sends are optimistic: nothing is appended locally until the
server's ``message_sent`` ack carries the server-assigned id.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from typing import Any, Callable, List

from core.eventbus import EventBus, Subscription
from core.events import ChatClosed, ChatOpened, MessageSendFailed, publish
from core.messaging.active_chat import ActiveChatMarker
from core.messaging.connection import (
    MESSAGE_ERROR,
    MESSAGE_SENT,
    RECEIVE_MESSAGE,
    ConnectionManager,
)
from core.messaging.message_store import MessageCacheStore
from core.messaging.recent_cache import RecentConversationsCache
from core.messaging.types import CacheResult, Message, SendError

_log = logging.getLogger("fanchat.session")

DEFAULT_MAX_LENGTH = 500


class SessionState(str, enum.Enum):
    CLOSED = "closed"
    LOADING = "loading"
    READY = "ready"


class ChatSessionController:
    def __init__(
        self,
        connection: ConnectionManager,
        store: MessageCacheStore,
        recent: RecentConversationsCache,
        active_chat: ActiveChatMarker,
        on_mark_as_read: Callable[[str], Any] | None = None,
        on_send_error: Callable[[SendError], Any] | None = None,
        max_length: int = DEFAULT_MAX_LENGTH,
        events: EventBus | None = None,
    ) -> None:
        self._connection = connection
        self._store = store
        self._recent = recent
        self._active = active_chat
        self._on_mark_as_read = on_mark_as_read
        self._on_send_error = on_send_error
        self.max_length = max_length
        self._events = events
        self.state = SessionState.CLOSED
        self.counterpart_id: str | None = None
        self.draft = ""
        self._messages: List[Message] = []
        self._subs: List[Subscription] = []
        self._pending_sends = 0
        self._opened: asyncio.Event | None = None

    @property
    def loading(self) -> bool:
        return self.state is SessionState.LOADING

    @property
    def messages(self) -> List[Message]:
        return list(self._messages)

    # ---- lifecycle ---------------------------------------------------

    async def open(self, counterpart_id: str) -> CacheResult[Message]:
        if self.state is not SessionState.CLOSED:
            if self.counterpart_id == counterpart_id:
                if self._opened is not None:
                    # reopened while loading: share that load
                    await self._opened.wait()
                return CacheResult(self.messages, from_cache=True)
            self.close()
        self.counterpart_id = counterpart_id
        self.state = SessionState.LOADING
        opened = self._opened = asyncio.Event()
        try:
            return await self._open(counterpart_id)
        finally:
            opened.set()
            if self._opened is opened:
                self._opened = None

    async def _open(self, counterpart_id: str) -> CacheResult[Message]:
        if not self._connection.is_connected():
            await self._connection.connect()
        if self.counterpart_id != counterpart_id:
            # closed or reopened while connecting
            return CacheResult([], from_cache=False)
        self._active.set(counterpart_id)
        self._subs = [
            self._connection.subscribe(RECEIVE_MESSAGE, self._on_receive),
            self._connection.subscribe(MESSAGE_SENT, self._on_sent),
            self._connection.subscribe(MESSAGE_ERROR, self._on_error),
            self._store.subscribe(counterpart_id, self._on_store_update),
        ]
        publish(self._events, ChatOpened(counterpart_id=counterpart_id))
        self._mark_read()
        result = await self._store.load_history(counterpart_id)
        if (
            self.state is SessionState.LOADING
            and self.counterpart_id == counterpart_id
        ):
            current = self._store.get(counterpart_id)
            self._messages = current if current is not None else result.data
            self.state = SessionState.READY
            self._mark_read()
        return result

    def close(self) -> None:
        counterpart_id = self.counterpart_id
        for sub in self._subs:
            sub.dispose()
        self._subs = []
        if counterpart_id is not None:
            self._active.clear(counterpart_id)
            publish(self._events, ChatClosed(counterpart_id=counterpart_id))
        self.counterpart_id = None
        self.draft = ""
        self._messages = []
        self._pending_sends = 0
        self.state = SessionState.CLOSED

    async def refresh(self) -> CacheResult[Message]:
        """Force a history refetch for the open counterpart."""
        if self.counterpart_id is None:
            return CacheResult([], from_cache=False)
        return await self._store.load_history(
            self.counterpart_id, force_refresh=True
        )

    # ---- outbound ----------------------------------------------------

    async def send(self, text: str | None = None) -> bool:
        raw = self.draft if text is None else text
        content = (raw or "").strip()
        if not content or self.counterpart_id is None:
            return False
        if len(content) > self.max_length:
            self._report_error(
                SendError("Message too long", receiver_id=self.counterpart_id)
            )
            return False
        sent = await self._connection.send(self.counterpart_id, content)
        self.draft = ""
        if sent:
            self._pending_sends += 1
        return sent

    # ---- inbound -----------------------------------------------------

    def _on_receive(self, message: Message) -> None:
        if self.counterpart_id is None:
            return
        if message.sender_id != self.counterpart_id:
            return
        self._store.append(self.counterpart_id, message)
        self._mark_read()
        self._recent.invalidate("receive")

    def _on_sent(self, message: Message) -> None:
        if self.counterpart_id is None:
            return
        if message.receiver_id != self.counterpart_id:
            return
        self._pending_sends = max(0, self._pending_sends - 1)
        self._store.append(self.counterpart_id, message)
        self._recent.invalidate("sent")

    def _on_error(self, error: SendError) -> None:
        # errors without a receiver go to the window awaiting an ack
        if error.receiver_id is not None:
            if error.receiver_id != self.counterpart_id:
                return
        elif self._pending_sends == 0:
            return
        self._pending_sends = max(0, self._pending_sends - 1)
        self._report_error(error)

    def _on_store_update(self, messages: List[Message]) -> None:
        self._messages = messages

    def _report_error(self, error: SendError) -> None:
        _log.warning(
            "message send failed counterpart=%s error=%s",
            self.counterpart_id,
            error.error,
        )
        publish(
            self._events,
            MessageSendFailed(
                error=error.error, receiver_id=self.counterpart_id
            ),
        )
        if self._on_send_error is not None:
            self._on_send_error(error)

    def _mark_read(self) -> None:
        if self._on_mark_as_read is not None and self.counterpart_id:
            self._on_mark_as_read(self.counterpart_id)


__all__ = ["ChatSessionController", "SessionState"]
