"""MessagingService: composition root for one authenticated session.

Owns exactly one ConnectionManager, MessageCacheStore,
RecentConversationsCache and NotificationAggregator plus the active-chat
marker and the session EventBus. Built at login (``start``) and torn down
at logout; nothing here is module-level state.
"""
from __future__ import annotations

import logging
import time
from typing import Any, Callable, List

from core import metrics
from core.config.schemas.messaging import MessagingConfig
from core.errors import map_exception
from core.eventbus import EventBus, Subscription
from core.events import attach_metrics
from core.messaging.active_chat import ActiveChatMarker
from core.messaging.client import (
    FileTokenStore,
    MessagingApiClient,
    TokenStore,
)
from core.messaging.connection import (
    RECEIVE_MESSAGE,
    ClientFactory,
    ConnectionManager,
)
from core.messaging.message_store import MessageCacheStore
from core.messaging.notifications import NotificationAggregator, ToastRenderer
from core.messaging.recent_cache import RecentConversationsCache
from core.messaging.session import ChatSessionController
from core.messaging.types import Message, SendError

_log = logging.getLogger("fanchat.service")


class MessagingService:
    def __init__(
        self,
        config: MessagingConfig,
        api: MessagingApiClient,
        token_store: TokenStore,
        client_factory: ClientFactory | None = None,
        clock: Callable[[], float] | None = None,
        renderer: ToastRenderer | None = None,
        on_send_error: Callable[[SendError], Any] | None = None,
    ) -> None:
        self.config = config
        self.api = api
        self.token_store = token_store
        self.events = EventBus("messaging")
        self._metrics_sub = attach_metrics(self.events)
        self.active_chat = ActiveChatMarker()
        self.store = MessageCacheStore(api.fetch_history, events=self.events)
        self.recent = RecentConversationsCache(
            api.fetch_recent,
            ttl_s=config.recent_chats.ttl_s,
            max_entries=config.recent_chats.max_entries,
            clock=clock or time.monotonic,
            events=self.events,
        )
        notif = config.notifications
        self.notifications = NotificationAggregator(
            self.active_chat,
            max_entries=notif.max_entries,
            toast_duration_s=notif.toast_duration_s,
            toast_preview_chars=notif.toast_preview_chars,
            renderer=renderer,
            events=self.events,
        )
        self.connection = ConnectionManager(
            config.socket,
            token_store=token_store,
            client_factory=client_factory,
            events=self.events,
        )
        self._on_send_error = on_send_error
        self._sessions: List[ChatSessionController] = []
        self._subs: List[Subscription] = []
        self.started = False

    @classmethod
    def from_config(
        cls,
        config: MessagingConfig,
        token_store: TokenStore | None = None,
        **kwargs: Any,
    ) -> "MessagingService":
        """Build with the file token store and an httpx API client."""
        store = token_store or FileTokenStore(config.token_file)
        transport = kwargs.pop("transport", None)
        api = MessagingApiClient(config.api, store, transport=transport)
        return cls(config, api, store, **kwargs)

    # ---- session lifecycle -------------------------------------------

    async def start(self, token: str | None = None) -> bool:
        """Connect and wire global listeners; True when connected."""
        if token:
            self.token_store.save(token)
        if not self.started:
            self._subs.append(
                self.connection.subscribe(RECEIVE_MESSAGE, self._on_inbound)
            )
            self.started = True
        await self.connection.connect(token)
        if (
            self.connection.is_connected()
            and self.config.notifications.seed_unread_on_start
        ):
            await self._seed_unread()
        return self.connection.is_connected()

    async def _seed_unread(self) -> None:
        try:
            unseen = await self.api.fetch_unseen()
        except Exception as e:  # noqa: BLE001
            code = map_exception(e, "fetch")
            metrics.inc("unseen_fetch_errors_total", {"error_type": code})
            _log.warning("unseen fetch failed error_type=%s err=%s", code, e)
            return
        added = self.notifications.seed(unseen)
        _log.info("seeded notifications count=%d", added)

    def _on_inbound(self, message: Message) -> None:
        self.notifications.add_notification(message)
        self.notifications.show_toast(message)
        self.recent.invalidate("receive")

    async def shutdown(self) -> None:
        for controller in list(self._sessions):
            controller.close()
        self._sessions.clear()
        for sub in self._subs:
            sub.dispose()
        self._subs.clear()
        self.connection.remove_all_listeners()
        await self.connection.disconnect()
        self.notifications.close()
        await self.api.aclose()
        self.started = False
        _log.info("messaging service shut down")

    async def logout(self) -> None:
        await self.shutdown()
        self.store.clear_all()
        self.notifications.mark_as_read()
        self.recent.invalidate("logout")
        self.active_chat.reset()
        self.token_store.clear()

    # ---- chat windows --------------------------------------------------

    async def open_chat(self, counterpart_id: str) -> ChatSessionController:
        controller = ChatSessionController(
            self.connection,
            self.store,
            self.recent,
            self.active_chat,
            on_mark_as_read=self.notifications.mark_as_read,
            on_send_error=self._on_send_error,
            max_length=self.config.message_max_length,
            events=self.events,
        )
        self._sessions.append(controller)
        await controller.open(counterpart_id)
        return controller

    async def open_from_toast(
        self, toast_id: str
    ) -> ChatSessionController | None:
        """Clicking a toast opens (or focuses) the sender's chat."""
        toast = self.notifications.click_toast(toast_id)
        if toast is None:
            return None
        existing = self.find_chat(toast.sender_id)
        if existing is not None:
            return existing
        return await self.open_chat(toast.sender_id)

    def close_chat(self, controller: ChatSessionController) -> None:
        controller.close()
        if controller in self._sessions:
            self._sessions.remove(controller)

    def find_chat(self, counterpart_id: str) -> ChatSessionController | None:
        for controller in self._sessions:
            if controller.counterpart_id == counterpart_id:
                return controller
        return None

    @property
    def sessions(self) -> List[ChatSessionController]:
        return list(self._sessions)

    def set_route(self, route: str) -> None:
        self.active_chat.on_messages_page = route.startswith(
            self.config.notifications.messages_route
        )

    def status(self) -> dict:
        return {
            "connection": self.connection.state.value,
            "last_error": self.connection.last_error,
            "unread_count": self.notifications.unread_count,
            "active_chat": self.active_chat.counterpart_id,
            "open_chats": [c.counterpart_id for c in self._sessions],
            "recent_age_s": self.recent.age(),
            **self.store.stats(),
        }


__all__ = ["MessagingService"]
