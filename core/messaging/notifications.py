"""Notification aggregator: unread entries per sender plus transient toasts.

Entry lifecycle per sender:
    absent -> created (first unread message)
           -> updated (later unread messages replace content/timestamp
                       in place; list position unchanged)
           -> removed (mark_as_read(sender) / mark_as_read())

``unread_count`` is derived from the entry list and cannot drift.
Nothing is recorded for the counterpart whose chat is currently open.
"""
from __future__ import annotations

import asyncio
import itertools
import logging
from datetime import datetime, timezone
from typing import Callable, Dict, Iterable, List

from core import metrics
from core.eventbus import EventBus
from core.events import (
    NotificationsChanged,
    ToastClicked,
    ToastDismissed,
    ToastShown,
    publish,
)
from core.messaging.active_chat import ActiveChatMarker
from core.messaging.types import Message, NotificationEntry, Toast

_log = logging.getLogger("fanchat.notifications")

DEFAULT_MAX_ENTRIES = 50
DEFAULT_TOAST_DURATION_S = 4.0
DEFAULT_TOAST_PREVIEW_CHARS = 50

ToastRenderer = Callable[[Toast], None]


def preview(text: str, limit: int) -> str:
    return text if len(text) <= limit else text[:limit] + "..."


class NotificationAggregator:
    def __init__(
        self,
        active_chat: ActiveChatMarker,
        max_entries: int = DEFAULT_MAX_ENTRIES,
        toast_duration_s: float = DEFAULT_TOAST_DURATION_S,
        toast_preview_chars: int = DEFAULT_TOAST_PREVIEW_CHARS,
        renderer: ToastRenderer | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._active = active_chat
        self.max_entries = max_entries
        self.toast_duration_s = toast_duration_s
        self.toast_preview_chars = toast_preview_chars
        self._renderer = renderer
        self._events = events
        self._entries: List[NotificationEntry] = []
        self._toasts: Dict[str, Toast] = {}
        self._timers: Dict[str, asyncio.TimerHandle] = {}
        self._toast_ids = itertools.count(1)

    # ---- unread entries ----------------------------------------------

    @property
    def notifications(self) -> List[NotificationEntry]:
        return list(self._entries)

    @property
    def unread_count(self) -> int:
        return len(self._entries)

    def _find(self, sender_id: str) -> NotificationEntry | None:
        for entry in self._entries:
            if entry.sender_id == sender_id:
                return entry
        return None

    def add_notification(self, message: Message) -> NotificationEntry | None:
        sender_id = message.sender_id
        if self._active.is_active(sender_id):
            metrics.inc_notification("suppressed")
            return None
        existing = self._find(sender_id)
        if existing is not None:
            existing.content = message.content
            existing.timestamp = message.created_at
            metrics.inc_notification("coalesced")
            self._changed(sender_id, "coalesced")
            return existing
        entry = NotificationEntry.from_message(message)
        self._entries.append(entry)
        metrics.inc_notification("created")
        if len(self._entries) > self.max_entries:
            dropped = self._entries.pop(0)
            metrics.inc_notification("evicted")
            _log.debug("notification evicted sender=%s", dropped.sender_id)
        self._changed(sender_id, "created")
        return entry

    def seed(self, messages: Iterable[Message]) -> int:
        """Populate from the server's unseen messages (oldest first)."""
        before = self.unread_count
        ordered = sorted(messages, key=lambda m: m.created_at)
        for message in ordered:
            self.add_notification(message)
        return self.unread_count - before

    def mark_as_read(self, sender_id: str | None = None) -> int:
        before = len(self._entries)
        if sender_id is None:
            self._entries.clear()
        else:
            self._entries = [
                e for e in self._entries if e.sender_id != sender_id
            ]
        removed = before - len(self._entries)
        if removed:
            self._changed(sender_id, "read")
        return removed

    def clear_notification(self, notification_id: str) -> bool:
        for i, entry in enumerate(self._entries):
            if entry.id == notification_id:
                del self._entries[i]
                self._changed(entry.sender_id, "cleared")
                return True
        return False

    def _changed(self, sender_id: str | None, change: str) -> None:
        publish(
            self._events,
            NotificationsChanged(
                unread_count=self.unread_count,
                sender_id=sender_id,
                change=change,
            ),
        )

    # ---- toasts ------------------------------------------------------

    @property
    def toasts(self) -> List[Toast]:
        return list(self._toasts.values())

    def show_toast(self, message: Message) -> Toast | None:
        if self._active.is_active(message.sender_id):
            metrics.inc_toast("suppressed")
            return None
        if self._active.on_messages_page:
            metrics.inc_toast("suppressed")
            return None
        toast = Toast(
            id=f"toast-{next(self._toast_ids)}",
            sender_id=message.sender_id,
            sender_name=message.sender.name,
            text=preview(message.content, self.toast_preview_chars),
            shown_at=datetime.now(timezone.utc),
        )
        self._toasts[toast.id] = toast
        metrics.inc_toast("shown")
        publish(
            self._events,
            ToastShown(
                toast_id=toast.id,
                sender_id=toast.sender_id,
                sender_name=toast.sender_name,
                text=toast.text,
            ),
        )
        if self._renderer is not None:
            try:
                self._renderer(toast)
            except Exception:  # noqa: BLE001
                _log.exception("toast renderer failed toast=%s", toast.id)
        self._schedule_dismiss(toast.id)
        return toast

    def _schedule_dismiss(self, toast_id: str) -> None:
        try:
            loop = asyncio.get_running_loop()
        except RuntimeError:
            return  # no loop: toast stays until dismissed explicitly
        self._timers[toast_id] = loop.call_later(
            self.toast_duration_s, self.dismiss_toast, toast_id, "timeout"
        )

    def dismiss_toast(self, toast_id: str, reason: str = "manual") -> bool:
        timer = self._timers.pop(toast_id, None)
        if timer is not None:
            timer.cancel()
        if self._toasts.pop(toast_id, None) is None:
            return False
        publish(self._events, ToastDismissed(toast_id=toast_id, reason=reason))
        return True

    def click_toast(self, toast_id: str) -> Toast | None:
        """Dismiss a clicked toast; the caller opens the sender's chat."""
        toast = self._toasts.get(toast_id)
        if toast is None:
            return None
        self.dismiss_toast(toast_id, "clicked")
        metrics.inc_toast("clicked")
        publish(
            self._events,
            ToastClicked(toast_id=toast_id, sender_id=toast.sender_id),
        )
        return toast

    def close(self) -> None:
        """Cancel pending toast timers and drop visible toasts."""
        for toast_id in list(self._toasts):
            self.dismiss_toast(toast_id, "shutdown")
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()


__all__ = ["NotificationAggregator", "preview"]
