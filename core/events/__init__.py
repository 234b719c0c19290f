"""Messaging domain events (dataclasses) published on an EventBus.

Usage: ``publish(bus, ToastShown(...))`` emits under the class name with the
``to_event()`` dict as payload. ``attach_metrics(bus)`` installs the
any-event collector that turns selected events into counters.
"""
from __future__ import annotations

from dataclasses import dataclass, asdict
from time import time
from typing import Any, Dict, Protocol

from core import metrics as _metrics
from core.eventbus import EventBus, Subscription


class SupportsEvent(Protocol):  # pragma: no cover
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        ...


@dataclass(slots=True)
class BaseEvent:
    def to_event(self) -> Dict[str, Any]:  # noqa: D401
        data = asdict(self)
        data["ts"] = data.get("ts") or time()
        return data


@dataclass(slots=True)
class ConnectionStateChanged(BaseEvent):
    previous: str
    state: str  # disconnected|connecting|connected
    error_type: str | None = None


@dataclass(slots=True)
class HistoryLoaded(BaseEvent):
    counterpart_id: str
    from_cache: bool
    count: int


@dataclass(slots=True)
class ConversationUpdated(BaseEvent):
    """Cache entry for a counterpart changed (append or wholesale load)."""
    counterpart_id: str
    size: int
    source: str  # append|load|clear


@dataclass(slots=True)
class RecentChatsInvalidated(BaseEvent):
    reason: str | None = None


@dataclass(slots=True)
class NotificationsChanged(BaseEvent):
    unread_count: int
    sender_id: str | None = None
    change: str = "updated"  # created|coalesced|read|cleared|evicted


@dataclass(slots=True)
class ToastShown(BaseEvent):
    toast_id: str
    sender_id: str
    sender_name: str | None
    text: str


@dataclass(slots=True)
class ToastDismissed(BaseEvent):
    toast_id: str
    reason: str  # timeout|manual|clicked|shutdown


@dataclass(slots=True)
class ToastClicked(BaseEvent):
    toast_id: str
    sender_id: str


@dataclass(slots=True)
class MessageSendFailed(BaseEvent):
    error: str
    receiver_id: str | None = None


@dataclass(slots=True)
class ChatOpened(BaseEvent):
    counterpart_id: str


@dataclass(slots=True)
class ChatClosed(BaseEvent):
    counterpart_id: str


def publish(bus: EventBus | None, ev: BaseEvent | SupportsEvent) -> None:
    if bus is None:
        return
    bus.emit(ev.__class__.__name__, ev.to_event())


def _metrics_collector(name: str, payload: Any) -> None:  # noqa: D401
    if not isinstance(payload, dict):
        return
    if name == "HistoryLoaded":
        _metrics.observe("history_size", payload.get("count", 0))
    elif name == "MessageSendFailed":
        _metrics.inc("message_send_failed_events_total")
    elif name in {"ChatOpened", "ChatClosed"}:
        _metrics.inc("chat_windows_total", {"type": name[4:].lower()})


def attach_metrics(bus: EventBus) -> Subscription:
    return bus.subscribe_all(_metrics_collector)


__all__ = [
    "publish",
    "attach_metrics",
    "BaseEvent",
    "ConnectionStateChanged",
    "HistoryLoaded",
    "ConversationUpdated",
    "RecentChatsInvalidated",
    "NotificationsChanged",
    "ToastShown",
    "ToastDismissed",
    "ToastClicked",
    "MessageSendFailed",
    "ChatOpened",
    "ChatClosed",
]
