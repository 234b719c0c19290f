"""EventBus (sync in-process, one instance per owner).

Features:
  - subscribe(event, handler) -> Subscription handle (dispose() to detach)
  - subscribe_all(handler) receives (event, payload) for every event
  - emit(event, payload) adds ts to dict payloads if missing
  - handler isolation (exceptions logged + counted, not propagated)

No global bus: the messaging service, the connection manager and the
message store each own one, so lifetimes follow their owner.
"""
from __future__ import annotations

import itertools
import logging
from threading import RLock
from time import time
from typing import Any, Callable, Dict

from core import metrics

Handler = Callable[[Any], None]
AnyHandler = Callable[[str, Any], None]

ANY = "*"

_log = logging.getLogger("fanchat.eventbus")


class Subscription:
    """Registration handle; calling it (or ``dispose``) detaches."""

    __slots__ = ("_bus", "event", "token", "_active")

    def __init__(self, bus: "EventBus", event: str, token: int) -> None:
        self._bus = bus
        self.event = event
        self.token = token
        self._active = True

    @property
    def active(self) -> bool:
        return self._active

    def dispose(self) -> None:
        if self._active:
            self._active = False
            self._bus._remove(self.event, self.token)

    __call__ = dispose


class EventBus:
    def __init__(self, name: str = "bus") -> None:
        self.name = name
        self._subs: Dict[str, Dict[int, Callable[..., None]]] = {}
        self._tokens = itertools.count(1)
        self._lock = RLock()

    def subscribe(self, event: str, handler: Handler) -> Subscription:
        with self._lock:
            token = next(self._tokens)
            self._subs.setdefault(event, {})[token] = handler
        return Subscription(self, event, token)

    def subscribe_all(self, handler: AnyHandler) -> Subscription:
        return self.subscribe(ANY, handler)

    def _remove(self, event: str, token: int) -> None:
        with self._lock:
            handlers = self._subs.get(event)
            if handlers is None:
                return
            handlers.pop(token, None)
            if not handlers:
                self._subs.pop(event, None)

    def has_subscribers(self, event: str) -> bool:
        with self._lock:
            return bool(self._subs.get(event))

    def emit(self, event: str, payload: Any = None) -> None:
        t0 = time()
        if isinstance(payload, dict) and "ts" not in payload:
            payload["ts"] = t0
        with self._lock:
            subs = list(self._subs.get(event, {}).values())
            taps = list(self._subs.get(ANY, {}).values())
        for h in subs:
            self._call(event, h, _copy(payload))
        for h in taps:
            self._call(event, h, event, _copy(payload))

    def _call(self, event: str, handler: Callable[..., None], *args) -> None:
        try:
            handler(*args)
        except Exception:  # noqa: BLE001
            metrics.inc(
                "handler_exceptions_total", {"bus": self.name, "event": event}
            )
            _log.exception(
                "event handler failed bus=%s event=%s error_type=%s",
                self.name,
                event,
                "event-handler-error",
            )

    def clear(self) -> None:
        with self._lock:
            self._subs.clear()


def _copy(payload: Any) -> Any:
    # shallow copy for safety; lists/tuples of frozen records pass through
    if isinstance(payload, dict):
        return dict(payload)
    if isinstance(payload, list):
        return list(payload)
    return payload


__all__ = ["EventBus", "Subscription", "ANY"]
