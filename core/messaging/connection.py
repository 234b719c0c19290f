"""Connection manager: one Socket.IO connection per authenticated session.

State machine: DISCONNECTED -> CONNECTING -> CONNECTED; any -> DISCONNECTED.
Failures are logged with a taxonomy code and leave the manager
DISCONNECTED; reconnection is caller initiated (next ``connect``) unless
the library reconnects the current client itself (``socket.reconnection``),
in which case its ``connect`` callback walks CONNECTING -> CONNECTED.

Inbound events are parsed once per socket event and fanned out through a
private EventBus, so every live subscription receives each event exactly
once. Two registration styles:
  - ``subscribe(event, handler)`` -> Subscription handle (many per event)
  - ``on_receive_message`` / ``on_message_sent`` / ``on_message_error``:
    single slot per event type, re-registering replaces the previous one.
"""
from __future__ import annotations

import asyncio
import enum
import logging
from datetime import datetime, timezone
from typing import Any, Callable, Dict

import socketio
from pydantic import ValidationError

from core import metrics
from core.config.schemas.messaging import SocketConfig
from core.errors import map_exception
from core.eventbus import EventBus, Subscription
from core.events import ConnectionStateChanged, publish
from core.messaging.client import TokenStore
from core.messaging.types import Message, SendError

_log = logging.getLogger("fanchat.connection")

RECEIVE_MESSAGE = "receive_message"
MESSAGE_SENT = "message_sent"
MESSAGE_ERROR = "message_error"
SEND_MESSAGE = "send_message"

INBOUND_EVENTS = (RECEIVE_MESSAGE, MESSAGE_SENT, MESSAGE_ERROR)


class ConnectionState(str, enum.Enum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    CONNECTED = "connected"


_ALLOWED = {
    ConnectionState.DISCONNECTED: {ConnectionState.CONNECTING},
    ConnectionState.CONNECTING: {
        ConnectionState.CONNECTED,
        ConnectionState.DISCONNECTED,
    },
    ConnectionState.CONNECTED: {ConnectionState.DISCONNECTED},
}

ClientFactory = Callable[[], Any]


def default_client_factory(cfg: SocketConfig) -> ClientFactory:
    def _make() -> socketio.AsyncClient:
        return socketio.AsyncClient(
            reconnection=cfg.reconnection,
            reconnection_attempts=cfg.reconnection_attempts,
            reconnection_delay=max(0.1, cfg.reconnection_delay_s),
            logger=False,
            engineio_logger=False,
        )

    return _make


class ConnectionManager:
    def __init__(
        self,
        config: SocketConfig,
        token_store: TokenStore | None = None,
        client_factory: ClientFactory | None = None,
        events: EventBus | None = None,
    ) -> None:
        self._cfg = config
        self._token_store = token_store
        self._factory = client_factory or default_client_factory(config)
        self._events = events
        self._client: Any | None = None
        self._state = ConnectionState.DISCONNECTED
        self._inbound = EventBus("socket")
        self._slots: Dict[str, Subscription] = {}
        self._connect_lock = asyncio.Lock()
        self.last_error: str | None = None

    # ---- state -------------------------------------------------------

    @property
    def state(self) -> ConnectionState:
        return self._state

    def is_connected(self) -> bool:
        return self._state is ConnectionState.CONNECTED

    def _transition(
        self, new: ConnectionState, error_type: str | None = None
    ) -> None:
        old = self._state
        if new is old:
            return
        if new not in _ALLOWED[old]:
            _log.debug("ignored transition %s -> %s", old.value, new.value)
            return
        self._state = new
        metrics.inc_state_transition(old.value, new.value)
        _log.info("socket state %s -> %s", old.value, new.value)
        publish(
            self._events,
            ConnectionStateChanged(
                previous=old.value, state=new.value, error_type=error_type
            ),
        )

    # ---- lifecycle ---------------------------------------------------

    async def connect(self, token: str | None = None) -> "ConnectionManager":
        async with self._connect_lock:
            if self._state is not ConnectionState.DISCONNECTED:
                return self
            if token is None and self._token_store is not None:
                token = self._token_store.load()
            if not token:
                self.last_error = "auth-missing"
                metrics.inc_connect_failure("auth-missing")
                _log.info("no auth token; connection not attempted")
                return self
            stale, self._client = self._client, None
            if stale is not None:
                try:
                    await stale.disconnect()
                except Exception as e:  # noqa: BLE001
                    _log.debug("stale socket disconnect error: %s", e)
            client = self._factory()
            self._register_socket_handlers(client)
            self._client = client
            self._transition(ConnectionState.CONNECTING)
            try:
                await client.connect(
                    self._cfg.url,
                    auth={"token": token},
                    transports=list(self._cfg.transports),
                    socketio_path=self._cfg.path,
                    wait_timeout=self._cfg.connect_timeout_s,
                )
            except Exception as e:  # noqa: BLE001
                await self._fail(client, e)
                return self
            if getattr(client, "connected", False):
                self.last_error = None
                self._transition(ConnectionState.CONNECTED)
            return self

    async def _fail(self, client: Any, e: Exception) -> None:
        code = map_exception(e, "connect")
        self.last_error = code
        metrics.inc_connect_failure(code)
        _log.warning(
            "socket connect failed url=%s error_type=%s err=%s",
            self._cfg.url,
            code,
            e,
        )
        if self._client is client:
            self._client = None
        try:
            await client.disconnect()
        except Exception as e:  # noqa: BLE001
            _log.debug("socket cleanup after failure: %s", e)
        self._transition(ConnectionState.DISCONNECTED, error_type=code)

    async def disconnect(self) -> None:
        client, self._client = self._client, None
        if client is not None:
            try:
                await client.disconnect()
            except Exception as e:  # noqa: BLE001
                _log.warning("socket disconnect error: %s", e)
        self._transition(ConnectionState.DISCONNECTED)

    # ---- outbound ----------------------------------------------------

    async def send(self, receiver_id: str, content: str) -> bool:
        if not self.is_connected() or self._client is None:
            metrics.inc_send(False, "not-connected")
            _log.warning("send skipped: socket not connected")
            return False
        payload = {
            "receiverId": receiver_id,
            "content": content,
            "timestamp": datetime.now(timezone.utc).isoformat(),
        }
        try:
            await self._client.emit(SEND_MESSAGE, payload)
        except Exception as e:  # noqa: BLE001
            code = map_exception(e, "send")
            metrics.inc_send(False, code)
            _log.warning("send failed error_type=%s err=%s", code, e)
            return False
        metrics.inc_send(True)
        return True

    # ---- inbound registration ---------------------------------------

    def subscribe(
        self, event: str, handler: Callable[[Any], None]
    ) -> Subscription:
        if event not in INBOUND_EVENTS:
            raise ValueError(f"unknown inbound event '{event}'")
        return self._inbound.subscribe(event, handler)

    def _set_slot(self, event: str, handler: Callable[[Any], None]) -> None:
        prev = self._slots.pop(event, None)
        if prev is not None:
            prev.dispose()
        self._slots[event] = self.subscribe(event, handler)

    def on_receive_message(self, handler: Callable[[Message], None]) -> None:
        self._set_slot(RECEIVE_MESSAGE, handler)

    def on_message_sent(self, handler: Callable[[Message], None]) -> None:
        self._set_slot(MESSAGE_SENT, handler)

    def on_message_error(self, handler: Callable[[SendError], None]) -> None:
        self._set_slot(MESSAGE_ERROR, handler)

    def remove_all_listeners(self) -> None:
        for sub in self._slots.values():
            sub.dispose()
        self._slots.clear()

    # ---- socket callbacks --------------------------------------------

    def _register_socket_handlers(self, client: Any) -> None:
        client.on("connect", self._make_lifecycle(client, "connect"))
        client.on("disconnect", self._make_lifecycle(client, "disconnect"))
        client.on(
            "connect_error", self._make_lifecycle(client, "connect_error")
        )
        for event in INBOUND_EVENTS:
            client.on(event, self._make_inbound(client, event))

    def _make_lifecycle(self, client: Any, kind: str):
        async def handler(*args: Any) -> None:
            if client is not self._client:
                return  # callback from a replaced client
            if kind == "connect":
                if self._state is ConnectionState.DISCONNECTED:
                    # library-level reconnect of the current client
                    _log.info("socket reconnected url=%s", self._cfg.url)
                    self._transition(ConnectionState.CONNECTING)
                self.last_error = None
                self._transition(ConnectionState.CONNECTED)
            elif kind == "disconnect":
                self._transition(ConnectionState.DISCONNECTED)
            else:
                code = map_exception(
                    Exception(args[0] if args else "connect_error"), "connect"
                )
                self.last_error = code
                _log.warning("socket connect_error error_type=%s", code)
                self._transition(ConnectionState.DISCONNECTED, error_type=code)

        return handler

    def _make_inbound(self, client: Any, event: str):
        async def handler(payload: Any = None, *args: Any) -> None:
            if client is not self._client:
                return
            self.dispatch(event, payload)

        return handler

    def dispatch(self, event: str, payload: Any) -> None:
        """Parse a raw inbound payload and fan it out to subscribers."""
        if event == MESSAGE_ERROR:
            self._inbound.emit(event, SendError.from_payload(payload))
            return
        try:
            message = Message.parse(payload)
        except ValidationError as e:
            metrics.inc_invalid_payload(event)
            _log.warning(
                "dropping malformed %s payload error_type=%s err=%s",
                event,
                "invalid-payload",
                e.errors()[:1],
            )
            return
        self._inbound.emit(event, message)


__all__ = [
    "ConnectionManager",
    "ConnectionState",
    "default_client_factory",
    "RECEIVE_MESSAGE",
    "MESSAGE_SENT",
    "MESSAGE_ERROR",
    "SEND_MESSAGE",
]
