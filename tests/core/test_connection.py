import asyncio

import pytest

from core import metrics
from core.config.schemas.messaging import SocketConfig
from core.eventbus import EventBus
from core.messaging.client import MemoryTokenStore
from core.messaging.connection import (
    MESSAGE_ERROR,
    RECEIVE_MESSAGE,
    ConnectionManager,
    ConnectionState,
)


def _manager(socket_factory, token="tok", events=None):
    return ConnectionManager(
        SocketConfig(),
        token_store=MemoryTokenStore(token),
        client_factory=socket_factory,
        events=events,
    )


def test_connect_uses_token_and_socket_options(socket_factory):
    mgr = _manager(socket_factory)
    asyncio.run(mgr.connect())
    assert mgr.state is ConnectionState.CONNECTED
    assert mgr.is_connected()
    url, kwargs = socket_factory.last.connect_calls[0]
    assert url == "http://localhost:3001"
    assert kwargs["auth"] == {"token": "tok"}
    assert kwargs["transports"] == ["websocket", "polling"]
    assert kwargs["socketio_path"] == "socket.io"
    assert kwargs["wait_timeout"] == 10.0


def test_explicit_token_wins_over_store(socket_factory):
    mgr = _manager(socket_factory, token="stored")
    asyncio.run(mgr.connect("fresh"))
    _, kwargs = socket_factory.last.connect_calls[0]
    assert kwargs["auth"] == {"token": "fresh"}


def test_connect_is_idempotent(socket_factory):
    mgr = _manager(socket_factory)

    async def scenario():
        await asyncio.gather(mgr.connect(), mgr.connect())
        await mgr.connect()

    asyncio.run(scenario())
    assert len(socket_factory.clients) == 1
    assert mgr.is_connected()


def test_no_token_means_no_attempt(socket_factory):
    mgr = _manager(socket_factory, token=None)
    asyncio.run(mgr.connect())
    assert mgr.state is ConnectionState.DISCONNECTED
    assert mgr.last_error == "auth-missing"
    assert socket_factory.clients == []


def test_failed_connect_returns_to_disconnected(socket_factory):
    socket_factory.fail = ConnectionError("Unauthorized: invalid token")
    bus = EventBus("test")
    states = []
    bus.subscribe(
        "ConnectionStateChanged",
        lambda p: states.append((p["state"], p["error_type"])),
    )
    mgr = _manager(socket_factory, events=bus)
    asyncio.run(mgr.connect())
    assert mgr.state is ConnectionState.DISCONNECTED
    assert mgr.last_error == "auth-rejected"
    assert states == [
        ("connecting", None),
        ("disconnected", "auth-rejected"),
    ]
    assert metrics.get(
        "socket_connect_failures_total", {"error_type": "auth-rejected"}
    ) == 1
    # a later call may retry
    socket_factory.fail = None
    asyncio.run(mgr.connect())
    assert mgr.is_connected()
    assert len(socket_factory.clients) == 2


def test_network_failure_code(socket_factory):
    socket_factory.fail = OSError("Connection refused")
    mgr = _manager(socket_factory)
    asyncio.run(mgr.connect())
    assert mgr.last_error == "network-unreachable"


def test_disconnect_is_safe_when_disconnected(socket_factory):
    mgr = _manager(socket_factory)

    async def scenario():
        await mgr.disconnect()
        await mgr.connect()
        await mgr.disconnect()
        await mgr.disconnect()

    asyncio.run(scenario())
    assert mgr.state is ConnectionState.DISCONNECTED
    assert socket_factory.last.disconnect_calls == 1


def test_server_side_disconnect_and_connect_error(socket_factory):
    mgr = _manager(socket_factory)

    async def scenario():
        await mgr.connect()
        await socket_factory.last.fire("disconnect")
        after_drop = mgr.state
        await mgr.connect()
        await socket_factory.last.fire(
            "connect_error", {"message": "xhr poll error"}
        )
        return after_drop

    after_drop = asyncio.run(scenario())
    assert after_drop is ConnectionState.DISCONNECTED
    assert mgr.state is ConnectionState.DISCONNECTED
    assert mgr.last_error == "network-unreachable"


def test_send_when_disconnected_is_noop(socket_factory):
    mgr = _manager(socket_factory)
    assert asyncio.run(mgr.send("u2", "hello")) is False
    assert metrics.get(
        "message_send_errors_total", {"error_type": "not-connected"}
    ) == 1


def test_send_emits_payload(socket_factory):
    mgr = _manager(socket_factory)

    async def scenario():
        await mgr.connect()
        return await mgr.send("u2", "hello")

    assert asyncio.run(scenario()) is True
    event, payload = socket_factory.last.emitted[0]
    assert event == "send_message"
    assert payload["receiverId"] == "u2"
    assert payload["content"] == "hello"
    assert "timestamp" in payload


def test_send_emit_error_is_logged_not_raised(socket_factory):
    mgr = _manager(socket_factory)

    async def scenario():
        await mgr.connect()
        socket_factory.last.emit_error = RuntimeError("socket closed")
        return await mgr.send("u2", "hello")

    assert asyncio.run(scenario()) is False
    assert metrics.get(
        "message_send_errors_total", {"error_type": "send-rejected"}
    ) == 1


def test_single_slot_handler_is_replaced(socket_factory, wire):
    mgr = _manager(socket_factory)
    first, second = [], []
    mgr.on_receive_message(first.append)
    mgr.on_receive_message(second.append)

    async def scenario():
        await mgr.connect()
        await socket_factory.last.fire(
            RECEIVE_MESSAGE, wire("m1", "u2", "me")
        )

    asyncio.run(scenario())
    assert first == []
    assert [m.id for m in second] == ["m1"]


def test_remove_all_listeners_detaches_slots(socket_factory, wire):
    mgr = _manager(socket_factory)
    got = []
    mgr.on_receive_message(got.append)
    mgr.remove_all_listeners()
    mgr.dispatch(RECEIVE_MESSAGE, wire("m1", "u2", "me"))
    assert got == []


def test_subscriptions_each_receive_once(socket_factory, wire):
    mgr = _manager(socket_factory)
    a, b = [], []
    sub_a = mgr.subscribe(RECEIVE_MESSAGE, a.append)
    mgr.subscribe(RECEIVE_MESSAGE, b.append)

    async def scenario():
        await mgr.connect()
        await socket_factory.last.fire(
            RECEIVE_MESSAGE, wire("m1", "u2", "me")
        )
        sub_a.dispose()
        await socket_factory.last.fire(
            RECEIVE_MESSAGE, wire("m2", "u2", "me")
        )

    asyncio.run(scenario())
    assert [m.id for m in a] == ["m1"]
    assert [m.id for m in b] == ["m1", "m2"]


def test_subscribe_unknown_event_rejected(socket_factory):
    mgr = _manager(socket_factory)
    with pytest.raises(ValueError):
        mgr.subscribe("typing", lambda p: None)


def test_malformed_payload_dropped(socket_factory):
    mgr = _manager(socket_factory)
    got = []
    mgr.subscribe(RECEIVE_MESSAGE, got.append)
    mgr.dispatch(RECEIVE_MESSAGE, {"content": "no id or sender"})
    mgr.dispatch(RECEIVE_MESSAGE, "garbage")
    assert got == []
    assert metrics.get(
        "inbound_payload_invalid_total", {"event": RECEIVE_MESSAGE}
    ) == 2


def test_message_error_payload_parsed(socket_factory):
    mgr = _manager(socket_factory)
    got = []
    mgr.on_message_error(got.append)
    mgr.dispatch(MESSAGE_ERROR, {"error": "Receiver not found"})
    mgr.dispatch(MESSAGE_ERROR, None)
    assert got[0].error == "Receiver not found"
    assert got[0].receiver_id is None
    assert got[1].error == "Failed to send message"


def test_replaced_client_callbacks_ignored(socket_factory, wire):
    mgr = _manager(socket_factory)
    got = []
    mgr.subscribe(RECEIVE_MESSAGE, got.append)

    async def scenario():
        await mgr.connect()
        old = socket_factory.last
        await mgr.disconnect()
        await mgr.connect()
        await old.fire(RECEIVE_MESSAGE, wire("stale", "u2", "me"))
        await socket_factory.last.fire(
            RECEIVE_MESSAGE, wire("fresh", "u2", "me")
        )

    asyncio.run(scenario())
    assert [m.id for m in got] == ["fresh"]


def test_library_reconnect_restores_connected(socket_factory):
    mgr = ConnectionManager(
        SocketConfig(reconnection=True),
        token_store=MemoryTokenStore("tok"),
        client_factory=socket_factory,
    )

    async def scenario():
        await mgr.connect()
        sock = socket_factory.last
        await sock.fire("disconnect")
        dropped = mgr.state
        await sock.fire("connect")
        sent = await mgr.send("u2", "back again")
        return dropped, sent

    dropped, sent = asyncio.run(scenario())
    assert dropped is ConnectionState.DISCONNECTED
    assert mgr.is_connected()
    assert sent is True
    assert len(socket_factory.clients) == 1
    assert metrics.get(
        "socket_state_transitions_total",
        {"from": "disconnected", "to": "connecting"},
    ) == 2
