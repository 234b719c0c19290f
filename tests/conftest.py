"""Pytest configuration ensuring project root is importable.

Adds repository root (and src/) to sys.path explicitly to avoid
interpreter/path quirks, and provides fakes for the Socket.IO client and
the REST collaborators.
"""
from __future__ import annotations

import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest

ROOT = Path(__file__).resolve().parent.parent
if str(ROOT) not in sys.path:
    sys.path.insert(0, str(ROOT))
SRC = ROOT / "src"
if SRC.exists() and str(SRC) not in sys.path:
    sys.path.insert(0, str(SRC))

T0 = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


@pytest.fixture(autouse=True)
def _isolate_config_env():  # noqa: D401
    """Ensure global config/metrics side effects do not leak between tests.

    - Clear aggregated config cache and metrics between tests
    - Restore FANCHAT_CONFIG_DIR to original value
    """
    from core import metrics  # local import
    from core.config import clear_config_cache  # local import

    prev = os.environ.get("FANCHAT_CONFIG_DIR")
    clear_config_cache()
    metrics.reset_for_tests()
    try:
        yield
    finally:
        clear_config_cache()
        if prev is None:
            os.environ.pop("FANCHAT_CONFIG_DIR", None)
        else:
            os.environ["FANCHAT_CONFIG_DIR"] = prev


# ---- wire payloads ---------------------------------------------------------

def wire_message(
    mid: str,
    sender: str,
    receiver: str,
    content: str = "hi",
    minute: int = 0,
) -> dict:
    """Server-shaped message payload (populated sender/receiver)."""
    return {
        "_id": mid,
        "senderId": {"_id": sender, "name": sender.upper()},
        "receiverId": {"_id": receiver, "name": receiver.upper()},
        "content": content,
        "createdAt": (T0 + timedelta(minutes=minute)).isoformat(),
        "isRead": False,
    }


@pytest.fixture
def make_message():
    from core.messaging.types import Message

    def _make(mid, sender="u2", receiver="me", content="hi", minute=0):
        return Message.parse(
            wire_message(mid, sender, receiver, content, minute)
        )

    return _make


@pytest.fixture
def wire():
    return wire_message


# ---- fakes -----------------------------------------------------------------

class FakeSocketClient:
    """Stands in for socketio.AsyncClient (on/connect/emit/disconnect)."""

    def __init__(self, fail: Exception | None = None) -> None:
        self.handlers: dict = {}
        self.connected = False
        self.fail = fail
        self.connect_calls: list = []
        self.emitted: list = []
        self.emit_error: Exception | None = None
        self.disconnect_calls = 0

    def on(self, event, handler=None):
        self.handlers[event] = handler

    async def connect(self, url, **kwargs):
        self.connect_calls.append((url, kwargs))
        if self.fail is not None:
            raise self.fail
        self.connected = True
        await self.fire("connect")

    async def disconnect(self):
        self.disconnect_calls += 1
        was_connected = self.connected
        self.connected = False
        if was_connected:
            await self.fire("disconnect")

    async def emit(self, event, data=None):
        if self.emit_error is not None:
            raise self.emit_error
        self.emitted.append((event, data))

    async def fire(self, event, *args):
        handler = self.handlers.get(event)
        if handler is not None:
            await handler(*args)


class SocketFactory:
    def __init__(self, fail: Exception | None = None) -> None:
        self.fail = fail
        self.clients: list[FakeSocketClient] = []

    def __call__(self) -> FakeSocketClient:
        client = FakeSocketClient(fail=self.fail)
        self.clients.append(client)
        return client

    @property
    def last(self) -> FakeSocketClient:
        return self.clients[-1]


class FakeApi:
    """In-memory REST collaborators with call recording."""

    def __init__(self) -> None:
        self.history: dict = {}
        self.recent: list = []
        self.unseen: list = []
        self.fail: Exception | None = None
        self.calls: list = []
        self.closed = False

    async def fetch_history(self, counterpart_id):
        self.calls.append(("history", counterpart_id))
        if self.fail is not None:
            raise self.fail
        return list(self.history.get(counterpart_id, []))

    async def fetch_recent(self):
        self.calls.append(("recent", None))
        if self.fail is not None:
            raise self.fail
        return list(self.recent)

    async def fetch_unseen(self):
        self.calls.append(("unseen", None))
        if self.fail is not None:
            raise self.fail
        return list(self.unseen)

    async def aclose(self):
        self.closed = True


class FakeClock:
    def __init__(self, t: float = 0.0) -> None:
        self.t = t

    def __call__(self) -> float:
        return self.t


@pytest.fixture
def socket_factory():
    return SocketFactory()


@pytest.fixture
def fake_api():
    return FakeApi()


@pytest.fixture
def clock():
    return FakeClock()
