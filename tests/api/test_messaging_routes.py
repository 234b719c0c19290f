import pytest
from fastapi.testclient import TestClient

from core.config.schemas.messaging import MessagingConfig
from core.messaging import MemoryTokenStore, MessagingService
from fanchat.api.app import create_app


@pytest.fixture
def bridge(socket_factory, fake_api, clock):
    built = []

    def factory():
        svc = MessagingService(
            MessagingConfig(),
            fake_api,
            MemoryTokenStore(),
            client_factory=socket_factory,
            clock=clock,
        )
        built.append(svc)
        return svc

    app = create_app(service_factory=factory)
    with TestClient(app) as client:
        yield client, app, built


def test_session_start_and_status(bridge):
    client, app, built = bridge
    r = client.post("/session/start", json={"token": "tok"})
    assert r.status_code == 200
    assert r.json() == {
        "connected": True,
        "state": "connected",
        "last_error": None,
    }
    status = client.get("/session").json()
    assert status["connection"] == "connected"
    assert client.get("/health").json()["connection"] == "connected"
    assert len(built) == 1


def test_session_start_without_token(bridge):
    client, _, _ = bridge
    r = client.post("/session/start", json={})
    assert r.json()["connected"] is False
    assert r.json()["last_error"] == "auth-missing"


def test_notifications_flow(bridge, wire):
    client, app, _ = bridge
    client.post("/session/start", json={"token": "tok"})
    svc = app.state.messaging
    svc.connection.dispatch("receive_message", wire("m1", "A", "me"))
    svc.connection.dispatch("receive_message", wire("m2", "A", "me"))
    svc.connection.dispatch("receive_message", wire("m3", "B", "me"))
    data = client.get("/notifications").json()
    assert data["unread_count"] == 2
    assert [n["sender_id"] for n in data["notifications"]] == ["A", "B"]
    r = client.post("/notifications/read", json={"sender_id": "A"})
    assert r.json() == {"removed": 1, "unread_count": 1}
    assert client.delete("/notifications/nope").status_code == 404
    r = client.delete("/notifications/m3")
    assert r.json() == {"ok": True, "unread_count": 0}


def test_view_route_sets_messages_page_flag(bridge):
    client, _, _ = bridge
    r = client.post("/view", json={"route": "/messages"})
    assert r.json() == {"on_messages_page": True}
    r = client.post("/view", json={"route": "/home"})
    assert r.json() == {"on_messages_page": False}


def test_recent_chats_cached(bridge, fake_api):
    from core.messaging import RecentConversation

    fake_api.recent = [
        RecentConversation.model_validate(
            {"user": {"_id": "u2"}, "lastMessage": "hi"}
        )
    ]
    client, _, _ = bridge
    first = client.get("/chats/recent").json()
    second = client.get("/chats/recent").json()
    assert first["from_cache"] is False
    assert second["from_cache"] is True
    assert first["chats"][0]["counterpart"]["id"] == "u2"
    client.post("/chats/recent/invalidate")
    assert client.get("/chats/recent").json()["from_cache"] is False


def test_chat_open_send_close(bridge, fake_api, socket_factory, make_message):
    fake_api.history["u2"] = [make_message("h1")]
    client, app, _ = bridge
    client.post("/session/start", json={"token": "tok"})
    r = client.post("/chats/u2/open")
    body = r.json()
    assert body["state"] == "ready"
    assert [m["id"] for m in body["messages"]] == ["h1"]
    # reopening reuses the window
    client.post("/chats/u2/open")
    assert len(app.state.messaging.sessions) == 1
    r = client.post("/chats/u2/send", json={"content": "hello"})
    assert r.json() == {"sent": True, "connection": "connected"}
    assert socket_factory.last.emitted[0][1]["content"] == "hello"
    cached = client.get("/chats/u2/messages").json()
    assert cached["cached"] is True
    assert client.post("/chats/u2/close").json() == {"ok": True}
    assert client.post("/chats/u2/close").status_code == 404
    r = client.post("/chats/u9/send", json={"content": "x"})
    assert r.status_code == 409


def test_messages_for_unknown_chat(bridge):
    client, _, _ = bridge
    assert client.get("/chats/zz/messages").json() == {
        "cached": False,
        "messages": [],
    }


def test_logout_discards_service(bridge, fake_api):
    client, app, built = bridge
    client.post("/session/start", json={"token": "tok"})
    assert client.post("/session/logout").json() == {"ok": True}
    assert app.state.messaging is None
    assert fake_api.closed is True
    client.get("/session")
    assert len(built) == 2


def test_toast_click_opens_chat(bridge, wire):
    client, app, _ = bridge
    client.post("/session/start", json={"token": "tok"})
    svc = app.state.messaging
    svc.connection.dispatch("receive_message", wire("m1", "A", "me"))
    toast_id = client.get("/notifications").json()["toasts"][0]["id"]
    r = client.post(f"/notifications/toasts/{toast_id}/click")
    assert r.status_code == 200
    assert r.json()["counterpart_id"] == "A"
    assert r.json()["state"] == "ready"
    assert client.get("/notifications").json()["toasts"] == []
    r = client.post(f"/notifications/toasts/{toast_id}/click")
    assert r.status_code == 404
