"""Messaging routes: session, notifications, recent chats, chat windows."""
from __future__ import annotations

from dataclasses import asdict
from typing import Any, List

from fastapi import APIRouter, HTTPException, Request
from fastapi.responses import StreamingResponse
from pydantic import BaseModel

from core.messaging import Message, MessagingService
from fanchat.api.sse import bus_stream

router = APIRouter()


class StartRequest(BaseModel):  # noqa: D401
    token: str | None = None


class ViewRequest(BaseModel):  # noqa: D401
    route: str


class ReadRequest(BaseModel):  # noqa: D401
    sender_id: str | None = None


class SendRequest(BaseModel):  # noqa: D401
    content: str


def get_service(request: Request) -> MessagingService:
    """Session service for this app, built lazily from the app factory."""
    state = request.app.state
    svc = getattr(state, "messaging", None)
    if svc is None:
        svc = state.service_factory()
        state.messaging = svc
    return svc


def _dump(messages: List[Message]) -> list[dict[str, Any]]:
    return [m.model_dump(mode="json") for m in messages]


# ---- session -------------------------------------------------------------

@router.post("/session/start")
async def session_start(payload: StartRequest, request: Request):  # noqa: D401
    svc = get_service(request)
    connected = await svc.start(payload.token)
    return {
        "connected": connected,
        "state": svc.connection.state.value,
        "last_error": svc.connection.last_error,
    }


@router.post("/session/logout")
async def session_logout(request: Request):  # noqa: D401
    svc = getattr(request.app.state, "messaging", None)
    if svc is not None:
        await svc.logout()
        request.app.state.messaging = None
    return {"ok": True}


@router.get("/session")
def session_status(request: Request):  # noqa: D401
    return get_service(request).status()


@router.post("/view")
def set_view(payload: ViewRequest, request: Request):  # noqa: D401
    svc = get_service(request)
    svc.set_route(payload.route)
    return {"on_messages_page": svc.active_chat.on_messages_page}


# ---- notifications ---------------------------------------------------------

@router.get("/notifications")
def list_notifications(request: Request):  # noqa: D401
    notif = get_service(request).notifications
    return {
        "unread_count": notif.unread_count,
        "notifications": [asdict(n) for n in notif.notifications],
        "toasts": [asdict(t) for t in notif.toasts],
    }


@router.post("/notifications/read")
def mark_read(payload: ReadRequest, request: Request):  # noqa: D401
    notif = get_service(request).notifications
    removed = notif.mark_as_read(payload.sender_id)
    return {"removed": removed, "unread_count": notif.unread_count}


@router.delete("/notifications/{notification_id}")
def clear_notification(notification_id: str, request: Request):  # noqa: D401
    notif = get_service(request).notifications
    if not notif.clear_notification(notification_id):
        raise HTTPException(status_code=404, detail="notification-not-found")
    return {"ok": True, "unread_count": notif.unread_count}


@router.post("/notifications/toasts/{toast_id}/click")
async def click_toast(toast_id: str, request: Request):  # noqa: D401
    controller = await get_service(request).open_from_toast(toast_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="toast-not-found")
    return {
        "counterpart_id": controller.counterpart_id,
        "state": controller.state.value,
        "messages": _dump(controller.messages),
    }


# ---- recent chats ----------------------------------------------------------

@router.get("/chats/recent")
async def recent_chats(request: Request):  # noqa: D401
    result = await get_service(request).recent.load()
    return {
        "from_cache": result.from_cache,
        "chats": [c.model_dump(mode="json") for c in result.data],
    }


@router.post("/chats/recent/invalidate")
def invalidate_recent(request: Request):  # noqa: D401
    get_service(request).recent.invalidate("manual")
    return {"ok": True}


# ---- chat windows ----------------------------------------------------------

@router.post("/chats/{counterpart_id}/open")
async def open_chat(counterpart_id: str, request: Request):  # noqa: D401
    svc = get_service(request)
    controller = svc.find_chat(counterpart_id)
    if controller is None:
        controller = await svc.open_chat(counterpart_id)
    return {
        "counterpart_id": counterpart_id,
        "state": controller.state.value,
        "messages": _dump(controller.messages),
    }


@router.get("/chats/{counterpart_id}/messages")
def chat_messages(counterpart_id: str, request: Request):  # noqa: D401
    cached = get_service(request).store.get(counterpart_id)
    return {
        "cached": cached is not None,
        "messages": _dump(cached or []),
    }


@router.post("/chats/{counterpart_id}/send")
async def send_message(
    counterpart_id: str, payload: SendRequest, request: Request
):  # noqa: D401
    svc = get_service(request)
    controller = svc.find_chat(counterpart_id)
    if controller is None:
        raise HTTPException(status_code=409, detail="chat-not-open")
    sent = await controller.send(payload.content)
    return {"sent": sent, "connection": svc.connection.state.value}


@router.post("/chats/{counterpart_id}/close")
def close_chat(counterpart_id: str, request: Request):  # noqa: D401
    svc = get_service(request)
    controller = svc.find_chat(counterpart_id)
    if controller is None:
        raise HTTPException(status_code=404, detail="chat-not-open")
    svc.close_chat(controller)
    return {"ok": True}


# ---- push ------------------------------------------------------------------

@router.get("/events")
async def events(request: Request):  # noqa: D401
    svc = get_service(request)
    return StreamingResponse(
        bus_stream(svc.events, request.is_disconnected),
        media_type="text/event-stream",
    )
