import asyncio
import json

from core.eventbus import ANY, EventBus
from fanchat.api.sse import bus_stream, format_event


def test_format_event_multiline():
    frame = format_event("ToastShown", "a\nb")
    assert frame == "event: ToastShown\ndata: a\ndata: b\n\n"
    assert format_event(None, "") == "data: \n\n"


def test_bus_stream_relays_and_detaches():
    bus = EventBus("test")

    async def connected():
        return False

    async def scenario():
        gen = bus_stream(bus, connected, heartbeat_s=5)
        ready = await gen.__anext__()
        bus.emit("NotificationsChanged", {"unread_count": 2})
        frame = await gen.__anext__()
        subscribed = bus.has_subscribers(ANY)
        await gen.aclose()
        return ready, frame, subscribed

    ready, frame, subscribed = asyncio.run(scenario())
    assert ready.startswith("event: ready")
    lines = frame.strip().split("\n")
    assert lines[0] == "event: NotificationsChanged"
    payload = json.loads(lines[1][len("data: "):])
    assert payload["unread_count"] == 2
    assert subscribed is True
    assert not bus.has_subscribers(ANY)


def test_bus_stream_heartbeat():
    bus = EventBus("test")

    async def connected():
        return False

    async def scenario():
        gen = bus_stream(bus, connected, heartbeat_s=0.01)
        await gen.__anext__()
        beat = await gen.__anext__()
        await gen.aclose()
        return beat

    assert asyncio.run(scenario()) == ": keepalive\n\n"
