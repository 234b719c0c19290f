"""SSE utilities."""
from __future__ import annotations

import asyncio
import json
from typing import Any, AsyncGenerator, Awaitable, Callable

from core.eventbus import EventBus

HEARTBEAT_S = 15.0


def format_event(event: str | None, data: str) -> str:
    lines = []
    if event:
        lines.append(f"event: {event}")
    # data may contain newlines; split per SSE spec
    for line in data.splitlines() or [""]:
        lines.append(f"data: {line}")
    return "\n".join(lines) + "\n\n"


async def bus_stream(
    bus: EventBus,
    is_disconnected: Callable[[], Awaitable[bool]],
    heartbeat_s: float = HEARTBEAT_S,
) -> AsyncGenerator[str, None]:
    """Relay every event published on ``bus`` as an SSE frame.

    Subscribes on first iteration and detaches when the generator closes.
    A comment frame is sent when idle for ``heartbeat_s``.
    """
    queue: asyncio.Queue[tuple[str, Any]] = asyncio.Queue()

    def _enqueue(event: str, payload: Any) -> None:
        queue.put_nowait((event, payload))

    sub = bus.subscribe_all(_enqueue)
    try:
        yield format_event("ready", "{}")
        while not await is_disconnected():
            try:
                event, payload = await asyncio.wait_for(
                    queue.get(), heartbeat_s
                )
            except asyncio.TimeoutError:
                yield ": keepalive\n\n"
                continue
            yield format_event(event, json.dumps(payload, default=str))
    finally:
        sub.dispose()
