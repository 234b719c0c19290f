import asyncio
import os
import sys

# Ensure project root on path when executed directly
ROOT = os.path.abspath(os.path.join(os.path.dirname(__file__), ".."))
if ROOT not in sys.path:
    sys.path.insert(0, ROOT)

from core.config import get_config  # noqa: E402
from core.log import configure_logging  # noqa: E402
from core.messaging import MessagingService  # noqa: E402

# Usage: python scripts/quick_chat.py <counterpart_id> ["message text"]


async def run(counterpart_id: str, text: str | None) -> None:
    cfg = get_config()
    configure_logging(cfg.logging)
    svc = MessagingService.from_config(
        cfg.messaging, on_send_error=lambda e: print("SEND ERROR:", e.error)
    )
    try:
        connected = await svc.start()
        print("CONNECTED:", connected, svc.connection.last_error or "")
        chat = await svc.open_chat(counterpart_id)
        for m in chat.messages:
            stamp = f"{m.created_at:%Y-%m-%d %H:%M}"
            print(f"[{stamp}] {m.sender_id}: {m.content}")
        if text:
            print("SENT:", await chat.send(text))
            await asyncio.sleep(1.0)  # give the ack a chance to arrive
            print("HISTORY SIZE:", len(chat.messages))
        print("UNREAD:", svc.notifications.unread_count)
    finally:
        await svc.shutdown()


def main():
    if len(sys.argv) < 2:
        print("Usage: python scripts/quick_chat.py <counterpart_id> ['text']")
        return
    text = sys.argv[2] if len(sys.argv) > 2 else None
    asyncio.run(run(sys.argv[1], text))


if __name__ == "__main__":
    main()
