"""Active chat marker and the view flag used to gate notifications."""
from __future__ import annotations


class ActiveChatMarker:
    """Which counterpart's chat is open, and whether the messages page is.

    One instance per session; set on chat open, cleared on close.
    """

    __slots__ = ("counterpart_id", "on_messages_page")

    def __init__(self) -> None:
        self.counterpart_id: str | None = None
        self.on_messages_page = False

    def set(self, counterpart_id: str) -> None:
        self.counterpart_id = counterpart_id

    def clear(self, counterpart_id: str | None = None) -> None:
        """Clear the marker; with an id, only if it still points there."""
        if counterpart_id is None or self.counterpart_id == counterpart_id:
            self.counterpart_id = None

    def is_active(self, counterpart_id: str | None) -> bool:
        return (
            counterpart_id is not None
            and self.counterpart_id == counterpart_id
        )

    def reset(self) -> None:
        self.counterpart_id = None
        self.on_messages_page = False


__all__ = ["ActiveChatMarker"]
