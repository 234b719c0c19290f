"""Messaging record types.

Wire records (Message, UserRef, RecentConversation) are pydantic models
parsed from server payloads; local state records are slotted dataclasses.
"""
from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Generic, List, TypeVar

from pydantic import (
    AliasChoices,
    BaseModel,
    ConfigDict,
    Field,
    field_validator,
)

T = TypeVar("T")


def as_utc(value: datetime) -> datetime:
    """Aware UTC datetime; naive values are taken to be UTC already."""
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def _as_ref(value: Any) -> Any:
    # payloads carry populated user objects; bare ids are accepted too
    if isinstance(value, str):
        return {"_id": value}
    return value


class UserRef(BaseModel):
    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    name: str | None = None
    profile_picture: str | None = Field(
        default=None,
        validation_alias=AliasChoices("profilePicture", "profile_picture"),
    )

    model_config = ConfigDict(frozen=True, extra="ignore")


class Message(BaseModel):
    """Immutable chat message. ``id`` is server assigned and unique."""

    id: str = Field(validation_alias=AliasChoices("_id", "id"))
    sender: UserRef = Field(
        validation_alias=AliasChoices("senderId", "sender")
    )
    receiver: UserRef = Field(
        validation_alias=AliasChoices("receiverId", "receiver")
    )
    content: str
    created_at: datetime = Field(
        validation_alias=AliasChoices("createdAt", "created_at")
    )
    is_read: bool = Field(
        default=False, validation_alias=AliasChoices("isRead", "is_read")
    )

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("sender", "receiver", mode="before")
    @classmethod
    def _coerce_refs(cls, v: Any) -> Any:
        return _as_ref(v)

    @field_validator("created_at")
    @classmethod
    def _utc_created_at(cls, v: datetime) -> datetime:
        return as_utc(v)

    @property
    def sender_id(self) -> str:
        return self.sender.id

    @property
    def receiver_id(self) -> str:
        return self.receiver.id

    def counterpart_of(self, user_id: str) -> str:
        if self.sender_id == user_id:
            return self.receiver_id
        return self.sender_id

    @classmethod
    def parse(cls, payload: Any) -> "Message":
        return cls.model_validate(payload)


class RecentConversation(BaseModel):
    counterpart: UserRef = Field(
        validation_alias=AliasChoices("user", "counterpart")
    )
    last_message_text: str | None = Field(
        default=None,
        validation_alias=AliasChoices("lastMessage", "last_message_text"),
    )
    last_message_time: datetime | None = Field(
        default=None,
        validation_alias=AliasChoices("lastMessageTime", "last_message_time"),
    )
    unread_count: int = Field(
        default=0, validation_alias=AliasChoices("unreadCount", "unread_count")
    )

    model_config = ConfigDict(frozen=True, extra="ignore")

    @field_validator("counterpart", mode="before")
    @classmethod
    def _coerce_counterpart(cls, v: Any) -> Any:
        return _as_ref(v)

    @field_validator("last_message_time")
    @classmethod
    def _utc_last_time(cls, v: datetime | None) -> datetime | None:
        return as_utc(v) if v is not None else None


@dataclass(slots=True)
class NotificationEntry:
    id: str
    sender_id: str
    sender_name: str | None
    sender_avatar: str | None
    content: str
    timestamp: datetime

    @staticmethod
    def from_message(message: Message) -> "NotificationEntry":
        return NotificationEntry(
            id=message.id,
            sender_id=message.sender_id,
            sender_name=message.sender.name,
            sender_avatar=message.sender.profile_picture,
            content=message.content,
            timestamp=message.created_at,
        )


@dataclass(slots=True)
class Toast:
    id: str
    sender_id: str
    sender_name: str | None
    text: str
    shown_at: datetime = field(
        default_factory=lambda: datetime.now(timezone.utc)
    )


@dataclass(slots=True)
class SendError:
    """Server (or local validation) rejection of an outbound message."""
    error: str
    receiver_id: str | None = None

    @staticmethod
    def from_payload(payload: Any) -> "SendError":
        if isinstance(payload, dict):
            return SendError(
                error=str(payload.get("error") or "Failed to send message"),
                receiver_id=payload.get("receiverId"),
            )
        return SendError(error=str(payload or "Failed to send message"))


@dataclass(slots=True)
class CacheResult(Generic[T]):
    data: List[T]
    from_cache: bool


__all__ = [
    "UserRef",
    "Message",
    "RecentConversation",
    "NotificationEntry",
    "Toast",
    "SendError",
    "CacheResult",
    "as_utc",
]
