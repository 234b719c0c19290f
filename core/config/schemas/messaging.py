"""Messaging config schemas (socket, REST api, caches and notifications)."""
from __future__ import annotations

from typing import List

from pydantic import BaseModel, ConfigDict, Field


class SocketConfig(BaseModel):
    url: str = "http://localhost:3001"
    path: str = "socket.io"
    transports: List[str] = Field(
        default_factory=lambda: ["websocket", "polling"]
    )
    connect_timeout_s: float = 10.0
    # library-level reconnection; the core itself never retries
    reconnection: bool = False
    reconnection_attempts: int = 3
    reconnection_delay_s: float = 1.0

    model_config = ConfigDict(extra="forbid")


class ApiConfig(BaseModel):
    base_url: str = "http://localhost:3001"
    timeout_s: float = 10.0

    model_config = ConfigDict(extra="forbid")


class RecentChatsConfig(BaseModel):
    ttl_s: float = 300.0
    max_entries: int = 10

    model_config = ConfigDict(extra="forbid")


class NotificationsConfig(BaseModel):
    max_entries: int = 50
    toast_duration_s: float = 4.0
    toast_preview_chars: int = 50
    messages_route: str = "/messages"
    seed_unread_on_start: bool = True

    model_config = ConfigDict(extra="forbid")


class MessagingConfig(BaseModel):
    socket: SocketConfig = SocketConfig()
    api: ApiConfig = ApiConfig()
    recent_chats: RecentChatsConfig = RecentChatsConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    message_max_length: int = 500
    token_file: str = "~/.fanchat/access_token"

    model_config = ConfigDict(extra="forbid")
