"""Messaging core public API."""

from .active_chat import ActiveChatMarker  # noqa: F401
from .client import (  # noqa: F401
    FileTokenStore,
    MemoryTokenStore,
    MessagingApiClient,
    TokenStore,
)
from .connection import ConnectionManager, ConnectionState  # noqa: F401
from .exceptions import FetchError, MessagingError  # noqa: F401
from .message_store import MessageCacheStore  # noqa: F401
from .notifications import NotificationAggregator  # noqa: F401
from .recent_cache import RecentConversationsCache  # noqa: F401
from .service import MessagingService  # noqa: F401
from .session import ChatSessionController, SessionState  # noqa: F401
from .types import (  # noqa: F401
    CacheResult,
    Message,
    NotificationEntry,
    RecentConversation,
    SendError,
    Toast,
    UserRef,
)

__all__ = [
    "ActiveChatMarker",
    "FileTokenStore",
    "MemoryTokenStore",
    "MessagingApiClient",
    "TokenStore",
    "ConnectionManager",
    "ConnectionState",
    "FetchError",
    "MessagingError",
    "MessageCacheStore",
    "NotificationAggregator",
    "RecentConversationsCache",
    "MessagingService",
    "ChatSessionController",
    "SessionState",
    "CacheResult",
    "Message",
    "NotificationEntry",
    "RecentConversation",
    "SendError",
    "Toast",
    "UserRef",
]
