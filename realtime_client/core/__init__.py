"""Conversation state, data models and the in-process event dispatcher."""

from .event_bus import EventDispatcher
from .conversation import RealtimeConversation, ServerEventType
from .models import (
    ContentPart,
    ConversationItem,
    FormattedTool,
    FormattedView,
    ItemRole,
    ItemStatus,
    ItemType,
    ResponseRecord,
    ResponseStatus,
)

__all__ = [
    "EventDispatcher",
    "RealtimeConversation",
    "ServerEventType",
    "ContentPart",
    "ConversationItem",
    "FormattedTool",
    "FormattedView",
    "ItemRole",
    "ItemStatus",
    "ItemType",
    "ResponseRecord",
    "ResponseStatus",
]
