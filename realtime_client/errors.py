"""
Exception hierarchy for the realtime conversation client.

Configuration mistakes and operational misuse are raised synchronously to the
caller. Each class also derives from the closest builtin so callers that only
know ``ValueError``/``RuntimeError``/``KeyError`` keep working.
"""


class RealtimeClientError(Exception):
    """Base class for all errors raised by this package."""


class ConfigurationError(RealtimeClientError, ValueError):
    """Invalid tool registration or session configuration."""


class ToolNotFoundError(ConfigurationError):
    """A tool name is not present in the registry."""


class NotConnectedError(RealtimeClientError, RuntimeError):
    """Operation requires an open realtime connection."""


class AlreadyConnectedError(RealtimeClientError, RuntimeError):
    """connect() called while a connection is already open."""


class ConversationError(RealtimeClientError, RuntimeError):
    """Conversation state cannot satisfy the requested event or operation."""


class ItemNotFoundError(ConversationError, KeyError):
    """An item id is not present in the conversation."""

    def __init__(self, item_id: str, operation: str = ""):
        self.item_id = item_id
        self.operation = operation
        prefix = f"{operation}: " if operation else ""
        super().__init__(f'{prefix}Item "{item_id}" not found')

    def __str__(self) -> str:
        # KeyError.__str__ would repr() the message
        return self.args[0]


__all__ = [
    "RealtimeClientError",
    "ConfigurationError",
    "ToolNotFoundError",
    "NotConnectedError",
    "AlreadyConnectedError",
    "ConversationError",
    "ItemNotFoundError",
]
