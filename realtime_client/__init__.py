"""
Client for the realtime conversation protocol.

Reassembles the server event stream into an ordered conversation, keeps the
session configuration and input audio, and runs registered tools when the
model calls them.
"""

from .client import RealtimeClient
from .config import ClientConfig, SessionConfig, load_config
from .core import EventDispatcher, RealtimeConversation
from .errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConversationError,
    ItemNotFoundError,
    NotConnectedError,
    RealtimeClientError,
    ToolNotFoundError,
)
from .tools import ToolDefinition, ToolParameter
from .transport import RealtimeAPI
from .utils import audio as audio_utils

__version__ = "0.1.0"

__all__ = [
    "RealtimeClient",
    "RealtimeAPI",
    "RealtimeConversation",
    "EventDispatcher",
    "ClientConfig",
    "SessionConfig",
    "load_config",
    "ToolDefinition",
    "ToolParameter",
    "audio_utils",
    "RealtimeClientError",
    "ConfigurationError",
    "ToolNotFoundError",
    "NotConnectedError",
    "AlreadyConnectedError",
    "ConversationError",
    "ItemNotFoundError",
]
