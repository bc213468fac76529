"""
Tool calling support for the realtime client.
"""

from .base import ToolDefinition, ToolParameter
from .registry import RegisteredTool, ToolRegistry
from .adapter import RealtimeToolAdapter

__all__ = [
    "ToolDefinition",
    "ToolParameter",
    "RegisteredTool",
    "ToolRegistry",
    "RealtimeToolAdapter",
]
