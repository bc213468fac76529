"""
Tool registry - the tools a client exposes to the model.

Each client owns its own registry, so independent sessions in one process can
expose different tools.
"""

from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Mapping, Optional, Union
import logging

from ..errors import ConfigurationError, ToolNotFoundError
from .base import ToolDefinition

logger = logging.getLogger(__name__)

ToolHandler = Callable[[Dict[str, Any]], Any]


@dataclass
class RegisteredTool:
    """A definition paired with the callable that executes it."""
    definition: ToolDefinition
    handler: ToolHandler


class ToolRegistry:
    """
    Registry of tool definitions and handlers, keyed by unique name.
    """

    def __init__(self):
        self._tools: Dict[str, RegisteredTool] = {}

    def register(
        self,
        definition: Union[ToolDefinition, Mapping[str, Any]],
        handler: ToolHandler,
    ) -> RegisteredTool:
        """
        Register a tool.

        Args:
            definition: ToolDefinition or realtime-style mapping with ``name``
            handler: Callable invoked with the parsed arguments dict; may be async

        Returns:
            The stored RegisteredTool

        Raises:
            ConfigurationError: If the name is missing, already registered, or
                the handler is not callable
        """
        if not isinstance(definition, ToolDefinition):
            definition = ToolDefinition.from_dict(definition or {})
        name = definition.name
        if not name:
            raise ConfigurationError("Missing tool name in definition")
        if name in self._tools:
            raise ConfigurationError(
                f'Tool "{name}" already added. Please use remove_tool("{name}") before trying to add again.'
            )
        if not callable(handler):
            raise ConfigurationError(f'Tool "{name}" handler must be a function')

        registered = RegisteredTool(definition=definition, handler=handler)
        self._tools[name] = registered
        logger.info(f"✅ Registered tool: {name}")
        return registered

    def unregister(self, name: str) -> None:
        """
        Remove a tool by name.

        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        if name not in self._tools:
            raise ToolNotFoundError(f'Tool "{name}" does not exist, can not be removed.')
        del self._tools[name]
        logger.info(f"Removed tool: {name}")

    def get(self, name: str) -> Optional[RegisteredTool]:
        return self._tools.get(name)

    def __contains__(self, name: object) -> bool:
        return name in self._tools

    def __len__(self) -> int:
        return len(self._tools)

    def list_tools(self) -> List[str]:
        return list(self._tools.keys())

    def get_definitions(self) -> List[ToolDefinition]:
        return [tool.definition for tool in self._tools.values()]

    def to_openai_realtime_schema(self) -> List[Dict[str, Any]]:
        """Export all tools in the flat realtime session format."""
        return [
            tool.definition.to_openai_realtime_schema()
            for tool in self._tools.values()
        ]

    def clear(self) -> None:
        self._tools.clear()
