"""
Realtime tool-call adapter.

Turns a completed ``function_call`` item into a handler invocation and the
``function_call_output`` item that reports the result back to the model.
"""

import asyncio
import inspect
import json
from typing import Any, Dict

import structlog
from prometheus_client import Counter

from ..core.models import FormattedTool
from ..errors import ToolNotFoundError
from .registry import ToolRegistry

logger = structlog.get_logger(__name__)

_TOOL_CALLS = Counter(
    "realtime_client_tool_calls_total",
    "Tool invocations triggered by completed function_call items",
    labelnames=("tool", "outcome"),
)


class RealtimeToolAdapter:
    """
    Executes tool calls against a ToolRegistry.

    Failures never propagate: unknown tools, malformed arguments, handler
    exceptions and timeouts all become ``{"error": message}`` outputs.
    """

    def __init__(self, registry: ToolRegistry):
        self.registry = registry

    async def execute(self, tool: FormattedTool) -> Dict[str, Any]:
        """
        Run the handler for ``tool`` and build the function output item.

        Returns:
            Item payload for ``conversation.item.create``:
            {"type": "function_call_output", "call_id": ..., "output": "<json>"}
        """
        try:
            result = await self._invoke(tool)
            output = json.dumps(result)
            outcome = "success"
            logger.info("Tool executed", tool=tool.name, call_id=tool.call_id)
        except Exception as exc:
            message = str(exc) or exc.__class__.__name__
            output = json.dumps({"error": message})
            outcome = "error"
            logger.error(
                "Tool execution failed",
                tool=tool.name,
                call_id=tool.call_id,
                error=message,
                exc_info=True,
            )

        _TOOL_CALLS.labels(tool=tool.name or "unknown", outcome=outcome).inc()
        return {
            "type": "function_call_output",
            "call_id": tool.call_id,
            "output": output,
        }

    async def _invoke(self, tool: FormattedTool) -> Any:
        parameters = json.loads(tool.arguments) if tool.arguments else {}
        registered = self.registry.get(tool.name)
        if registered is None:
            raise ToolNotFoundError(f'Tool "{tool.name}" has not been added')
        registered.definition.validate_parameters(parameters)

        logger.debug("Invoking tool", tool=tool.name, call_id=tool.call_id, arguments=parameters)
        result = registered.handler(parameters)
        if inspect.isawaitable(result):
            timeout = registered.definition.max_execution_time
            try:
                result = await asyncio.wait_for(result, timeout=timeout)
            except asyncio.TimeoutError:
                raise TimeoutError(f'Tool "{tool.name}" timed out after {timeout}s') from None
        return result
