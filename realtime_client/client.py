"""
Realtime conversation client.

Wires the transport, the conversation assembler and the tool registry
together: keeps the session configuration, stages microphone audio, commits
it before asking for a response when server VAD is off, cancels and
truncates assistant audio, and runs tool calls as their arguments complete.

Re-announced events (dispatch on the client):
    conversation.updated         {"item", "delta"}
    conversation.item.appended   {"item"}
    conversation.item.completed  {"item"}
    conversation.interrupted     None
    realtime.event               {"time", "source", "event"}
    realtime.error               server ``error`` event
"""

import asyncio
from array import array
from datetime import datetime, timezone
from typing import Any, Dict, Iterable, List, Mapping, Optional, Set, Union

import structlog
from prometheus_client import Gauge
from pydantic import ValidationError

from .config.models import ClientConfig, SessionConfig
from .core.conversation import RealtimeConversation
from .core.event_bus import EventDispatcher
from .core.models import ConversationItem, FormattedTool, ItemStatus, ItemType
from .errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConversationError,
    ItemNotFoundError,
    NotConnectedError,
)
from .logging_config import bind_session_id
from .tools.adapter import RealtimeToolAdapter
from .tools.base import ToolDefinition
from .tools.registry import RegisteredTool, ToolHandler, ToolRegistry
from .transport.api import RealtimeAPI
from .utils.audio import SampleInput, array_buffer_to_base64, as_samples, samples_to_ms

logger = structlog.get_logger(__name__)

_CONVERSATION_ITEMS = Gauge(
    "realtime_client_conversation_items",
    "Items currently held by the conversation assembler",
)

# Server events that only update local state
_STATE_ONLY_EVENTS = (
    "response.created",
    "response.done",
    "response.output_item.added",
    "response.content_part.added",
)

# Server events whose result is re-announced as conversation.updated
_UPDATE_EVENTS = (
    "conversation.item.truncated",
    "conversation.item.deleted",
    "conversation.item.input_audio_transcription.completed",
    "response.audio_transcript.delta",
    "response.audio.delta",
    "response.text.delta",
    "response.function_call_arguments.delta",
)


class RealtimeClient(EventDispatcher):
    """
    High-level client for one realtime session.

    Args:
        config: Validated ClientConfig; defaults are used when omitted
        url: Overrides ``config.transport.url``
        api_key: Overrides ``config.api_key``
        debug: Overrides ``config.transport.debug``
        transport: Pre-built transport (mainly for tests)
    """

    def __init__(
        self,
        config: Optional[ClientConfig] = None,
        *,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        debug: Optional[bool] = None,
        transport: Optional[RealtimeAPI] = None,
    ):
        super().__init__()
        self.config = config or ClientConfig()
        transport_config = self.config.transport
        self.realtime = transport or RealtimeAPI(
            url=url or transport_config.url,
            api_key=api_key or self.config.api_key,
            model=transport_config.model,
            debug=transport_config.debug if debug is None else debug,
            connect_timeout_sec=transport_config.connect_timeout_sec,
            connect_attempts=transport_config.connect_attempts,
        )
        self.conversation = RealtimeConversation()
        self._tool_tasks: Set[asyncio.Task] = set()
        self._reset_config()
        self._add_api_event_handlers()

    # ==================== Wiring ====================

    def _reset_config(self) -> None:
        self.session_created = False
        self.tools = ToolRegistry()
        self.tool_adapter = RealtimeToolAdapter(self.tools)
        self.session_config: SessionConfig = self.config.session.model_copy(deep=True)
        self.input_audio_buffer = array("h")
        self._executed_call_ids: Set[str] = set()

    def _add_api_event_handlers(self) -> None:
        self.realtime.on("client.*", self._relay_client_event)
        self.realtime.on("server.*", self._relay_server_event)
        self.realtime.on("server.session.created", self._on_session_created)
        self.realtime.on("server.error", self._on_error)
        self.realtime.on("close", self._on_close)

        for event_type in _STATE_ONLY_EVENTS:
            self.realtime.on(f"server.{event_type}", self._process)
        for event_type in _UPDATE_EVENTS:
            self.realtime.on(f"server.{event_type}", self._process_and_announce)

        self.realtime.on("server.input_audio_buffer.speech_started", self._on_speech_started)
        self.realtime.on("server.input_audio_buffer.speech_stopped", self._on_speech_stopped)
        self.realtime.on("server.conversation.item.created", self._on_item_created)
        self.realtime.on("server.response.output_item.done", self._on_output_item_done)

    def _relay(self, source: str, event: Dict[str, Any]) -> None:
        self.dispatch("realtime.event", {
            "time": datetime.now(timezone.utc).isoformat(),
            "source": source,
            "event": event,
        })

    def _relay_client_event(self, event: Dict[str, Any]) -> None:
        self._relay("client", event)

    def _relay_server_event(self, event: Dict[str, Any]) -> None:
        self._relay("server", event)

    def _on_session_created(self, event: Dict[str, Any]) -> None:
        self.session_created = True
        session_id = (event.get("session") or {}).get("id")
        bind_session_id(session_id)
        logger.info("Realtime session created", session_id=session_id)

    def _on_error(self, event: Dict[str, Any]) -> None:
        error = event.get("error") or {}
        logger.error(
            "Realtime server error",
            error_type=error.get("type"),
            code=error.get("code"),
            message=error.get("message"),
            event_id=error.get("event_id"),
        )
        self.dispatch("realtime.error", event)

    def _on_close(self, event: Any) -> None:
        self.session_created = False
        logger.warning("Realtime connection lost")

    def _process(self, event: Dict[str, Any], *args: Any):
        item, delta = self.conversation.process_event(event, *args)
        _CONVERSATION_ITEMS.set(len(self.conversation.items))
        return item, delta

    def _process_and_announce(self, event: Dict[str, Any], *args: Any):
        item, delta = self._process(event, *args)
        # transcription may complete before the item exists; nothing to announce yet
        if item is not None:
            self.dispatch("conversation.updated", {"item": item, "delta": delta})
        return item, delta

    def _on_speech_started(self, event: Dict[str, Any]) -> None:
        self._process(event)
        self.dispatch("conversation.interrupted")

    def _on_speech_stopped(self, event: Dict[str, Any]) -> None:
        self._process(event, self.input_audio_buffer)

    def _on_item_created(self, event: Dict[str, Any]) -> None:
        item, _ = self._process_and_announce(event)
        self.dispatch("conversation.item.appended", {"item": item})
        if item.status == ItemStatus.COMPLETED.value:
            self.dispatch("conversation.item.completed", {"item": item})

    def _on_output_item_done(self, event: Dict[str, Any]) -> None:
        item, _ = self._process_and_announce(event)
        if item.status == ItemStatus.COMPLETED.value:
            self.dispatch("conversation.item.completed", {"item": item})
            if item.formatted.tool is not None:
                self._schedule_tool_call(item.formatted.tool)

    # ==================== Tool execution ====================

    def _schedule_tool_call(self, tool: FormattedTool) -> None:
        # replayed output_item.done for a call that already ran
        if tool.call_id in self._executed_call_ids:
            logger.debug("Skipping repeated tool call", tool=tool.name, call_id=tool.call_id)
            return
        self._executed_call_ids.add(tool.call_id)
        task = asyncio.get_running_loop().create_task(self._call_tool(tool))
        self._tool_tasks.add(task)
        task.add_done_callback(self._tool_task_done)

    def _tool_task_done(self, task: asyncio.Task) -> None:
        self._tool_tasks.discard(task)
        if task.cancelled():
            return
        exc = task.exception()
        if exc is not None:
            logger.error("Tool call task failed", error=str(exc), exc_info=exc)

    def _cancel_tool_tasks(self) -> None:
        current = asyncio.current_task()
        for task in list(self._tool_tasks):
            if task is not current:
                task.cancel()

    async def _call_tool(self, tool: FormattedTool) -> None:
        output_item = await self.tool_adapter.execute(tool)
        try:
            self.realtime.send("conversation.item.create", {"item": output_item})
            self.create_response()
        except NotConnectedError:
            logger.warning("Dropping tool result, connection closed", tool=tool.name, call_id=tool.call_id)

    # ==================== Connection ====================

    def is_connected(self) -> bool:
        return self.realtime.is_connected()

    async def connect(self) -> None:
        """
        Connect and push the pending session configuration.

        Raises:
            AlreadyConnectedError: If already connected
        """
        if self.is_connected():
            raise AlreadyConnectedError("Already connected, use disconnect() first")
        await self.realtime.connect()
        self.update_session()

    async def wait_for_session_created(self) -> None:
        """
        Block until ``session.created`` has been received.

        Raises:
            NotConnectedError: If not connected, or the connection drops
                before the session is created
        """
        if not self.is_connected():
            raise NotConnectedError("Not connected, use connect() first")
        while not self.session_created:
            if not self.is_connected():
                raise NotConnectedError("Connection closed before session.created")
            await asyncio.sleep(0.001)

    async def disconnect(self) -> None:
        """Disconnect, cancel pending tool calls and clear the conversation history."""
        self.session_created = False
        if self.realtime.is_connected():
            await self.realtime.disconnect()
        self._cancel_tool_tasks()
        self._executed_call_ids.clear()
        self.input_audio_buffer = array("h")
        self.conversation.clear()
        _CONVERSATION_ITEMS.set(0)
        bind_session_id(None)

    async def reset(self) -> None:
        """Disconnect, drop every handler and return to the initial configuration."""
        await self.disconnect()
        self.clear_event_handlers()
        self.realtime.clear_event_handlers()
        self._reset_config()
        self._add_api_event_handlers()

    # ==================== Session ====================

    def get_turn_detection_type(self) -> Optional[str]:
        turn_detection = self.session_config.turn_detection
        return turn_detection.type if turn_detection is not None else None

    def _effective_tools(self, session: SessionConfig) -> List[Dict[str, Any]]:
        tools = []
        for tool in session.tools:
            definition = {"type": "function", **tool}
            if definition.get("name") in self.tools:
                raise ConfigurationError(f'Tool "{definition.get("name")}" has already been defined')
            tools.append(definition)
        tools.extend(self.tools.to_openai_realtime_schema())
        return tools

    def update_session(self, **fields: Any) -> None:
        """
        Merge ``fields`` into the session configuration.

        Only the given fields change; passing ``None`` is a value (for example
        ``turn_detection=None`` switches to manual commits). The update is sent
        immediately when connected, otherwise on ``connect()``.

        Raises:
            ConfigurationError: Unknown field, invalid value, or an inline tool
                whose name is already registered with ``add_tool``
        """
        unknown = sorted(set(fields) - set(SessionConfig.model_fields))
        if unknown:
            raise ConfigurationError(f"Unknown session fields: {', '.join(unknown)}")
        merged = {**self.session_config.model_dump(), **fields}
        try:
            session = SessionConfig.model_validate(merged)
        except ValidationError as exc:
            raise ConfigurationError(f"Invalid session configuration: {exc}") from exc

        tools = self._effective_tools(session)
        self.session_config = session
        if self.realtime.is_connected():
            payload = session.model_dump()
            payload["tools"] = tools
            self.realtime.send("session.update", {"session": payload})

    def add_tool(
        self,
        definition: Union[ToolDefinition, Mapping[str, Any]],
        handler: ToolHandler,
    ) -> RegisteredTool:
        """
        Register a tool and announce it to the server.

        Raises:
            ConfigurationError: Missing name, duplicate name, non-callable handler,
                or a clash with an inline session tool
        """
        registered = self.tools.register(definition, handler)
        try:
            self.update_session()
        except ConfigurationError:
            self.tools.unregister(registered.definition.name)
            raise
        return registered

    def remove_tool(self, name: str) -> None:
        """
        Raises:
            ToolNotFoundError: If no tool with that name is registered
        """
        self.tools.unregister(name)
        self.update_session()

    # ==================== Conversation commands ====================

    def delete_item(self, item_id: str) -> None:
        """
        Raises:
            ItemNotFoundError: If the item is not in the local conversation
        """
        if self.conversation.get_item(item_id) is None:
            raise ItemNotFoundError(item_id, "delete_item")
        self.realtime.send("conversation.item.delete", {"item_id": item_id})

    def send_user_message_content(self, content: Optional[Iterable[Dict[str, Any]]] = None) -> None:
        """
        Send a user message and request a response.

        ``input_audio`` parts may carry raw audio (bytes, ``array`` or a sample
        list); it is base64-encoded before sending.
        """
        parts = []
        for part in content or []:
            part = dict(part)
            if part.get("type") == "input_audio" and not isinstance(part.get("audio"), str):
                part["audio"] = array_buffer_to_base64(part.get("audio") or b"")
            parts.append(part)
        if parts:
            self.realtime.send("conversation.item.create", {
                "item": {"type": ItemType.MESSAGE.value, "role": "user", "content": parts},
            })
        self.create_response()

    def append_input_audio(self, samples: SampleInput) -> None:
        """Stream PCM16 samples to the server buffer and keep a local copy."""
        samples = as_samples(samples)
        if not len(samples):
            return
        self.realtime.send("input_audio_buffer.append", {"audio": array_buffer_to_base64(samples)})
        self.input_audio_buffer.extend(samples)

    def create_response(self) -> None:
        """
        Ask the model to respond.

        Without server VAD, pending input audio is committed first and queued
        for the user item the server creates from it.
        """
        if self.get_turn_detection_type() is None and len(self.input_audio_buffer):
            self.realtime.send("input_audio_buffer.commit")
            self.conversation.queue_input_audio(self.input_audio_buffer)
            self.input_audio_buffer = array("h")
        self.realtime.send("response.create")

    def cancel_response(self, item_id: Optional[str] = None, sample_count: int = 0) -> Optional[ConversationItem]:
        """
        Cancel generation and truncate the assistant audio already played.

        Args:
            item_id: Assistant message being played; omit for a bare cancel
            sample_count: Samples of that item the user actually heard

        Returns:
            The truncated item, or None for a bare cancel

        Raises:
            ItemNotFoundError: If ``item_id`` is unknown
            ConversationError: If the item is not an assistant message or has no audio
        """
        if not item_id:
            self.realtime.send("response.cancel")
            return None

        item = self.conversation.get_item(item_id)
        if item is None:
            raise ItemNotFoundError(item_id, "cancel_response")
        if item.type != ItemType.MESSAGE.value:
            raise ConversationError('Can only cancel_response messages with type "message"')
        if not item.is_assistant_message:
            raise ConversationError('Can only cancel_response messages with role "assistant"')

        self.realtime.send("response.cancel")
        audio_index = item.audio_content_index()
        if audio_index == -1:
            raise ConversationError("Could not find audio on item to cancel")
        self.realtime.send("conversation.item.truncate", {
            "item_id": item_id,
            "content_index": audio_index,
            "audio_end_ms": samples_to_ms(sample_count, self.conversation.default_frequency),
        })
        return item

    # ==================== Waiting ====================

    async def wait_for_next_item(self, timeout: Optional[float] = None) -> ConversationItem:
        event = await self.wait_for_next("conversation.item.appended", timeout=timeout)
        return event["item"]

    async def wait_for_next_completed_item(self, timeout: Optional[float] = None) -> ConversationItem:
        event = await self.wait_for_next("conversation.item.completed", timeout=timeout)
        return event["item"]
