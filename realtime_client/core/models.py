"""
Core data models for the realtime conversation.

Server payloads arrive as plain dicts; the assembler keeps them as typed
dataclasses so the formatted view and the raw content can be updated together.
``to_dict()`` renders the wire-like mapping for consumers.
"""

from array import array
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional

from ..utils.audio import as_samples, base64_to_samples


class ItemType(str, Enum):
    MESSAGE = "message"
    FUNCTION_CALL = "function_call"
    FUNCTION_CALL_OUTPUT = "function_call_output"


class ItemRole(str, Enum):
    SYSTEM = "system"
    USER = "user"
    ASSISTANT = "assistant"


class ItemStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    INCOMPLETE = "incomplete"


class ResponseStatus(str, Enum):
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    INCOMPLETE = "incomplete"
    FAILED = "failed"

    @property
    def is_terminal(self) -> bool:
        return self is not ResponseStatus.IN_PROGRESS


def _decode_audio(value: Any) -> array:
    """Audio in content payloads is base64 text on the wire; local code may pass samples."""
    if value is None:
        return array("h")
    if isinstance(value, str):
        return base64_to_samples(value) if value else array("h")
    return as_samples(value)


@dataclass
class ContentPart:
    """One part of a message: input_text, input_audio, text or audio."""
    type: str
    text: str = ""
    transcript: Optional[str] = None
    audio: array = field(default_factory=lambda: array("h"))

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ContentPart":
        return cls(
            type=payload.get("type", "text"),
            text=payload.get("text") or "",
            transcript=payload.get("transcript"),
            audio=_decode_audio(payload.get("audio")),
        )

    @property
    def is_audio(self) -> bool:
        return self.type in ("audio", "input_audio")

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {"type": self.type}
        if self.type in ("text", "input_text"):
            result["text"] = self.text
        if self.is_audio:
            result["transcript"] = self.transcript
        return result


@dataclass
class FormattedTool:
    """Tool descriptor synthesized from a function_call item."""
    name: str
    call_id: str
    arguments: str = ""
    type: str = "function"

    def to_dict(self) -> Dict[str, Any]:
        return {
            "type": self.type,
            "name": self.name,
            "call_id": self.call_id,
            "arguments": self.arguments,
        }


@dataclass
class FormattedView:
    """Denormalized, consumer-friendly aggregation of an item's content."""
    text: str = ""
    transcript: str = ""
    audio: array = field(default_factory=lambda: array("h"))
    tool: Optional[FormattedTool] = None
    output: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "text": self.text,
            "transcript": self.transcript,
            "audio": list(self.audio),
        }
        if self.tool is not None:
            result["tool"] = self.tool.to_dict()
        if self.output is not None:
            result["output"] = self.output
        return result


@dataclass
class ConversationItem:
    """A message, function call or function call output."""
    id: str
    type: str
    status: str = ItemStatus.IN_PROGRESS.value
    role: Optional[str] = None
    previous_item_id: Optional[str] = None
    content: List[ContentPart] = field(default_factory=list)
    call_id: Optional[str] = None
    name: Optional[str] = None
    arguments: str = ""
    output: Optional[str] = None
    formatted: FormattedView = field(default_factory=FormattedView)

    @classmethod
    def from_payload(cls, payload: Dict[str, Any]) -> "ConversationItem":
        item = cls(
            id=payload["id"],
            type=payload.get("type", ItemType.MESSAGE.value),
            status=payload.get("status") or ItemStatus.IN_PROGRESS.value,
            role=payload.get("role"),
            previous_item_id=payload.get("previous_item_id"),
            content=[ContentPart.from_payload(part) for part in payload.get("content") or []],
            call_id=payload.get("call_id"),
            name=payload.get("name"),
            arguments=payload.get("arguments") or "",
            output=payload.get("output"),
        )
        for part in item.content:
            if part.type in ("text", "input_text"):
                item.formatted.text += part.text
            if part.transcript:
                item.formatted.transcript += part.transcript
            if len(part.audio):
                item.formatted.audio.extend(part.audio)
        if item.type == ItemType.FUNCTION_CALL.value:
            item.formatted.tool = FormattedTool(
                name=item.name or "",
                call_id=item.call_id or "",
                arguments=item.arguments,
            )
        elif item.type == ItemType.FUNCTION_CALL_OUTPUT.value:
            item.formatted.output = item.output
        return item

    @property
    def is_assistant_message(self) -> bool:
        return self.type == ItemType.MESSAGE.value and self.role == ItemRole.ASSISTANT.value

    @property
    def has_input_audio(self) -> bool:
        return any(part.type == "input_audio" for part in self.content)

    def audio_content_index(self) -> int:
        """Index of the first ``audio`` part, or -1."""
        for index, part in enumerate(self.content):
            if part.type == "audio":
                return index
        return -1

    def merge(self, payload: Dict[str, Any]) -> None:
        """
        Merge scalar fields from a repeated server payload.

        Content parts are only adopted when none have been accumulated yet, so a
        late ``conversation.item.created`` never discards streamed deltas.
        """
        for key in ("role", "previous_item_id", "call_id", "name", "output"):
            value = payload.get(key)
            if value is not None:
                setattr(self, key, value)
        status = payload.get("status")
        if status and not (status == ItemStatus.IN_PROGRESS.value and self.status != status):
            self.status = status
        arguments = payload.get("arguments")
        if arguments and len(arguments) >= len(self.arguments):
            self.arguments = arguments
        if not self.content and payload.get("content"):
            fresh = ConversationItem.from_payload({**payload, "id": self.id})
            self.content = fresh.content
            self.formatted.text = self.formatted.text or fresh.formatted.text
            self.formatted.transcript = self.formatted.transcript or fresh.formatted.transcript
            if not len(self.formatted.audio):
                self.formatted.audio = fresh.formatted.audio
        if self.type == ItemType.FUNCTION_CALL.value:
            tool = self.formatted.tool or FormattedTool(name="", call_id="")
            tool.name = self.name or tool.name
            tool.call_id = self.call_id or tool.call_id
            tool.arguments = self.arguments
            self.formatted.tool = tool
        elif self.type == ItemType.FUNCTION_CALL_OUTPUT.value and self.output is not None:
            self.formatted.output = self.output

    def to_dict(self) -> Dict[str, Any]:
        result: Dict[str, Any] = {
            "id": self.id,
            "object": "realtime.item",
            "type": self.type,
            "status": self.status,
            "previous_item_id": self.previous_item_id,
            "formatted": self.formatted.to_dict(),
        }
        if self.type == ItemType.MESSAGE.value:
            result["role"] = self.role
            result["content"] = [part.to_dict() for part in self.content]
        elif self.type == ItemType.FUNCTION_CALL.value:
            result.update(call_id=self.call_id, name=self.name, arguments=self.arguments)
        else:
            result.update(call_id=self.call_id, output=self.output)
        return result


@dataclass
class ResponseRecord:
    """In-flight bookkeeping for one server response."""
    id: str
    status: str = ResponseStatus.IN_PROGRESS.value
    status_details: Optional[Dict[str, Any]] = None
    output: List[str] = field(default_factory=list)
    usage: Optional[Dict[str, Any]] = None

    @property
    def is_terminal(self) -> bool:
        return self.status != ResponseStatus.IN_PROGRESS.value

    def finalize(self, payload: Dict[str, Any]) -> None:
        status = payload.get("status")
        if status and not (self.is_terminal and status == ResponseStatus.IN_PROGRESS.value):
            self.status = status
        self.status_details = payload.get("status_details", self.status_details)
        self.usage = payload.get("usage", self.usage)
        for item in payload.get("output") or []:
            item_id = item.get("id") if isinstance(item, dict) else item
            if item_id and item_id not in self.output:
                self.output.append(item_id)


@dataclass
class QueuedSpeech:
    """Speech window reported by server VAD before its item exists."""
    audio_start_ms: int
    audio_end_ms: Optional[int] = None
    audio: Optional[array] = None
