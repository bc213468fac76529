"""
Conversation assembler.

Consumes server events in receipt order and maintains the ordered item
collection, the per-item formatted view and response bookkeeping. Each event
is applied as a merge against existing state so that replays and the known
ordering races (transcription completed before item created, item created
after output_item.done) degrade to "nothing to report yet" instead of errors.

Every processor returns ``(item, delta)``. ``item`` is ``None`` when state has
not settled; callers must treat that as "ignore", not as a failure.
"""

from array import array
from collections import deque
from enum import Enum
from typing import Any, Deque, Dict, List, Optional, Tuple

import structlog

from ..errors import ConversationError, ItemNotFoundError
from ..utils.audio import (
    DEFAULT_SAMPLE_RATE,
    SampleInput,
    as_samples,
    base64_to_samples,
    ms_to_sample_index,
)
from .models import (
    ContentPart,
    ConversationItem,
    FormattedTool,
    ItemRole,
    ItemStatus,
    ItemType,
    QueuedSpeech,
    ResponseRecord,
)

logger = structlog.get_logger(__name__)

ProcessResult = Tuple[Optional[ConversationItem], Optional[Dict[str, Any]]]


class ServerEventType(str, Enum):
    """Server events that mutate conversation state."""
    RESPONSE_CREATED = "response.created"
    RESPONSE_OUTPUT_ITEM_ADDED = "response.output_item.added"
    RESPONSE_CONTENT_PART_ADDED = "response.content_part.added"
    RESPONSE_AUDIO_TRANSCRIPT_DELTA = "response.audio_transcript.delta"
    RESPONSE_TEXT_DELTA = "response.text.delta"
    RESPONSE_AUDIO_DELTA = "response.audio.delta"
    RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA = "response.function_call_arguments.delta"
    RESPONSE_OUTPUT_ITEM_DONE = "response.output_item.done"
    RESPONSE_DONE = "response.done"
    ITEM_CREATED = "conversation.item.created"
    ITEM_TRUNCATED = "conversation.item.truncated"
    ITEM_DELETED = "conversation.item.deleted"
    INPUT_AUDIO_TRANSCRIPTION_COMPLETED = "conversation.item.input_audio_transcription.completed"
    SPEECH_STARTED = "input_audio_buffer.speech_started"
    SPEECH_STOPPED = "input_audio_buffer.speech_stopped"


class RealtimeConversation:
    """Ordered, queryable conversation state rebuilt from the event stream."""

    _PROCESSORS: Dict[ServerEventType, str] = {
        ServerEventType.RESPONSE_CREATED: "_process_response_created",
        ServerEventType.RESPONSE_OUTPUT_ITEM_ADDED: "_process_output_item_added",
        ServerEventType.RESPONSE_CONTENT_PART_ADDED: "_process_content_part_added",
        ServerEventType.RESPONSE_AUDIO_TRANSCRIPT_DELTA: "_process_audio_transcript_delta",
        ServerEventType.RESPONSE_TEXT_DELTA: "_process_text_delta",
        ServerEventType.RESPONSE_AUDIO_DELTA: "_process_audio_delta",
        ServerEventType.RESPONSE_FUNCTION_CALL_ARGUMENTS_DELTA: "_process_function_call_arguments_delta",
        ServerEventType.RESPONSE_OUTPUT_ITEM_DONE: "_process_output_item_done",
        ServerEventType.RESPONSE_DONE: "_process_response_done",
        ServerEventType.ITEM_CREATED: "_process_item_created",
        ServerEventType.ITEM_TRUNCATED: "_process_item_truncated",
        ServerEventType.ITEM_DELETED: "_process_item_deleted",
        ServerEventType.INPUT_AUDIO_TRANSCRIPTION_COMPLETED: "_process_input_audio_transcription_completed",
        ServerEventType.SPEECH_STARTED: "_process_speech_started",
        ServerEventType.SPEECH_STOPPED: "_process_speech_stopped",
    }

    def __init__(self, sample_rate: int = DEFAULT_SAMPLE_RATE):
        self.default_frequency = sample_rate
        self.items: List[ConversationItem] = []
        self.item_lookup: Dict[str, ConversationItem] = {}
        self.responses: List[ResponseRecord] = []
        self.response_lookup: Dict[str, ResponseRecord] = {}
        self.queued_speech_items: Dict[str, QueuedSpeech] = {}
        self.queued_transcript_items: Dict[str, str] = {}
        self.queued_input_audio: Deque[array] = deque()

    def clear(self) -> None:
        """Drop all items, responses and staged data."""
        self.items = []
        self.item_lookup = {}
        self.responses = []
        self.response_lookup = {}
        self.queued_speech_items = {}
        self.queued_transcript_items = {}
        self.queued_input_audio = deque()

    def queue_input_audio(self, samples: SampleInput) -> array:
        """Stage a committed input buffer for the next created user audio item."""
        buffer = as_samples(samples)
        self.queued_input_audio.append(buffer)
        return buffer

    def process_event(self, event: Dict[str, Any], *args: Any) -> ProcessResult:
        """
        Apply one server event and report what changed.

        Raises:
            ConversationError: If the event type has no processor
        """
        event_type = event.get("type")
        try:
            kind = ServerEventType(event_type)
        except ValueError:
            raise ConversationError(f'Missing conversation event processor for "{event_type}"') from None
        processor = getattr(self, self._PROCESSORS[kind])
        return processor(event, *args)

    def get_item(self, item_id: str) -> Optional[ConversationItem]:
        return self.item_lookup.get(item_id)

    def get_items(self) -> List[ConversationItem]:
        return list(self.items)

    def get_response(self, response_id: str) -> Optional[ResponseRecord]:
        return self.response_lookup.get(response_id)

    # ==================== Ordering ====================

    def _index_of(self, item: ConversationItem) -> int:
        for index, candidate in enumerate(self.items):
            if candidate is item:
                return index
        return -1

    def _insert_item(self, item: ConversationItem) -> None:
        previous = self.item_lookup.get(item.previous_item_id) if item.previous_item_id else None
        if previous is not None:
            self.items.insert(self._index_of(previous) + 1, item)
        else:
            self.items.append(item)
        self.item_lookup[item.id] = item

    def _adopt_item(self, payload: Dict[str, Any]) -> ConversationItem:
        existing = self.item_lookup.get(payload["id"])
        if existing is not None:
            existing.merge(payload)
            return existing
        item = ConversationItem.from_payload(payload)
        self._apply_queued_data(item)
        self._insert_item(item)
        return item

    def _apply_queued_data(self, item: ConversationItem) -> None:
        speech = self.queued_speech_items.pop(item.id, None)
        if speech is not None and speech.audio is not None and not len(item.formatted.audio):
            self._attach_input_audio(item, speech.audio)

        transcript = self.queued_transcript_items.pop(item.id, None)
        if transcript is not None:
            for part in item.content:
                if part.type == "input_audio":
                    part.transcript = transcript
                    break
            item.formatted.transcript = transcript

        is_user_audio = item.role == ItemRole.USER.value and item.has_input_audio
        if is_user_audio and not len(item.formatted.audio) and self.queued_input_audio:
            self._attach_input_audio(item, self.queued_input_audio.popleft())

    @staticmethod
    def _attach_input_audio(item: ConversationItem, samples: array) -> None:
        for part in item.content:
            if part.type == "input_audio" and not len(part.audio):
                part.audio = array("h", samples)
                break
        item.formatted.audio = array("h", samples)

    @staticmethod
    def _content_part(item: ConversationItem, index: int, default_type: str) -> ContentPart:
        while len(item.content) <= index:
            item.content.append(ContentPart(type=default_type))
        return item.content[index]

    def _item_for_delta(self, event: Dict[str, Any]) -> Optional[ConversationItem]:
        item = self.item_lookup.get(event.get("item_id"))
        if item is None:
            logger.warning(
                "Delta for unknown item ignored",
                event_type=event.get("type"),
                item_id=event.get("item_id"),
            )
        return item

    # ==================== Response lifecycle ====================

    def _process_response_created(self, event: Dict[str, Any]) -> ProcessResult:
        response = event.get("response") or {}
        response_id = response.get("id")
        if response_id and response_id not in self.response_lookup:
            record = ResponseRecord(id=response_id)
            record.finalize(response)
            self.response_lookup[response_id] = record
            self.responses.append(record)
        return None, None

    def _process_response_done(self, event: Dict[str, Any]) -> ProcessResult:
        response = event.get("response") or {}
        response_id = response.get("id")
        if not response_id:
            return None, None
        record = self.response_lookup.get(response_id)
        if record is None:
            record = ResponseRecord(id=response_id)
            self.response_lookup[response_id] = record
            self.responses.append(record)
        record.finalize(response)
        logger.debug(
            "Response finished",
            response_id=response_id,
            status=record.status,
            output_items=len(record.output),
        )
        return None, None

    def _process_output_item_added(self, event: Dict[str, Any]) -> ProcessResult:
        payload = event.get("item")
        if not payload:
            raise ConversationError('response.output_item.added: Missing "item"')
        item = self._adopt_item(payload)
        response = self.response_lookup.get(event.get("response_id"))
        if response is not None and item.id not in response.output:
            response.output.append(item.id)
        return item, None

    def _process_output_item_done(self, event: Dict[str, Any]) -> ProcessResult:
        payload = event.get("item")
        if not payload:
            raise ConversationError('response.output_item.done: Missing "item"')
        item = self._adopt_item(payload)
        response = self.response_lookup.get(event.get("response_id"))
        if response is not None and item.id not in response.output:
            response.output.append(item.id)
        return item, None

    # ==================== Content streaming ====================

    def _process_content_part_added(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._item_for_delta(event)
        if item is None:
            return None, None
        part = ContentPart.from_payload(event.get("part") or {})
        if part.type == "audio" and part.transcript is None:
            part.transcript = ""
        content_index = event.get("content_index")
        if content_index is not None and content_index < len(item.content):
            # replayed event, keep what has already streamed in
            return item, None
        item.content.append(part)
        if part.transcript:
            item.formatted.transcript += part.transcript
        if part.text:
            item.formatted.text += part.text
        return item, None

    def _process_audio_transcript_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._item_for_delta(event)
        if item is None:
            return None, None
        delta = event.get("delta") or ""
        part = self._content_part(item, event.get("content_index", 0), "audio")
        part.transcript = (part.transcript or "") + delta
        item.formatted.transcript += delta
        return item, {"transcript": delta}

    def _process_text_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._item_for_delta(event)
        if item is None:
            return None, None
        delta = event.get("delta") or ""
        part = self._content_part(item, event.get("content_index", 0), "text")
        part.text += delta
        item.formatted.text += delta
        return item, {"text": delta}

    def _process_audio_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._item_for_delta(event)
        if item is None:
            return None, None
        samples = base64_to_samples(event.get("delta") or "")
        part = self._content_part(item, event.get("content_index", 0), "audio")
        part.audio.extend(samples)
        item.formatted.audio.extend(samples)
        return item, {"audio": samples}

    def _process_function_call_arguments_delta(self, event: Dict[str, Any]) -> ProcessResult:
        item = self._item_for_delta(event)
        if item is None:
            return None, None
        delta = event.get("delta") or ""
        item.arguments += delta
        if item.formatted.tool is None:
            item.formatted.tool = FormattedTool(
                name=item.name or "",
                call_id=item.call_id or event.get("call_id") or "",
            )
        item.formatted.tool.arguments += delta
        return item, {"arguments": delta}

    # ==================== Conversation items ====================

    def _process_item_created(self, event: Dict[str, Any]) -> ProcessResult:
        payload = event.get("item")
        if not payload:
            raise ConversationError('conversation.item.created: Missing "item"')
        item = self._adopt_item(payload)
        if item.type == ItemType.MESSAGE.value and item.role == ItemRole.USER.value:
            item.status = ItemStatus.COMPLETED.value
        elif item.type == ItemType.FUNCTION_CALL_OUTPUT.value:
            item.status = ItemStatus.COMPLETED.value
        return item, None

    def _process_item_truncated(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event.get("item_id")
        item = self.item_lookup.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id, "item.truncated")
        end_index = ms_to_sample_index(event.get("audio_end_ms", 0), self.default_frequency)
        content_index = event.get("content_index", 0)
        if content_index < len(item.content):
            part = item.content[content_index]
            part.audio = part.audio[:end_index]
            if part.transcript is not None:
                part.transcript = ""
        item.formatted.transcript = ""
        item.formatted.audio = item.formatted.audio[:end_index]
        return item, None

    def _process_item_deleted(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event.get("item_id")
        item = self.item_lookup.get(item_id)
        if item is None:
            raise ItemNotFoundError(item_id, "item.deleted")
        del self.item_lookup[item_id]
        index = self._index_of(item)
        if index >= 0:
            del self.items[index]
        self.queued_speech_items.pop(item_id, None)
        self.queued_transcript_items.pop(item_id, None)
        return item, None

    def _process_input_audio_transcription_completed(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event.get("item_id")
        transcript = event.get("transcript") or ""
        formatted_transcript = transcript or " "
        item = self.item_lookup.get(item_id)
        if item is None:
            # transcription can race conversation.item.created; applied on creation
            self.queued_transcript_items[item_id] = formatted_transcript
            return None, None
        part = self._content_part(item, event.get("content_index", 0), "input_audio")
        part.transcript = transcript
        item.formatted.transcript = formatted_transcript
        return item, {"transcript": transcript}

    # ==================== Server VAD ====================

    def _process_speech_started(self, event: Dict[str, Any]) -> ProcessResult:
        item_id = event.get("item_id")
        self.queued_speech_items[item_id] = QueuedSpeech(audio_start_ms=event.get("audio_start_ms", 0))
        return None, None

    def _process_speech_stopped(
        self,
        event: Dict[str, Any],
        input_audio_buffer: Optional[SampleInput] = None,
    ) -> ProcessResult:
        item_id = event.get("item_id")
        speech = self.queued_speech_items.get(item_id)
        if speech is None:
            speech = QueuedSpeech(audio_start_ms=0)
            self.queued_speech_items[item_id] = speech
        speech.audio_end_ms = event.get("audio_end_ms", 0)
        if input_audio_buffer is not None and len(input_audio_buffer):
            buffer = as_samples(input_audio_buffer)
            start_index = ms_to_sample_index(speech.audio_start_ms, self.default_frequency)
            end_index = ms_to_sample_index(speech.audio_end_ms, self.default_frequency)
            speech.audio = buffer[start_index:end_index]

        item = self.item_lookup.get(item_id)
        if item is not None and speech.audio is not None and not len(item.formatted.audio):
            self._attach_input_audio(item, speech.audio)
            del self.queued_speech_items[item_id]
            return item, None
        return None, None


_unhandled = set(ServerEventType) - set(RealtimeConversation._PROCESSORS)
if _unhandled:
    raise RuntimeError(f"Conversation processors missing for: {sorted(e.value for e in _unhandled)}")
