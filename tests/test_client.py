"""
Tests for RealtimeClient.

Server events are played through a fake transport; assertions are made on the
commands the client sends back and on the events it re-announces.
"""

import asyncio
import base64
import json
from array import array

import pytest

from realtime_client.errors import (
    AlreadyConnectedError,
    ConfigurationError,
    ConversationError,
    ItemNotFoundError,
    NotConnectedError,
)
from realtime_client.utils.audio import array_buffer_to_base64


WEATHER = {
    "name": "get_weather",
    "description": "Look up the weather",
    "parameters": {"type": "object", "properties": {"city": {"type": "string"}}},
}


def _assistant_audio_reply(transport, item_id="item_a1", samples=(1, 2, 3)):
    transport.receive({"type": "response.created", "response": {"id": "resp_1", "status": "in_progress"}})
    transport.receive({
        "type": "response.output_item.added",
        "response_id": "resp_1",
        "item": {"id": item_id, "type": "message", "role": "assistant", "status": "in_progress", "content": []},
    })
    transport.receive({
        "type": "response.content_part.added",
        "item_id": item_id,
        "content_index": 0,
        "part": {"type": "audio", "transcript": ""},
    })
    transport.receive({
        "type": "response.audio.delta",
        "item_id": item_id,
        "content_index": 0,
        "delta": array_buffer_to_base64(array("h", samples)),
    })


def _user_item(item_id, content):
    return {"type": "conversation.item.created", "item": {"id": item_id, "type": "message", "role": "user", "content": content}}


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


class TestConnection:
    """connect / disconnect / reset and session wait."""

    @pytest.mark.asyncio
    async def test_connect_sends_session(self, client, transport):
        await client.connect()

        assert transport.sent_types() == ["session.update"]
        session = transport.sent[0]["session"]
        assert session["voice"] == "alloy"
        assert session["turn_detection"] is None
        assert session["tools"] == []

    @pytest.mark.asyncio
    async def test_connect_twice_rejected(self, client):
        await client.connect()

        with pytest.raises(AlreadyConnectedError):
            await client.connect()

    @pytest.mark.asyncio
    async def test_wait_for_session_created_requires_connection(self, client):
        with pytest.raises(NotConnectedError):
            await client.wait_for_session_created()

    @pytest.mark.asyncio
    async def test_wait_for_session_created(self, client, transport):
        await client.connect()
        asyncio.get_running_loop().call_later(
            0.01, transport.receive, {"type": "session.created", "session": {"id": "sess_1"}}
        )

        await asyncio.wait_for(client.wait_for_session_created(), timeout=1)

        assert client.session_created is True

    @pytest.mark.asyncio
    async def test_disconnect_clears_conversation(self, client, transport):
        await client.connect()
        _assistant_audio_reply(transport)

        await client.disconnect()

        assert not client.is_connected()
        assert client.conversation.get_items() == []
        assert client.session_created is False

    @pytest.mark.asyncio
    async def test_disconnect_discards_staged_audio(self, client, transport):
        await client.connect()
        client.append_input_audio(array("h", [1, 2, 3]))

        await client.disconnect()
        await client.connect()
        transport.sent.clear()
        client.create_response()

        assert len(client.input_audio_buffer) == 0
        assert transport.sent_types() == ["response.create"]

    @pytest.mark.asyncio
    async def test_wait_for_session_created_fails_when_connection_drops(self, client, transport):
        await client.connect()
        asyncio.get_running_loop().call_later(0.01, setattr, transport, "connected", False)

        with pytest.raises(NotConnectedError):
            await asyncio.wait_for(client.wait_for_session_created(), timeout=1)

    @pytest.mark.asyncio
    async def test_reset_restores_defaults_and_rewires(self, client, transport):
        await client.connect()
        client.add_tool(WEATHER, lambda args: None)
        client.update_session(voice="verse")

        await client.reset()
        await client.connect()
        _assistant_audio_reply(transport)

        assert len(client.tools) == 0
        assert client.session_config.voice == "alloy"
        assert client.conversation.get_item("item_a1") is not None

    def test_commands_require_connection(self, client):
        with pytest.raises(NotConnectedError):
            client.create_response()


class TestUpdateSession:
    """Partial merges, validation and tool composition."""

    @pytest.mark.asyncio
    async def test_deferred_until_connect(self, client, transport):
        client.update_session(voice="verse", instructions="Be brief.")
        assert transport.sent == []

        await client.connect()

        session = transport.sent[0]["session"]
        assert session["voice"] == "verse"
        assert session["instructions"] == "Be brief."

    @pytest.mark.asyncio
    async def test_unspecified_fields_untouched(self, client, transport):
        await client.connect()
        client.update_session(voice="verse")
        client.update_session(temperature=0.6)

        session = transport.sent[-1]["session"]
        assert session["voice"] == "verse"
        assert session["temperature"] == 0.6

    def test_explicit_none_disables_turn_detection(self, client):
        client.update_session(turn_detection={"type": "server_vad"})
        assert client.get_turn_detection_type() == "server_vad"

        client.update_session(turn_detection=None)
        assert client.get_turn_detection_type() is None

    def test_unknown_field_rejected(self, client):
        with pytest.raises(ConfigurationError, match="volume"):
            client.update_session(volume=11)

    def test_invalid_value_rejected(self, client):
        with pytest.raises(ConfigurationError):
            client.update_session(input_audio_format="mp3")
        assert client.session_config.input_audio_format == "pcm16"

    @pytest.mark.asyncio
    async def test_inline_and_registered_tools_combined(self, client, transport):
        await client.connect()
        client.add_tool(WEATHER, lambda args: None)

        client.update_session(tools=[{"name": "echo", "description": "Echo", "parameters": {"type": "object"}}])

        tools = transport.sent[-1]["session"]["tools"]
        assert [(t["type"], t["name"]) for t in tools] == [("function", "echo"), ("function", "get_weather")]

    def test_inline_tool_clashing_with_registered_rejected(self, client):
        client.add_tool(WEATHER, lambda args: None)

        with pytest.raises(ConfigurationError, match='Tool "get_weather" has already been defined'):
            client.update_session(tools=[WEATHER])
        assert client.session_config.tools == []

    def test_add_tool_clashing_with_inline_rolled_back(self, client):
        client.update_session(tools=[WEATHER])

        with pytest.raises(ConfigurationError):
            client.add_tool(WEATHER, lambda args: None)
        assert "get_weather" not in client.tools

    def test_add_remove_add(self, client):
        client.add_tool(WEATHER, lambda args: None)
        with pytest.raises(ConfigurationError, match="already added"):
            client.add_tool(WEATHER, lambda args: None)

        client.remove_tool("get_weather")
        client.add_tool(WEATHER, lambda args: None)

        assert client.tools.list_tools() == ["get_weather"]


class TestAudioAndResponses:
    """Input audio staging, commit and response creation."""

    @pytest.mark.asyncio
    async def test_manual_mode_commits_before_response(self, client, transport):
        await client.connect()
        transport.sent.clear()

        client.append_input_audio(array("h", [1, 2, 3]))
        client.append_input_audio([4])
        client.create_response()

        assert transport.sent_types() == [
            "input_audio_buffer.append",
            "input_audio_buffer.append",
            "input_audio_buffer.commit",
            "response.create",
        ]
        assert list(client.conversation.queued_input_audio) == [array("h", [1, 2, 3, 4])]
        assert len(client.input_audio_buffer) == 0

    @pytest.mark.asyncio
    async def test_committed_audio_lands_on_user_item(self, client, transport):
        await client.connect()
        client.append_input_audio([5, 6])
        client.create_response()

        transport.receive(_user_item("item_u1", [{"type": "input_audio", "transcript": None}]))

        assert client.conversation.get_item("item_u1").formatted.audio == array("h", [5, 6])

    @pytest.mark.asyncio
    async def test_server_vad_never_commits(self, client, transport):
        client.update_session(turn_detection={"type": "server_vad"})
        await client.connect()
        transport.sent.clear()

        client.append_input_audio([1, 2])
        client.create_response()

        assert transport.sent_types() == ["input_audio_buffer.append", "response.create"]
        assert len(client.input_audio_buffer) == 2

    @pytest.mark.asyncio
    async def test_empty_audio_is_noop(self, client, transport):
        await client.connect()
        transport.sent.clear()

        client.append_input_audio(b"")

        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_send_user_message_encodes_audio(self, client, transport):
        await client.connect()
        transport.sent.clear()

        client.send_user_message_content([
            {"type": "input_text", "text": "hello"},
            {"type": "input_audio", "audio": array("h", [1, -2])},
        ])

        create, response = transport.sent
        assert create["type"] == "conversation.item.create"
        content = create["item"]["content"]
        assert content[0] == {"type": "input_text", "text": "hello"}
        assert base64.b64decode(content[1]["audio"]) == b"\x01\x00\xfe\xff"
        assert response["type"] == "response.create"

    @pytest.mark.asyncio
    async def test_send_empty_message_only_requests_response(self, client, transport):
        await client.connect()
        transport.sent.clear()

        client.send_user_message_content([])

        assert transport.sent_types() == ["response.create"]


class TestCancelResponse:
    """Cancellation with sample-accurate truncation."""

    @pytest.mark.asyncio
    async def test_bare_cancel(self, client, transport):
        await client.connect()
        transport.sent.clear()

        assert client.cancel_response() is None
        assert transport.sent_types() == ["response.cancel"]

    @pytest.mark.asyncio
    async def test_cancel_truncates_at_played_samples(self, client, transport):
        await client.connect()
        _assistant_audio_reply(transport)
        transport.sent.clear()

        item = client.cancel_response("item_a1", sample_count=36000)

        assert item.id == "item_a1"
        assert transport.sent[0]["type"] == "response.cancel"
        assert transport.sent[1] == {
            "type": "conversation.item.truncate",
            "item_id": "item_a1",
            "content_index": 0,
            "audio_end_ms": 1500,
        }

    @pytest.mark.asyncio
    async def test_cancel_unknown_item(self, client, transport):
        await client.connect()
        transport.sent.clear()

        with pytest.raises(ItemNotFoundError):
            client.cancel_response("missing", 10)
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_cancel_user_item_rejected_before_send(self, client, transport):
        await client.connect()
        transport.receive(_user_item("item_u1", [{"type": "input_text", "text": "hi"}]))
        transport.sent.clear()

        with pytest.raises(ConversationError, match="assistant"):
            client.cancel_response("item_u1", 10)
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_cancel_item_without_audio(self, client, transport):
        await client.connect()
        transport.receive({
            "type": "response.output_item.added",
            "item": {"id": "item_t1", "type": "message", "role": "assistant", "content": [{"type": "text", "text": ""}]},
        })
        transport.sent.clear()

        with pytest.raises(ConversationError, match="Could not find audio"):
            client.cancel_response("item_t1", 10)
        assert transport.sent_types() == ["response.cancel"]


class TestItems:
    """delete_item and re-announced item events."""

    @pytest.mark.asyncio
    async def test_delete_item(self, client, transport):
        await client.connect()
        _assistant_audio_reply(transport)
        transport.sent.clear()

        client.delete_item("item_a1")

        assert transport.sent == [{"type": "conversation.item.delete", "item_id": "item_a1"}]

    @pytest.mark.asyncio
    async def test_delete_unknown_item(self, client):
        await client.connect()

        with pytest.raises(ItemNotFoundError):
            client.delete_item("missing")

    @pytest.mark.asyncio
    async def test_user_item_appended_and_completed(self, client, transport):
        await client.connect()
        seen = []
        client.on("conversation.updated", lambda e: seen.append(("updated", e["item"].id)))
        client.on("conversation.item.appended", lambda e: seen.append(("appended", e["item"].id)))
        client.on("conversation.item.completed", lambda e: seen.append(("completed", e["item"].id)))

        transport.receive(_user_item("item_u1", [{"type": "input_text", "text": "hi"}]))

        assert seen == [("updated", "item_u1"), ("appended", "item_u1"), ("completed", "item_u1")]

    @pytest.mark.asyncio
    async def test_assistant_audio_item_completed(self, client, transport):
        await client.connect()
        completed = []
        client.on("conversation.item.completed", lambda e: completed.append(e["item"]))
        _assistant_audio_reply(transport)
        assert completed == []

        transport.receive({
            "type": "response.output_item.done",
            "response_id": "resp_1",
            "item": {"id": "item_a1", "type": "message", "role": "assistant", "status": "completed", "content": []},
        })

        assert [item.id for item in completed] == ["item_a1"]
        assert completed[0].status == "completed"
        assert list(completed[0].formatted.audio) == [1, 2, 3]

    @pytest.mark.asyncio
    async def test_early_transcription_not_announced(self, client, transport):
        await client.connect()
        updates = []
        client.on("conversation.updated", updates.append)

        transport.receive({
            "type": "conversation.item.input_audio_transcription.completed",
            "item_id": "item_u9",
            "content_index": 0,
            "transcript": "hi",
        })

        assert updates == []

    @pytest.mark.asyncio
    async def test_wait_for_next_item(self, client, transport):
        await client.connect()
        asyncio.get_running_loop().call_soon(
            transport.receive, _user_item("item_u1", [{"type": "input_text", "text": "hi"}])
        )

        item = await client.wait_for_next_item(timeout=1)

        assert item.id == "item_u1"

    @pytest.mark.asyncio
    async def test_speech_started_signals_interruption(self, client, transport):
        await client.connect()
        transport.sent.clear()
        interrupted = []
        client.on("conversation.interrupted", interrupted.append)

        transport.receive({"type": "input_audio_buffer.speech_started", "item_id": "item_u1", "audio_start_ms": 0})

        assert interrupted == [None]
        assert transport.sent == []


class TestToolCalls:
    """Completed function calls run the handler and report back."""

    def _function_call(self, transport, arguments_deltas, final_arguments):
        transport.receive({
            "type": "response.output_item.added",
            "item": {"id": "item_f1", "type": "function_call", "status": "in_progress", "name": "add", "call_id": "call_1", "arguments": ""},
        })
        for delta in arguments_deltas:
            transport.receive({"type": "response.function_call_arguments.delta", "item_id": "item_f1", "call_id": "call_1", "delta": delta})
        transport.receive({
            "type": "response.output_item.done",
            "item": {"id": "item_f1", "type": "function_call", "status": "completed", "name": "add", "call_id": "call_1", "arguments": final_arguments},
        })

    @pytest.mark.asyncio
    async def test_handler_called_with_parsed_arguments(self, client, transport):
        received = []
        client.add_tool({"name": "add"}, lambda args: received.append(args) or {"ok": True})
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{"a":1', '}'], '{"a":1}')
        await transport.wait_for_next("client.response.create", timeout=1)

        assert received == [{"a": 1}]
        assert transport.sent_types() == ["conversation.item.create", "response.create"]
        output = transport.sent[0]["item"]
        assert output["type"] == "function_call_output"
        assert output["call_id"] == "call_1"
        assert json.loads(output["output"]) == {"ok": True}

    @pytest.mark.asyncio
    async def test_handler_failure_still_reports_and_responds(self, client, transport):
        def handler(args):
            raise ValueError("bad input")

        client.add_tool({"name": "add"}, handler)
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{"a":1', '}'], '{"a":1}')
        await transport.wait_for_next("client.response.create", timeout=1)

        assert transport.sent_types() == ["conversation.item.create", "response.create"]
        assert json.loads(transport.sent[0]["item"]["output"]) == {"error": "bad input"}

    @pytest.mark.asyncio
    async def test_unregistered_tool_reports_error(self, client, transport):
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{}'], '{}')
        await transport.wait_for_next("client.response.create", timeout=1)

        assert json.loads(transport.sent[0]["item"]["output"]) == {"error": 'Tool "add" has not been added'}

    @pytest.mark.asyncio
    async def test_repeated_completion_runs_handler_once(self, client, transport):
        received = []
        client.add_tool({"name": "add"}, lambda args: received.append(args) or {"ok": True})
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{"a":1}'], '{"a":1}')
        transport.receive({
            "type": "response.output_item.done",
            "item": {"id": "item_f1", "type": "function_call", "status": "completed", "name": "add", "call_id": "call_1", "arguments": '{"a":1}'},
        })
        await transport.wait_for_next("client.response.create", timeout=1)
        await _settle()

        assert received == [{"a": 1}]
        assert transport.sent_types() == ["conversation.item.create", "response.create"]

    @pytest.mark.asyncio
    async def test_incomplete_function_call_not_executed(self, client, transport):
        received = []
        client.add_tool({"name": "add"}, received.append)
        await client.connect()
        transport.sent.clear()

        transport.receive({
            "type": "response.output_item.added",
            "item": {"id": "item_f1", "type": "function_call", "status": "in_progress", "name": "add", "call_id": "call_1", "arguments": ""},
        })
        transport.receive({
            "type": "response.output_item.done",
            "item": {"id": "item_f1", "type": "function_call", "status": "incomplete", "name": "add", "call_id": "call_1", "arguments": '{"a":'},
        })
        await _settle()

        assert received == []
        assert transport.sent == []
        assert client.conversation.get_item("item_f1").status == "incomplete"

    @pytest.mark.asyncio
    async def test_disconnect_cancels_pending_tool_call(self, client, transport):
        started = asyncio.Event()

        async def slow(args):
            started.set()
            await asyncio.Event().wait()

        client.add_tool({"name": "add"}, slow)
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{}'], '{}')
        await asyncio.wait_for(started.wait(), timeout=1)
        await client.disconnect()
        await _settle()

        assert client._tool_tasks == set()
        assert transport.sent == []

    @pytest.mark.asyncio
    async def test_failed_tool_task_is_released(self, client, transport, monkeypatch):
        async def broken(tool):
            raise RuntimeError("adapter blew up")

        monkeypatch.setattr(client.tool_adapter, "execute", broken)
        await client.connect()
        transport.sent.clear()

        self._function_call(transport, ['{}'], '{}')
        await _settle()

        assert client._tool_tasks == set()
        assert transport.sent == []


class TestEventRelay:
    """realtime.event and realtime.error."""

    @pytest.mark.asyncio
    async def test_client_and_server_events_relayed(self, client, transport):
        relayed = []
        client.on("realtime.event", relayed.append)

        await client.connect()
        transport.receive({"type": "session.created", "session": {"id": "sess_1"}})

        assert [(e["source"], e["event"]["type"]) for e in relayed] == [
            ("client", "session.update"),
            ("server", "session.created"),
        ]
        assert all(e["time"] for e in relayed)

    @pytest.mark.asyncio
    async def test_server_error_redispatched(self, client, transport):
        errors = []
        client.on("realtime.error", errors.append)
        await client.connect()

        transport.receive({"type": "error", "error": {"type": "invalid_request_error", "message": "bad"}})

        assert errors[0]["error"]["message"] == "bad"
