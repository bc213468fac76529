"""
Tests for the WebSocket transport.

The socket is replaced by an in-memory double so framing, ordering, retries
and closure can be checked without a network.
"""

import asyncio
import json

import pytest
from tenacity import wait_none

from realtime_client.errors import AlreadyConnectedError, NotConnectedError
from realtime_client.transport.api import RealtimeAPI, generate_event_id


class FakeWebSocket:
    """Async-iterable socket double fed through ``push``."""

    def __init__(self):
        self.sent = []
        self.closed = False
        self._incoming = asyncio.Queue()

    async def send(self, frame):
        self.sent.append(json.loads(frame))

    def push(self, message):
        self._incoming.put_nowait(message)

    def end(self):
        self._incoming.put_nowait(None)

    def __aiter__(self):
        return self

    async def __anext__(self):
        message = await self._incoming.get()
        if message is None:
            raise StopAsyncIteration
        return message

    async def close(self):
        self.closed = True
        self.end()


async def _settle():
    for _ in range(5):
        await asyncio.sleep(0)


@pytest.fixture
def ws():
    return FakeWebSocket()


@pytest.fixture
def api(ws, monkeypatch):
    api = RealtimeAPI(api_key="sk-test", model="gpt-test")
    api.retry_wait = wait_none()

    async def open_connection():
        return ws

    monkeypatch.setattr(api, "_open_connection", open_connection)
    return api


class TestHandshake:
    """URL and header construction."""

    def test_url_carries_model(self):
        api = RealtimeAPI(url="wss://example.test/v1/realtime", model="gpt-test")
        assert api._build_ws_url() == "wss://example.test/v1/realtime?model=gpt-test"

    def test_url_with_existing_query(self):
        api = RealtimeAPI(url="wss://example.test/rt?region=eu", model="m")
        assert api._build_ws_url() == "wss://example.test/rt?region=eu&model=m"

    def test_headers(self):
        api = RealtimeAPI(api_key="sk-test")
        assert api._build_headers() == [
            ("Authorization", "Bearer sk-test"),
            ("OpenAI-Beta", "realtime=v1"),
        ]

    def test_event_id_prefix(self):
        event_id = generate_event_id()
        assert event_id.startswith("evt_")
        assert event_id != generate_event_id()


class TestSend:
    """Outbound framing and ordering."""

    def test_send_requires_connection(self):
        with pytest.raises(NotConnectedError):
            RealtimeAPI().send("response.create")

    @pytest.mark.asyncio
    async def test_frames_written_in_call_order(self, api, ws):
        await api.connect()
        announced = []
        api.on("client.*", lambda e: announced.append(e["type"]))

        api.send("input_audio_buffer.commit")
        api.send("response.create", {"response": {"modalities": ["text"]}})
        await _settle()

        assert [frame["type"] for frame in ws.sent] == ["input_audio_buffer.commit", "response.create"]
        assert ws.sent[1]["response"] == {"modalities": ["text"]}
        assert all(frame["event_id"].startswith("evt_") for frame in ws.sent)
        assert announced == ["input_audio_buffer.commit", "response.create"]

    @pytest.mark.asyncio
    async def test_non_dict_payload_rejected(self, api):
        await api.connect()

        with pytest.raises(TypeError):
            api.send("response.create", ["not", "a", "dict"])


class TestReceive:
    """Inbound decoding and fan-out."""

    @pytest.mark.asyncio
    async def test_server_events_dispatched(self, api, ws):
        await api.connect()
        received = []
        api.on("server.session.created", received.append)

        ws.push(json.dumps({"type": "session.created", "session": {"id": "sess_1"}}))
        await _settle()

        assert received == [{"type": "session.created", "session": {"id": "sess_1"}}]

    @pytest.mark.asyncio
    async def test_bad_frames_skipped(self, api, ws):
        await api.connect()
        received = []
        api.on("server.*", received.append)

        ws.push("{not json")
        ws.push(b"\x00\x01")
        ws.push(json.dumps({"no_type": True}))
        ws.push(json.dumps({"type": "response.created", "response": {"id": "r"}}))
        await _settle()

        assert [event["type"] for event in received] == ["response.created"]
        assert api.is_connected()

    @pytest.mark.asyncio
    async def test_handler_failure_does_not_stop_loop(self, api, ws):
        await api.connect()
        received = []

        def broken(event):
            raise RuntimeError("boom")

        api.on("server.response.created", broken)
        api.on("server.response.done", received.append)

        ws.push(json.dumps({"type": "response.created"}))
        ws.push(json.dumps({"type": "response.done"}))
        await _settle()

        assert len(received) == 1


class TestLifecycle:
    """connect retries, disconnect and remote closure."""

    @pytest.mark.asyncio
    async def test_double_connect_rejected(self, api):
        await api.connect()

        with pytest.raises(AlreadyConnectedError):
            await api.connect()

    @pytest.mark.asyncio
    async def test_transient_failures_retried(self, ws, monkeypatch):
        api = RealtimeAPI(connect_attempts=3)
        api.retry_wait = wait_none()
        attempts = []

        async def flaky():
            attempts.append(1)
            if len(attempts) < 3:
                raise OSError("connection refused")
            return ws

        monkeypatch.setattr(api, "_open_connection", flaky)

        await api.connect()

        assert len(attempts) == 3
        assert api.is_connected()

    @pytest.mark.asyncio
    async def test_attempts_exhausted(self, monkeypatch):
        api = RealtimeAPI(connect_attempts=2)
        api.retry_wait = wait_none()
        attempts = []

        async def refused():
            attempts.append(1)
            raise OSError("connection refused")

        monkeypatch.setattr(api, "_open_connection", refused)

        with pytest.raises(OSError):
            await api.connect()
        assert len(attempts) == 2
        assert not api.is_connected()

    @pytest.mark.asyncio
    async def test_non_transient_failure_not_retried(self, monkeypatch):
        api = RealtimeAPI(connect_attempts=5)
        api.retry_wait = wait_none()
        attempts = []

        async def broken():
            attempts.append(1)
            raise ValueError("bad url")

        monkeypatch.setattr(api, "_open_connection", broken)

        with pytest.raises(ValueError):
            await api.connect()
        assert len(attempts) == 1

    @pytest.mark.asyncio
    async def test_disconnect_closes_socket_quietly(self, api, ws):
        await api.connect()
        closed = []
        api.on("close", closed.append)

        await api.disconnect()
        await _settle()

        assert ws.closed
        assert not api.is_connected()
        assert closed == []

    @pytest.mark.asyncio
    async def test_remote_close_dispatches_close(self, api, ws):
        await api.connect()
        loop = asyncio.get_running_loop()
        loop.call_soon(ws.end)

        event = await api.wait_for_next("close", timeout=1)

        assert event == {"error": True}
        assert not api.is_connected()
        with pytest.raises(NotConnectedError):
            api.send("response.create")
