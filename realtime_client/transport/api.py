"""
WebSocket transport for the realtime event protocol.

Every inbound frame is republished on the bus as ``server.<type>`` and every
outbound command as ``client.<type>``. Sending is synchronous: frames are
queued and written by a single writer task, so wire order equals call order.
"""

import asyncio
import json
import secrets
import time
from typing import Any, Dict, Optional
from urllib.parse import urlencode

import structlog
from prometheus_client import Counter
from tenacity import AsyncRetrying, retry_if_exception_type, stop_after_attempt, wait_exponential
from websockets.asyncio.client import ClientConnection, connect
from websockets.exceptions import ConnectionClosed, InvalidHandshake

from ..core.event_bus import EventDispatcher
from ..errors import AlreadyConnectedError, NotConnectedError

logger = structlog.get_logger(__name__)

DEFAULT_URL = "wss://api.openai.com/v1/realtime"
DEFAULT_MODEL = "gpt-4o-realtime-preview-2024-10-01"

_EVENTS = Counter(
    "realtime_client_events_total",
    "Realtime protocol events sent and received",
    labelnames=("direction", "type"),
)


def generate_event_id(prefix: str = "evt_") -> str:
    """Return a random event id such as ``evt_Xp3...``."""
    return prefix + secrets.token_urlsafe(16)[:21]


class RealtimeAPI(EventDispatcher):
    """
    Thin WebSocket client: connection lifecycle, JSON framing and event fan-out.

    The transport knows nothing about conversation state; it only moves
    events between the socket and the bus.
    """

    retry_wait = wait_exponential(multiplier=1, min=1, max=10)

    def __init__(
        self,
        url: Optional[str] = None,
        api_key: Optional[str] = None,
        model: Optional[str] = None,
        debug: bool = False,
        connect_timeout_sec: float = 10.0,
        connect_attempts: int = 3,
    ):
        super().__init__()
        self.url = url or DEFAULT_URL
        self.api_key = api_key
        self.model = model or DEFAULT_MODEL
        self.debug = debug
        self.connect_timeout_sec = connect_timeout_sec
        self.connect_attempts = max(1, int(connect_attempts))

        self._ws: Optional[ClientConnection] = None
        self._outbox: Optional[asyncio.Queue] = None
        self._receive_task: Optional[asyncio.Task] = None
        self._writer_task: Optional[asyncio.Task] = None
        self._closing = False

    def is_connected(self) -> bool:
        return self._ws is not None

    def _build_ws_url(self) -> str:
        separator = "&" if "?" in self.url else "?"
        return f"{self.url}{separator}{urlencode({'model': self.model})}"

    def _build_headers(self):
        headers = [("OpenAI-Beta", "realtime=v1")]
        if self.api_key:
            headers.insert(0, ("Authorization", f"Bearer {self.api_key}"))
        return headers

    async def _open_connection(self) -> ClientConnection:
        return await connect(
            self._build_ws_url(),
            additional_headers=self._build_headers(),
            open_timeout=self.connect_timeout_sec,
            max_size=None,
        )

    async def connect(self) -> None:
        """
        Open the WebSocket and start the receive and writer tasks.

        Transient failures (network errors, handshake errors, timeouts) are
        retried with exponential backoff up to ``connect_attempts`` times.

        Raises:
            AlreadyConnectedError: If a connection is already open
        """
        if self.is_connected():
            raise AlreadyConnectedError("Already connected")

        logger.info("Connecting to realtime API", url=self.url, model=self.model)
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self.connect_attempts),
            wait=self.retry_wait,
            retry=retry_if_exception_type((OSError, InvalidHandshake, TimeoutError)),
            reraise=True,
        )
        async for attempt in retrying:
            with attempt:
                try:
                    self._ws = await self._open_connection()
                except Exception as exc:
                    logger.warning(
                        "Realtime connect attempt failed",
                        attempt=attempt.retry_state.attempt_number,
                        error=str(exc),
                    )
                    raise

        self._closing = False
        self._outbox = asyncio.Queue()
        self._writer_task = asyncio.create_task(self._write_loop())
        self._receive_task = asyncio.create_task(self._receive_loop())
        logger.info("Connected to realtime API", url=self.url)

    async def disconnect(self) -> None:
        """Close the socket and stop background tasks. Safe to call when disconnected."""
        self._closing = True
        current = asyncio.current_task()
        for task in (self._writer_task, self._receive_task):
            if task is not None and task is not current and not task.done():
                task.cancel()
                try:
                    await task
                except asyncio.CancelledError:
                    pass
        self._writer_task = None
        self._receive_task = None
        self._outbox = None
        if self._ws is not None:
            ws, self._ws = self._ws, None
            await ws.close()
            logger.info("Disconnected from realtime API")

    def send(self, event_name: str, data: Optional[Dict[str, Any]] = None) -> None:
        """
        Queue a client command for transmission.

        The frame gets a fresh ``event_id`` and is announced on the bus as
        ``client.<event_name>`` before it reaches the wire.

        Raises:
            NotConnectedError: If there is no open connection
            TypeError: If ``data`` is not a mapping
        """
        if not self.is_connected() or self._outbox is None:
            raise NotConnectedError("RealtimeAPI is not yet connected")
        data = data or {}
        if not isinstance(data, dict):
            raise TypeError("data must be a dict")

        event = {"event_id": generate_event_id(), "type": event_name, **data}
        self.dispatch(f"client.{event_name}", event)
        _EVENTS.labels(direction="sent", type=event_name).inc()
        self._log("sent", event)
        self._outbox.put_nowait(json.dumps(event))

    async def _write_loop(self) -> None:
        assert self._outbox is not None
        outbox = self._outbox
        while True:
            frame = await outbox.get()
            ws = self._ws
            if ws is None:
                return
            try:
                await ws.send(frame)
            except ConnectionClosed:
                logger.info("Realtime connection closed while sending")
                return

    async def _receive_loop(self) -> None:
        ws = self._ws
        assert ws is not None
        try:
            async for message in ws:
                if isinstance(message, bytes):
                    continue
                try:
                    event = json.loads(message)
                except json.JSONDecodeError:
                    logger.warning("Failed to decode realtime payload", payload_preview=message[:64])
                    continue
                if not isinstance(event, dict) or "type" not in event:
                    logger.warning("Ignoring realtime payload without type", payload_preview=message[:64])
                    continue
                try:
                    self._receive(event)
                except Exception:
                    logger.error("Realtime event handler failed", type=event.get("type"), exc_info=True)
        except ConnectionClosed as exc:
            logger.info("Realtime connection closed", code=exc.rcvd.code if exc.rcvd else None)
        finally:
            if not self._closing and self._ws is ws:
                self._ws = None
                if self._writer_task is not None:
                    self._writer_task.cancel()
                self.dispatch("close", {"error": True})

    def _receive(self, event: Dict[str, Any]) -> None:
        event_type = event["type"]
        _EVENTS.labels(direction="received", type=event_type).inc()
        self._log("received", event)
        self.dispatch(f"server.{event_type}", event)

    def _log(self, direction: str, event: Dict[str, Any]) -> None:
        if not self.debug:
            return
        event_type = event.get("type", "")
        if event_type in ("input_audio_buffer.append", "response.audio.delta"):
            logger.debug("Realtime event", direction=direction, type=event_type, event_id=event.get("event_id"))
            return
        logger.debug("Realtime event", direction=direction, type=event_type, ts=time.time(), event=event)
