"""Shared fixtures: a transport double that records outbound commands."""

import pytest

from realtime_client.client import RealtimeClient
from realtime_client.core.event_bus import EventDispatcher
from realtime_client.errors import NotConnectedError


class FakeTransport(EventDispatcher):
    """Stands in for RealtimeAPI; ``receive`` plays a server event through the bus."""

    def __init__(self):
        super().__init__()
        self.connected = False
        self.sent = []

    def is_connected(self):
        return self.connected

    async def connect(self):
        self.connected = True

    async def disconnect(self):
        self.connected = False

    def send(self, event_name, data=None):
        if not self.connected:
            raise NotConnectedError("RealtimeAPI is not yet connected")
        event = {"type": event_name, **(data or {})}
        self.sent.append(event)
        self.dispatch(f"client.{event_name}", event)

    def receive(self, event):
        self.dispatch(f"server.{event['type']}", event)

    def sent_types(self):
        return [event["type"] for event in self.sent]


@pytest.fixture
def transport():
    return FakeTransport()


@pytest.fixture
def client(transport):
    return RealtimeClient(transport=transport)
