"""WebSocket transport for the realtime protocol."""

from .api import DEFAULT_MODEL, DEFAULT_URL, RealtimeAPI, generate_event_id

__all__ = ["RealtimeAPI", "DEFAULT_URL", "DEFAULT_MODEL", "generate_event_id"]
