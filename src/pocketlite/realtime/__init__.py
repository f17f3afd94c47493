"""Realtime subscriptions over server-sent events."""

from pocketlite.realtime.channel import ClientChannel, ConnectionState, SSEFrame
from pocketlite.realtime.registry import ClientConnection, RealtimeRegistry, matches_topic

__all__ = [
    "ClientChannel",
    "ClientConnection",
    "ConnectionState",
    "RealtimeRegistry",
    "SSEFrame",
    "matches_topic",
]
