"""
channel.py - Outbound channel and wire frames for one realtime client.

A ClientChannel is a bounded queue that a delivery loop drains into
the HTTP response. Producers never block: a full or closed channel
rejects the frame and the registry treats that as a write failure.
"""

import asyncio
import json
from dataclasses import dataclass
from enum import Enum
from typing import Any, AsyncIterator

from pocketlite.config import CHANNEL_QUEUE_SIZE, CONNECT_EVENT


class ConnectionState(Enum):
    CONNECTING = "connecting"
    OPEN = "open"
    CLOSED = "closed"


@dataclass(frozen=True)
class SSEFrame:
    """One server-sent event, or a comment line when only `comment` is set."""

    event: str | None = None
    data: Any = None
    id: str | None = None
    comment: str | None = None

    def encode(self) -> str:
        if self.comment is not None:
            return f": {self.comment}\n\n"
        lines = []
        if self.event is not None:
            lines.append(f"event: {self.event}")
        if self.id is not None:
            lines.append(f"id: {self.id}")
        lines.append(f"data: {json.dumps(self.data)}")
        return "\n".join(lines) + "\n\n"

    @classmethod
    def connect(cls, client_id: str) -> "SSEFrame":
        return cls(event=CONNECT_EVENT, id=client_id, data={"clientId": client_id})

    @classmethod
    def heartbeat(cls) -> "SSEFrame":
        return cls(comment="heartbeat")

    @classmethod
    def record_event(cls, topic: str, action: str, record: dict[str, Any]) -> "SSEFrame":
        return cls(event=topic, data={"action": action, "record": record})


_CLOSED = object()


class ClientChannel:
    """Bounded, non-blocking outbound frame queue."""

    def __init__(self, maxsize: int = CHANNEL_QUEUE_SIZE):
        # One slot is kept free for the close sentinel
        self._queue: asyncio.Queue = asyncio.Queue(maxsize=maxsize + 1)
        self._maxsize = maxsize
        self._closed = False

    @property
    def closed(self) -> bool:
        return self._closed

    def pending(self) -> int:
        return self._queue.qsize()

    def send(self, frame: SSEFrame) -> bool:
        """Enqueue a frame; False means the client cannot take it."""
        if self._closed or self._queue.qsize() >= self._maxsize:
            return False
        self._queue.put_nowait(frame)
        return True

    def close(self) -> None:
        """Drop undelivered frames and wake the delivery loop."""
        if self._closed:
            return
        self._closed = True
        while not self._queue.empty():
            self._queue.get_nowait()
        self._queue.put_nowait(_CLOSED)

    async def __aiter__(self) -> AsyncIterator[SSEFrame]:
        while True:
            item = await self._queue.get()
            if item is _CLOSED:
                return
            yield item
