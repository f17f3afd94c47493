"""
registry.py - Realtime connection registry.

Tracks open SSE clients and their topic subscriptions, fans record
mutations out to matching subscribers, and runs a liveness sweep.

Topics:
- "{collection}/*"      every record of a collection
- "{collection}/{id}"   one record
Either form may carry a "?options" suffix which is ignored for matching.

The connection table and every subscription set are guarded by a
single lock held only for short, non-awaiting sections.
"""

import asyncio
import logging
import threading
import time
from dataclasses import dataclass, field
from typing import Any, AsyncIterator, Callable, Iterable, Optional

from pocketlite.config import (
    CHANNEL_QUEUE_SIZE,
    CLIENT_ID_LENGTH,
    HEARTBEAT_INTERVAL_SECONDS,
    STALE_AFTER_SECONDS,
)
from pocketlite.errors import InvalidRequestError, NotFoundError
from pocketlite.metrics import MetricsRegistry
from pocketlite.realtime.channel import ClientChannel, ConnectionState, SSEFrame
from pocketlite.utils.ids import generate_id

logger = logging.getLogger("pocketlite.realtime")


@dataclass
class ClientConnection:
    client_id: str
    channel: ClientChannel
    last_active: float
    subscriptions: set[str] = field(default_factory=set)
    state: ConnectionState = ConnectionState.CONNECTING


def matches_topic(subscriptions: Iterable[str], topic: str) -> bool:
    """Exact match, or a subscription of the form "topic?options"."""
    prefix = topic + "?"
    return any(sub == topic or sub.startswith(prefix) for sub in subscriptions)


class RealtimeRegistry:
    """
    In-process registry of realtime clients.

    Args:
        heartbeat_interval: Seconds between liveness sweeps
        stale_after: A client with no delivered frame for this long is
            evicted; must exceed heartbeat_interval
        queue_size: Undelivered frames a client may hold before it is
            treated as gone
        clock: Monotonic time source
    """

    def __init__(
        self,
        heartbeat_interval: float = HEARTBEAT_INTERVAL_SECONDS,
        stale_after: float = STALE_AFTER_SECONDS,
        queue_size: int = CHANNEL_QUEUE_SIZE,
        clock: Callable[[], float] = time.monotonic,
        metrics: Optional[MetricsRegistry] = None,
    ):
        if stale_after <= heartbeat_interval:
            raise ValueError(
                f"stale_after ({stale_after}s) must exceed heartbeat_interval ({heartbeat_interval}s)"
            )
        self.heartbeat_interval = heartbeat_interval
        self.stale_after = stale_after
        self._queue_size = queue_size
        self._clock = clock
        self._metrics = metrics or MetricsRegistry()

        self._connections: dict[str, ClientConnection] = {}
        self._lock = threading.Lock()
        self._stop_event: Optional[asyncio.Event] = None
        self._sweep_task: Optional[asyncio.Task] = None
        self._shut_down = False

    # ------------------------------------------------------------------
    # Connections
    # ------------------------------------------------------------------

    def __len__(self) -> int:
        with self._lock:
            return len(self._connections)

    def get_connection(self, client_id: str) -> ClientConnection | None:
        with self._lock:
            return self._connections.get(client_id)

    def open_connection(self) -> ClientConnection:
        """Register a new client; its first frame is the connect event."""
        if self._shut_down:
            raise InvalidRequestError("Realtime registry is shut down")

        client_id = generate_id(CLIENT_ID_LENGTH)
        conn = ClientConnection(
            client_id=client_id,
            channel=ClientChannel(self._queue_size),
            last_active=self._clock(),
        )
        conn.channel.send(SSEFrame.connect(client_id))
        conn.state = ConnectionState.OPEN

        with self._lock:
            self._connections[client_id] = conn
            count = len(self._connections)
        self._metrics.realtime_connections.set(count)
        logger.info(f"Client connected: {client_id} ({count} active)")
        return conn

    async def stream(self, client_id: str) -> AsyncIterator[str]:
        """
        Delivery loop: encoded frames for one client until it closes.

        Runs for the lifetime of the connection. The connection is
        removed when the loop ends, including on cancellation.
        """
        conn = self.get_connection(client_id)
        if conn is None:
            raise NotFoundError(f"Unknown realtime client: {client_id}")
        try:
            async for frame in conn.channel:
                conn.last_active = self._clock()
                yield frame.encode()
        finally:
            self.close_connection(client_id)

    def close_connection(self, client_id: str) -> bool:
        with self._lock:
            conn = self._connections.pop(client_id, None)
            count = len(self._connections)
        if conn is None:
            return False
        conn.state = ConnectionState.CLOSED
        conn.channel.close()
        self._metrics.realtime_connections.set(count)
        logger.info(f"Client disconnected: {client_id} ({count} active)")
        return True

    def update_subscriptions(self, client_id: str, topics: Any) -> None:
        """
        Replace a client's subscription set.

        Raises:
            InvalidRequestError: If topics is not a list of strings
            NotFoundError: If the client is unknown
        """
        if not isinstance(topics, list) or not all(isinstance(t, str) for t in topics):
            raise InvalidRequestError(
                "subscriptions must be a list of strings", field="subscriptions", value=topics
            )
        with self._lock:
            conn = self._connections.get(client_id)
            if conn is None:
                raise NotFoundError(f"Unknown realtime client: {client_id}")
            conn.subscriptions = {t for t in topics if t}
            conn.last_active = self._clock()
        logger.info(f"Client {client_id} subscriptions: {sorted(conn.subscriptions)}")

    # ------------------------------------------------------------------
    # Fan-out
    # ------------------------------------------------------------------

    def broadcast(self, collection: str, action: str, record: dict[str, Any]) -> int:
        """
        Send one event frame to every client subscribed to the record.

        The wildcard topic is checked before the record topic; the
        frame is tagged with the one that matched. Returns the number
        of clients the frame was queued for.
        """
        wildcard = f"{collection}/*"
        specific = f"{collection}/{record.get('id')}"
        delivered = 0
        failed: list[str] = []

        with self._lock:
            for client_id, conn in self._connections.items():
                if matches_topic(conn.subscriptions, wildcard):
                    topic = wildcard
                elif matches_topic(conn.subscriptions, specific):
                    topic = specific
                else:
                    continue
                if conn.channel.send(SSEFrame.record_event(topic, action, record)):
                    delivered += 1
                else:
                    failed.append(client_id)

        for client_id in failed:
            logger.warning(f"Failed to send {action} event to client {client_id}")
            self.close_connection(client_id)

        if delivered:
            self._metrics.realtime_events.inc(delivered, action=action)
            logger.debug(f"Broadcasted {action} event for {specific} to {delivered} client(s)")
        return delivered

    # ------------------------------------------------------------------
    # Liveness
    # ------------------------------------------------------------------

    def sweep(self) -> int:
        """Evict stale clients and send keep-alives to the rest."""
        now = self._clock()
        stale: list[str] = []
        with self._lock:
            for client_id, conn in self._connections.items():
                if now - conn.last_active > self.stale_after:
                    stale.append(client_id)
                elif not conn.channel.send(SSEFrame.heartbeat()):
                    stale.append(client_id)

        for client_id in stale:
            self.close_connection(client_id)
        if stale:
            logger.info(f"Liveness sweep evicted {len(stale)} client(s)")
        return len(stale)

    def start(self) -> None:
        """Start the periodic sweep on the running event loop."""
        if self._sweep_task is not None:
            return
        self._stop_event = asyncio.Event()
        self._sweep_task = asyncio.get_running_loop().create_task(self._sweep_loop())

    async def _sweep_loop(self) -> None:
        logger.info(f"Realtime sweep started (interval={self.heartbeat_interval}s)")
        while True:
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.heartbeat_interval)
                if self._stop_event.is_set():
                    break
            except asyncio.TimeoutError:
                pass
            try:
                self.sweep()
            except Exception:
                logger.exception("Liveness sweep failed")
        logger.info("Realtime sweep stopped")

    async def shutdown(self) -> None:
        """Stop the sweep and close every connection."""
        if self._shut_down:
            logger.warning("Realtime registry already shut down")
            return
        self._shut_down = True

        if self._sweep_task is not None:
            self._stop_event.set()
            await self._sweep_task
            self._sweep_task = None

        with self._lock:
            client_ids = list(self._connections)
        for client_id in client_ids:
            self.close_connection(client_id)
        logger.info(f"Realtime registry shut down ({len(client_ids)} client(s) closed)")
