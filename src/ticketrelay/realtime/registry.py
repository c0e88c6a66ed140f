"""Connection registry — every live event-channel session in this process.

Learn: Each WebSocket gets a Connection handle with its own outbound queue
and a pump task that drains the queue to the socket. Broadcasting only
ever does put_nowait() on that queue, so:

1. Publishing never awaits a slow client (one stuck socket can't stall
   the event loop or other subscribers).
2. Frames reach each client in exactly the order they were enqueued.
3. A client that falls too far behind loses frames instead of growing
   memory without bound. The store record is the durable copy; clients
   can always re-fetch the ticket over REST.

Handles are process-local. A restart invalidates all of them and clients
reconnect and re-join their rooms.
"""

import asyncio
import itertools
import json
from typing import Any, Awaitable, Callable, Optional

import structlog

logger = structlog.get_logger()

SendFn = Callable[[str], Awaitable[None]]


class Connection:
    """One live transport session.

    Learn: `rooms` is the reverse index of room membership, kept on the
    handle so leaving every room on disconnect costs O(rooms joined)
    instead of a scan over all rooms.
    """

    def __init__(self, sid: str, send: SendFn, max_pending: int = 256):
        self.sid = sid
        self.rooms: set[str] = set()
        self.outbox: asyncio.Queue[str] = asyncio.Queue(maxsize=max_pending)
        self.closed = False
        self._send = send

    def deliver(self, event_type: str, payload: dict[str, Any]) -> bool:
        """Enqueue a frame. Never blocks; returns False if it was dropped."""
        if self.closed:
            return False
        frame = json.dumps({"type": event_type, **payload}, default=str)
        try:
            self.outbox.put_nowait(frame)
        except asyncio.QueueFull:
            logger.warning(
                "realtime.frame_dropped", sid=self.sid, event_type=event_type
            )
            return False
        return True

    async def pump(self) -> None:
        """Drain the outbox to the transport until cancelled."""
        while True:
            frame = await self.outbox.get()
            await self._send(frame)

    def __repr__(self) -> str:
        return f"<Connection {self.sid} rooms={sorted(self.rooms)}>"


class ConnectionRegistry:
    """Tracks live connections. Mutated only from the event loop thread."""

    def __init__(self, max_pending: int = 256):
        self.max_pending = max_pending
        self._connections: dict[str, Connection] = {}
        self._ids = itertools.count(1)
        self._unregister_listeners: list[Callable[[Connection], None]] = []

    def on_unregister(self, listener: Callable[[Connection], None]) -> None:
        """Call `listener(handle)` whenever a handle is unregistered."""
        self._unregister_listeners.append(listener)

    def register(self, send: SendFn, sid: Optional[str] = None) -> Connection:
        sid = sid or f"conn-{next(self._ids)}"
        if sid in self._connections:
            raise ValueError(f"Connection id already registered: {sid}")
        conn = Connection(sid, send, max_pending=self.max_pending)
        self._connections[sid] = conn
        logger.info("realtime.connected", sid=sid, connections=len(self._connections))
        return conn

    def unregister(self, conn: Connection) -> None:
        """Forget a handle and tell listeners. Safe to call twice."""
        if self._connections.pop(conn.sid, None) is None:
            return
        conn.closed = True
        for listener in self._unregister_listeners:
            listener(conn)
        logger.info(
            "realtime.disconnected", sid=conn.sid, connections=len(self._connections)
        )

    def connections(self) -> list[Connection]:
        """Snapshot — safe to iterate while handlers register/unregister."""
        return list(self._connections.values())

    def __len__(self) -> int:
        return len(self._connections)
