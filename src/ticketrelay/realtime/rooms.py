"""Room broadcaster — ticket-scoped pub/sub over live connections.

Learn: A room is just a set of connection handles keyed by ticket id
("ticket-42"). Rooms are purely routing: they are created on first join,
deleted when the last member leaves, and never touch the database.
Joining the room of a ticket that doesn't exist (yet) is allowed.

All mutation and fan-out here is synchronous. With a single-threaded
event loop no other handler can run in the middle of join/leave/publish,
so the room map needs no lock. The only awaits happen in each
connection's pump task, after the frame is already queued.

Delivery is best-effort: no acks, no retries, no event persistence.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import Any, AsyncIterator

import structlog

from ticketrelay.realtime.registry import Connection, ConnectionRegistry

logger = structlog.get_logger()


def room_name(ticket_id: int) -> str:
    return f"ticket-{ticket_id}"


class _SequenceLock:
    """asyncio.Lock plus the number of tasks holding or waiting on it."""

    __slots__ = ("lock", "users")

    def __init__(self):
        self.lock = asyncio.Lock()
        self.users = 0


class RoomBroadcaster:
    """Owns the registry and the ticket → subscribers map.

    Learn: One instance per application, stored on app.state and handed
    to routes and the WebSocket handler through a dependency. Nothing
    here is module-level state, so tests build as many as they like.
    """

    def __init__(self, registry: ConnectionRegistry | None = None):
        self.registry = registry or ConnectionRegistry()
        self.registry.on_unregister(self.leave)
        self._rooms: dict[str, set[Connection]] = {}
        self._sequence_locks: dict[str, _SequenceLock] = {}

    # ─── Membership ──────────────────────────────────────

    def join(self, conn: Connection, ticket_id: int) -> None:
        """Subscribe `conn` to a ticket's room. Joining twice is a no-op."""
        if conn.closed:
            return
        name = room_name(ticket_id)
        self._rooms.setdefault(name, set()).add(conn)
        conn.rooms.add(name)
        logger.info("realtime.joined_room", sid=conn.sid, room=name)

    def leave(self, conn: Connection) -> None:
        """Remove `conn` from every room it joined."""
        for name in conn.rooms:
            members = self._rooms.get(name)
            if members is None:
                continue
            members.discard(conn)
            if not members:
                del self._rooms[name]
        conn.rooms.clear()

    def subscribers(self, ticket_id: int) -> set[Connection]:
        return set(self._rooms.get(room_name(ticket_id), ()))

    def rooms(self) -> dict[str, int]:
        """Room name → member count (diagnostics)."""
        return {name: len(members) for name, members in self._rooms.items()}

    # ─── Publishing ──────────────────────────────────────

    def publish_to_room(
        self, ticket_id: int, event_type: str, payload: dict[str, Any]
    ) -> int:
        """Queue an event for every current member of a ticket's room.

        Returns the number of connections the frame was queued for.
        """
        members = self._rooms.get(room_name(ticket_id), ())
        delivered = sum(1 for conn in list(members) if conn.deliver(event_type, payload))
        logger.debug(
            "realtime.published",
            room=room_name(ticket_id),
            event_type=event_type,
            recipients=delivered,
        )
        return delivered

    def publish_global(self, event_type: str, payload: dict[str, Any]) -> int:
        """Queue an event for every connected client, joined or not."""
        delivered = sum(
            1 for conn in self.registry.connections() if conn.deliver(event_type, payload)
        )
        logger.debug(
            "realtime.published", room="*", event_type=event_type, recipients=delivered
        )
        return delivered

    # ─── Per-ticket sequencing ───────────────────────────

    @asynccontextmanager
    async def sequenced(self, ticket_id: int) -> AsyncIterator[None]:
        """Serialize a persist-then-publish section per ticket.

        Learn: Without this, two chat messages for the same ticket are
        broadcast in whichever order their INSERTs finish. Holding the
        ticket's lock across write + publish makes broadcast order match
        submission order. Locks are dropped once nobody holds or waits
        on them, so the map only grows with in-flight tickets.
        """
        name = room_name(ticket_id)
        entry = self._sequence_locks.get(name)
        if entry is None:
            entry = self._sequence_locks[name] = _SequenceLock()
        entry.users += 1
        try:
            async with entry.lock:
                yield
        finally:
            entry.users -= 1
            if entry.users == 0:
                del self._sequence_locks[name]
