"""WebSocket endpoint — the bidirectional event channel.

Learn: Each client connects to /ws (optionally ?token=JWT). The handler:
1. Authenticates the token if one is given (required when
   TICKETRELAY_WS_REQUIRE_TOKEN is set)
2. Registers a Connection handle with the broadcaster's registry
3. Runs two tasks: the handle's pump (outbox → socket) and a client
   listener (socket → joinTicketRoom / sendMessage / ping)
4. On disconnect, unregisters the handle, which drops it from every room
   immediately rather than on the next broadcast

Client events that fail get an `error` frame back on the same socket;
the connection stays open.
"""

import asyncio
import functools
import json
from typing import Any

import structlog
from fastapi import APIRouter, Depends, WebSocket, WebSocketDisconnect
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from starlette.websockets import WebSocketState

from ticketrelay.api.deps import get_broadcaster
from ticketrelay.auth.dependencies import identity_from_token
from ticketrelay.config import settings
from ticketrelay.db.engine import get_session_factory
from ticketrelay.errors import AuthError, TicketRelayError, ValidationError
from ticketrelay.events.types import (
    ERROR,
    JOIN_TICKET_ROOM,
    PING,
    PONG,
    SEND_MESSAGE,
)
from ticketrelay.realtime.registry import Connection
from ticketrelay.realtime.rooms import RoomBroadcaster
from ticketrelay.schemas.ticket import MAX_TICKET_ID
from ticketrelay.services.chat_service import ChatService

logger = structlog.get_logger()
router = APIRouter()

SessionFactory = async_sessionmaker[AsyncSession]


def _ticket_id(value: Any) -> int:
    """Accept an int or a string of ASCII digits within the id column range."""
    if isinstance(value, str) and value.isascii() and value.isdigit():
        value = int(value)
    if not isinstance(value, int) or isinstance(value, bool):
        raise ValidationError("ticketId must be an integer")
    if not 1 <= value <= MAX_TICKET_ID:
        raise ValidationError(f"ticketId must be between 1 and {MAX_TICKET_ID}")
    return value


async def _relay_message(
    sessions: SessionFactory,
    broadcaster: RoomBroadcaster,
    ticket_id: int,
    sender: Any,
    message: Any,
) -> None:
    async with sessions() as db:
        await ChatService(db, broadcaster).send_message(ticket_id, sender, message)


def _log_detached_relay(conn: Connection, relay: asyncio.Future) -> None:
    """Report a relay failure nobody is awaiting any more.

    While the connection is open handle_client_event reports the error
    itself; once it has closed, this callback is the only place left.
    """
    if not conn.closed or relay.cancelled() or relay.exception() is None:
        return
    exc = relay.exception()
    logger.warning(
        "realtime.client_event_failed",
        sid=conn.sid,
        event_type=SEND_MESSAGE,
        error=getattr(exc, "message", str(exc)),
        detached=True,
    )


async def handle_client_event(
    conn: Connection,
    frame: Any,
    broadcaster: RoomBroadcaster,
    sessions: SessionFactory,
) -> None:
    """Dispatch one decoded client frame.

    Learn: sendMessage runs under asyncio.shield — if the socket drops
    while the INSERT is in flight, the write still completes and is
    broadcast to the rest of the room.
    """
    event_type = frame.get("type") if isinstance(frame, dict) else None
    try:
        if event_type == JOIN_TICKET_ROOM:
            broadcaster.join(conn, _ticket_id(frame.get("ticketId")))
        elif event_type == SEND_MESSAGE:
            ticket_id = _ticket_id(frame.get("ticketId"))
            relay = asyncio.ensure_future(
                _relay_message(
                    sessions,
                    broadcaster,
                    ticket_id,
                    frame.get("sender"),
                    frame.get("message"),
                )
            )
            relay.add_done_callback(functools.partial(_log_detached_relay, conn))
            await asyncio.shield(relay)
        elif event_type == PING:
            conn.deliver(PONG, {})
        else:
            raise ValidationError(f"Unknown event type: {event_type!r}")
    except TicketRelayError as e:
        logger.warning(
            "realtime.client_event_failed",
            sid=conn.sid,
            event_type=event_type,
            error=e.message,
        )
        conn.deliver(ERROR, {"event": event_type, "error": e.message})
    except asyncio.CancelledError:
        raise
    except Exception:
        logger.exception(
            "realtime.client_event_crashed", sid=conn.sid, event_type=event_type
        )
        conn.deliver(ERROR, {"event": event_type, "error": "Internal server error"})


@router.websocket("/ws")
async def ticket_websocket(
    websocket: WebSocket,
    broadcaster: RoomBroadcaster = Depends(get_broadcaster),
    sessions: SessionFactory = Depends(get_session_factory),
):
    """WebSocket endpoint for ticket rooms and global ticket events."""
    # ── Authentication ──────────────────────────────────────
    token = websocket.query_params.get("token")
    identity = None

    if not token and settings.ws_require_token:
        await websocket.close(code=4001, reason="Authentication required")
        return

    if token:
        try:
            identity = identity_from_token(token)
        except AuthError:
            await websocket.close(code=4001, reason="Invalid or expired token")
            return

    # ── Connection accepted ─────────────────────────────────
    await websocket.accept()
    conn = broadcaster.registry.register(websocket.send_text)
    logger.info(
        "realtime.session_started",
        sid=conn.sid,
        user_id=identity.user_id if identity else None,
    )

    async def client_listener():
        while True:
            data = await websocket.receive_text()
            try:
                frame = json.loads(data)
            except json.JSONDecodeError:
                conn.deliver(ERROR, {"event": None, "error": "Malformed JSON frame"})
                continue
            await handle_client_event(conn, frame, broadcaster, sessions)

    pump_task = asyncio.create_task(conn.pump())
    client_task = asyncio.create_task(client_listener())

    try:
        # Usually the client listener ends first, on disconnect
        done, pending = await asyncio.wait(
            [pump_task, client_task],
            return_when=asyncio.FIRST_COMPLETED,
        )
        for task in pending:
            task.cancel()
        await asyncio.gather(*pending, return_exceptions=True)
        for task in done:
            exc = task.exception()
            if exc and not isinstance(exc, WebSocketDisconnect):
                logger.warning("realtime.session_error", sid=conn.sid, error=str(exc))
    finally:
        broadcaster.registry.unregister(conn)
        if websocket.client_state == WebSocketState.CONNECTED:
            await websocket.close()
