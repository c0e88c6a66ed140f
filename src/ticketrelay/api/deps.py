"""Shared route dependencies.

Learn: The broadcaster is created once in create_app() and stored on
app.state. Routes and the WebSocket endpoint get it through this
dependency (HTTPConnection covers both Request and WebSocket), so tests
can swap it with app.dependency_overrides like any other dependency.
"""

from fastapi import Depends
from sqlalchemy.ext.asyncio import AsyncSession
from starlette.requests import HTTPConnection

from ticketrelay.db.engine import get_db
from ticketrelay.realtime.rooms import RoomBroadcaster
from ticketrelay.services.chat_service import ChatService
from ticketrelay.services.ticket_service import TicketService
from ticketrelay.services.user_service import UserService


def get_broadcaster(conn: HTTPConnection) -> RoomBroadcaster:
    return conn.app.state.broadcaster


def ticket_svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: RoomBroadcaster = Depends(get_broadcaster),
) -> TicketService:
    return TicketService(db, broadcaster)


def chat_svc(
    db: AsyncSession = Depends(get_db),
    broadcaster: RoomBroadcaster = Depends(get_broadcaster),
) -> ChatService:
    return ChatService(db, broadcaster)


def user_svc(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)
