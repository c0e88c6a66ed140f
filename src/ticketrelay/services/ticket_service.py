"""Ticket service — the ticket lifecycle coordinator.

Learn: Every mutation follows the same shape:
1. Validate input (closed status set, non-empty title)
2. Apply business derivations (address → maps link)
3. Commit to the database
4. Only then broadcast the committed ticket to every connected client

Broadcasting after commit means no client can ever see a ticket the
database doesn't have. If the commit fails nothing is published and the
error goes back to the caller; nothing is retried.
"""

from typing import Optional, Union
from urllib.parse import quote

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from ticketrelay.config import settings
from ticketrelay.db.models import Ticket, TicketStatus, User
from ticketrelay.errors import NotFoundError, StoreError, ValidationError
from ticketrelay.events.types import NEW_TICKET, TICKET_UPDATED
from ticketrelay.realtime.rooms import RoomBroadcaster
from ticketrelay.schemas.ticket import TicketRead, dump

logger = structlog.get_logger()


def resolve_address(supplied: Optional[str], on_file: Optional[str]) -> Optional[str]:
    """Supplied address (trimmed) wins; otherwise the user's stored one."""
    if supplied and supplied.strip():
        return supplied.strip()
    if on_file and on_file.strip():
        return on_file.strip()
    return None


def build_maps_link(address: str) -> str:
    """Map-search URL for an address. Same address → same link."""
    return settings.maps_search_url + quote(address, safe="")


def parse_status(status: Union[str, TicketStatus]) -> TicketStatus:
    try:
        return TicketStatus(status)
    except ValueError:
        allowed = ", ".join(s.value for s in TicketStatus)
        raise ValidationError(f"Invalid status '{status}'. Allowed: {allowed}")


class TicketService:
    """Create, read and update tickets; broadcast the results."""

    def __init__(self, db: AsyncSession, broadcaster: RoomBroadcaster):
        self.db = db
        self.broadcaster = broadcaster

    # ─── Create ──────────────────────────────────────────

    async def create_ticket(
        self,
        user_id: int,
        title: str,
        description: str = "",
        address: Optional[str] = None,
    ) -> Ticket:
        """Open a ticket for `user_id` in the initial status.

        Learn: The owner always comes from the verified token, never from
        the request body, so a client can't open tickets as someone else.
        """
        if not title or not title.strip():
            raise ValidationError("Title is required")

        user = await self.db.get(User, user_id)
        if not user:
            raise NotFoundError("User not found")

        resolved = resolve_address(address, user.address)
        ticket = Ticket(
            title=title.strip(),
            description=description or "",
            status=TicketStatus.OPEN.value,
            user_id=user_id,
            address=resolved,
            maps_link=build_maps_link(resolved) if resolved else None,
        )
        self.db.add(ticket)
        await self._commit("tickets.create_failed", user_id=user_id)

        ticket = await self.get_ticket(ticket.id)
        logger.info("tickets.created", ticket_id=ticket.id, user_id=user_id)
        self.broadcaster.publish_global(NEW_TICKET, dump(TicketRead, ticket))
        return ticket

    # ─── Read ────────────────────────────────────────────

    async def list_tickets(self) -> list[Ticket]:
        """All tickets, newest first, with messages and owner."""
        result = await self.db.execute(
            select(Ticket)
            .options(selectinload(Ticket.messages), selectinload(Ticket.user))
            .order_by(Ticket.created_at.desc(), Ticket.id.desc())
        )
        return list(result.scalars().all())

    async def get_ticket(self, ticket_id: int) -> Ticket:
        """One ticket with messages oldest-first. Raises NotFoundError."""
        result = await self.db.execute(
            select(Ticket)
            .where(Ticket.id == ticket_id)
            .options(selectinload(Ticket.messages), selectinload(Ticket.user))
            .execution_options(populate_existing=True)
        )
        ticket = result.scalars().first()
        if not ticket:
            raise NotFoundError("Ticket not found")
        return ticket

    # ─── Status ──────────────────────────────────────────

    async def update_status(
        self, ticket_id: int, status: Union[str, TicketStatus]
    ) -> Ticket:
        """Persist a new status, then tell every connected client."""
        new_status = parse_status(status)
        ticket = await self.db.get(Ticket, ticket_id)
        if not ticket:
            raise NotFoundError("Ticket not found")

        old_status = ticket.status
        ticket.status = new_status.value
        await self._commit("tickets.status_update_failed", ticket_id=ticket_id)

        ticket = await self.get_ticket(ticket_id)
        logger.info(
            "tickets.status_changed",
            ticket_id=ticket_id,
            from_status=old_status,
            to_status=new_status.value,
        )
        self.broadcaster.publish_global(TICKET_UPDATED, dump(TicketRead, ticket))
        return ticket

    async def _commit(self, failure_event: str, **context) -> None:
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(failure_event, error=str(e), **context)
            raise StoreError("Failed to save ticket")
