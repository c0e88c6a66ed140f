"""Ticket and chat message API routes.

Learn: These routes are the HTTP interface to the ticket lifecycle and
the chat relay. The services validate, persist and broadcast; routes
only translate HTTP to service calls. Errors raised by services are
mapped to status codes in main.py.

Key patterns:
- POST for creation, PATCH for the status change
- Only ticket creation needs a token (the ticket is owned by the caller)
- Status changes go through a configurable policy dependency
"""

from fastapi import APIRouter, Depends, Path

from ticketrelay.api.deps import chat_svc, ticket_svc
from ticketrelay.auth.dependencies import (
    CurrentIdentity,
    get_current_user,
    status_update_policy,
)
from ticketrelay.schemas.ticket import (
    ChatMessageCreate,
    ChatMessageRead,
    MAX_TICKET_ID,
    StatusChange,
    TicketCreate,
    TicketRead,
)
from ticketrelay.services.chat_service import ChatService
from ticketrelay.services.ticket_service import TicketService

router = APIRouter()


# ═══════════════════════════════════════════════════════════
# Tickets
# ═══════════════════════════════════════════════════════════


@router.post("/tickets", response_model=TicketRead, status_code=201)
async def create_ticket(
    body: TicketCreate,
    identity: CurrentIdentity = Depends(get_current_user),
    svc: TicketService = Depends(ticket_svc),
):
    """Open a ticket owned by the authenticated user."""
    return await svc.create_ticket(
        user_id=identity.user_id,
        title=body.title,
        description=body.description,
        address=body.address,
    )


@router.get("/tickets", response_model=list[TicketRead])
async def list_tickets(svc: TicketService = Depends(ticket_svc)):
    """All tickets, newest first."""
    return await svc.list_tickets()


@router.get("/tickets/{ticket_id}", response_model=TicketRead)
async def get_ticket(
    ticket_id: int = Path(..., ge=1, le=MAX_TICKET_ID),
    svc: TicketService = Depends(ticket_svc),
):
    """One ticket with its chat history, oldest message first."""
    return await svc.get_ticket(ticket_id)


@router.patch("/tickets/{ticket_id}", response_model=TicketRead)
async def update_ticket_status(
    body: StatusChange,
    ticket_id: int = Path(..., ge=1, le=MAX_TICKET_ID),
    _identity: CurrentIdentity | None = Depends(status_update_policy),
    svc: TicketService = Depends(ticket_svc),
):
    """Change a ticket's status and broadcast `ticketUpdated`."""
    return await svc.update_status(ticket_id, body.status)


# ═══════════════════════════════════════════════════════════
# Chat messages
# ═══════════════════════════════════════════════════════════


@router.post(
    "/tickets/{ticket_id}/messages", response_model=ChatMessageRead, status_code=201
)
async def send_message(
    body: ChatMessageCreate,
    ticket_id: int = Path(..., ge=1, le=MAX_TICKET_ID),
    svc: ChatService = Depends(chat_svc),
):
    """Post into a ticket's chat — same relay the WebSocket uses."""
    return await svc.send_message(ticket_id, body.sender, body.message)


@router.get("/tickets/{ticket_id}/messages", response_model=list[ChatMessageRead])
async def list_messages(
    ticket_id: int = Path(..., ge=1, le=MAX_TICKET_ID),
    svc: ChatService = Depends(chat_svc),
):
    return await svc.list_messages(ticket_id)
