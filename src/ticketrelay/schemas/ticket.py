"""Pydantic schemas for users, tickets, and chat messages.

Learn: Separate "Create" schemas (input) from "Read" schemas (output).
Read schemas serialize with camelCase aliases (userId, mapsLink,
createdAt) because that is what the web and mobile clients consume;
inputs accept both spellings.

The same Read schemas produce WebSocket payloads, so a ticket pushed in a
`newTicket` frame is byte-for-byte the ticket GET /api/tickets/{id} returns.
"""

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field
from pydantic.alias_generators import to_camel

from ticketrelay.db.models import Sender, TicketStatus, UserRole, UserStatus

# Largest value a PostgreSQL INTEGER primary key can hold
MAX_TICKET_ID = 2_147_483_647

_camel = {"alias_generator": to_camel, "populate_by_name": True}


# ─── Users ──────────────────────────────────────────────

class UserRead(BaseModel):
    """Public view of a user — never includes the password hash."""
    id: int
    username: str
    name: str
    address: Optional[str] = None
    role: UserRole
    status: UserStatus
    created_at: datetime

    model_config = {"from_attributes": True, **_camel}


# ─── Chat messages ──────────────────────────────────────

class ChatMessageCreate(BaseModel):
    sender: Sender
    message: str = Field(..., min_length=1)

    model_config = _camel


class ChatMessageRead(BaseModel):
    id: int
    ticket_id: int
    sender: Sender
    message: str
    created_at: datetime

    model_config = {"from_attributes": True, **_camel}


# ─── Tickets ────────────────────────────────────────────

class TicketCreate(BaseModel):
    title: str = Field(..., min_length=1, max_length=500)
    description: str = Field(default="")
    address: Optional[str] = None

    model_config = _camel


class StatusChange(BaseModel):
    """Closed set — unknown statuses are rejected with 400."""
    status: TicketStatus


class TicketRead(BaseModel):
    id: int
    title: str
    description: str
    status: TicketStatus
    user_id: int
    address: Optional[str] = None
    maps_link: Optional[str] = None
    created_at: datetime
    messages: list[ChatMessageRead] = []
    user: Optional[UserRead] = None

    model_config = {"from_attributes": True, **_camel}


def dump(model: type[BaseModel], obj: Any) -> dict[str, Any]:
    """ORM object → JSON-safe camelCase dict (for event frames)."""
    return model.model_validate(obj).model_dump(mode="json", by_alias=True)
