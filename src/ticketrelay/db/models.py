"""SQLAlchemy ORM models — single source of truth for the database schema.

Learn: Declarative ORM mapping with SQLAlchemy 2.0 style (Mapped[] + mapped_column).
Each class = one table. Relationships, constraints, and indexes defined here.
Alembic migrations mirror these models.

Key concepts:
- Integer primary keys — ticket ids are short and human-facing ("ticket 42")
- Closed enums (role, status, sender) stored as short strings; the
  allowed values live in the Enum classes below and are checked at the
  service boundary
- created_at set client-side with microsecond precision so chat ordering
  is stable even on backends with second-resolution now()
"""

import enum
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import DateTime, ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import DeclarativeBase, Mapped, mapped_column, relationship


class Base(DeclarativeBase):
    """Base class for all models."""
    pass


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ══════════════════════════════════════════════════════════════
# Closed value sets
# ══════════════════════════════════════════════════════════════


class UserRole(str, enum.Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"


class UserStatus(str, enum.Enum):
    ACTIVE = "active"
    INACTIVE = "inactive"


class TicketStatus(str, enum.Enum):
    OPEN = "open"
    IN_PROGRESS = "in_progress"
    RESOLVED = "resolved"
    CLOSED = "closed"


class Sender(str, enum.Enum):
    CUSTOMER = "customer"
    ADMIN = "admin"
    BOT = "bot"


# ══════════════════════════════════════════════════════════════
# Tables
# ══════════════════════════════════════════════════════════════


class User(Base):
    """A customer or support admin.

    Learn: Only status and address change after registration. The
    password hash never leaves this table — API schemas omit it.
    """

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String(100), unique=True, nullable=False)
    name: Mapped[str] = mapped_column(String(100), nullable=False)
    password_hash: Mapped[str] = mapped_column(String(255), nullable=False)
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    role: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserRole.CUSTOMER.value
    )
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=UserStatus.ACTIVE.value
    )
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    tickets: Mapped[list["Ticket"]] = relationship(back_populates="user")


class ChatMessage(Base):
    """One chat line inside a ticket. Append-only: never updated or deleted."""

    __tablename__ = "chat_messages"
    __table_args__ = (
        Index("idx_chat_messages_ticket", "ticket_id", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    ticket_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("tickets.id"), nullable=False
    )
    sender: Mapped[str] = mapped_column(String(20), nullable=False)
    message: Mapped[str] = mapped_column(Text, nullable=False)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    ticket: Mapped["Ticket"] = relationship(back_populates="messages")


class Ticket(Base):
    """A support ticket owned by the user who opened it.

    Learn: status is only ever changed through TicketService.update_status,
    which broadcasts the change. Tickets are never deleted.
    """

    __tablename__ = "tickets"
    __table_args__ = (
        Index("idx_tickets_created", "created_at"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[str] = mapped_column(Text, nullable=False, default="")
    status: Mapped[str] = mapped_column(
        String(20), nullable=False, default=TicketStatus.OPEN.value
    )
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id"), nullable=False
    )
    address: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    maps_link: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True), default=utcnow, nullable=False
    )

    # Relationships
    user: Mapped["User"] = relationship(back_populates="tickets")
    messages: Mapped[list["ChatMessage"]] = relationship(
        back_populates="ticket",
        order_by=[ChatMessage.created_at, ChatMessage.id],
    )
