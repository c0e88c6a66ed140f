"""Chat service — the chat relay.

Learn: A chat message is written first and broadcast second, never the
other way round. A `newMessage` frame therefore always describes a row
that is already committed; if the write fails (unknown ticket, database
down) nobody hears about the message except the sender, who gets the
error.

Ordering: with ordered_chat_delivery on (the default) the write and the
publish run under a per-ticket lock, so two customers typing into the
same ticket at once are broadcast in the order they were submitted.
With it off, whichever INSERT finishes first is broadcast first.
"""

from typing import Union

import structlog
from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from ticketrelay.config import settings
from ticketrelay.db.models import ChatMessage, Sender, Ticket
from ticketrelay.errors import NotFoundError, StoreError, ValidationError
from ticketrelay.events.types import NEW_MESSAGE
from ticketrelay.realtime.rooms import RoomBroadcaster
from ticketrelay.schemas.ticket import ChatMessageRead, dump

logger = structlog.get_logger()


def parse_sender(sender: Union[str, Sender]) -> Sender:
    try:
        return Sender(sender)
    except ValueError:
        allowed = ", ".join(s.value for s in Sender)
        raise ValidationError(f"Invalid sender '{sender}'. Allowed: {allowed}")


class ChatService:
    def __init__(
        self,
        db: AsyncSession,
        broadcaster: RoomBroadcaster,
        ordered: bool | None = None,
    ):
        self.db = db
        self.broadcaster = broadcaster
        self.ordered = settings.ordered_chat_delivery if ordered is None else ordered

    async def send_message(
        self, ticket_id: int, sender: Union[str, Sender], message: str
    ) -> ChatMessage:
        """Persist a chat message, then push it to the ticket's room.

        Raises:
            ValidationError: unknown sender or empty message
            StoreError: the write failed; nothing was broadcast
        """
        sender = parse_sender(sender)
        if not isinstance(message, str) or not message.strip():
            raise ValidationError("Message text is required")

        if not self.ordered:
            return await self._persist_then_publish(ticket_id, sender, message)
        async with self.broadcaster.sequenced(ticket_id):
            return await self._persist_then_publish(ticket_id, sender, message)

    async def _persist_then_publish(
        self, ticket_id: int, sender: Sender, message: str
    ) -> ChatMessage:
        chat_message = ChatMessage(
            ticket_id=ticket_id,
            sender=sender.value,
            message=message,
        )
        self.db.add(chat_message)
        try:
            await self.db.commit()
        except SQLAlchemyError as e:
            await self.db.rollback()
            logger.error(
                "chat.persist_failed",
                ticket_id=ticket_id,
                sender=sender.value,
                error=str(e),
            )
            raise StoreError("Failed to save chat message")

        logger.info(
            "chat.persisted",
            ticket_id=ticket_id,
            message_id=chat_message.id,
            sender=sender.value,
        )
        self.broadcaster.publish_to_room(
            ticket_id, NEW_MESSAGE, dump(ChatMessageRead, chat_message)
        )
        return chat_message

    async def list_messages(self, ticket_id: int) -> list[ChatMessage]:
        """A ticket's messages, oldest first."""
        if not await self.db.get(Ticket, ticket_id):
            raise NotFoundError("Ticket not found")
        result = await self.db.execute(
            select(ChatMessage)
            .where(ChatMessage.ticket_id == ticket_id)
            .order_by(ChatMessage.created_at, ChatMessage.id)
        )
        return list(result.scalars().all())
