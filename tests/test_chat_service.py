"""Chat relay tests — persist first, broadcast second.

Learn: The key property is that no `newMessage` frame ever describes a
row the database doesn't have. test_broadcast_happens_after_commit checks
this from the outside: at the instant of publishing, it opens a separate
plain sqlite3 connection and looks for the row.
"""

import asyncio
import sqlite3

import pytest
from sqlalchemy import select
from structlog.testing import capture_logs

from ticketrelay.db.models import ChatMessage
from ticketrelay.schemas.ticket import ChatMessageRead, dump
from ticketrelay.errors import NotFoundError, StoreError, ValidationError
from ticketrelay.services.chat_service import ChatService
from ticketrelay.services.ticket_service import TicketService
from ticketrelay.services.user_service import UserService


@pytest.fixture
async def ticket(db_session, broadcaster):
    user = await UserService(db_session).register("erin", "Erin", "pw123")
    return await TicketService(db_session, broadcaster).create_ticket(
        user.id, "Broken pipe", "Kitchen sink leaking"
    )


@pytest.fixture
def chat(db_session, broadcaster):
    return ChatService(db_session, broadcaster)


@pytest.mark.asyncio
async def test_send_message_persists_and_returns(chat, ticket, db_session):
    msg = await chat.send_message(ticket.id, "customer", "hello")

    assert msg.id is not None
    assert msg.ticket_id == ticket.id
    assert msg.sender == "customer"
    stored = (await db_session.execute(select(ChatMessage))).scalars().all()
    assert [m.id for m in stored] == [msg.id]


@pytest.mark.asyncio
async def test_send_message_broadcasts_to_room_only(
    chat, ticket, broadcaster, connect, drain
):
    member, outsider = connect(), connect()
    broadcaster.join(member, ticket.id)
    drain(member), drain(outsider)

    msg = await chat.send_message(ticket.id, "admin", "On my way")

    frames = drain(member)
    assert frames == [{"type": "newMessage", **dump(ChatMessageRead, msg)}]
    assert frames[0]["ticketId"] == ticket.id
    assert frames[0]["sender"] == "admin"
    assert drain(outsider) == []


@pytest.mark.asyncio
async def test_broadcast_happens_after_commit(
    db_path, chat, ticket, broadcaster, monkeypatch
):
    seen_in_db = []
    original = broadcaster.publish_to_room

    def spy(ticket_id, event_type, payload):
        with sqlite3.connect(db_path) as raw:
            row = raw.execute(
                "SELECT id FROM chat_messages WHERE id = ?", (payload["id"],)
            ).fetchone()
        seen_in_db.append(row is not None)
        return original(ticket_id, event_type, payload)

    monkeypatch.setattr(broadcaster, "publish_to_room", spy)

    await chat.send_message(ticket.id, "customer", "hello")

    assert seen_in_db == [True]


@pytest.mark.asyncio
async def test_message_visible_in_ticket_after_send(chat, ticket, db_session, broadcaster):
    first = await chat.send_message(ticket.id, "customer", "hello")
    second = await chat.send_message(ticket.id, "bot", "A technician will call you")

    reloaded = await TicketService(db_session, broadcaster).get_ticket(ticket.id)
    assert [m.id for m in reloaded.messages] == [first.id, second.id]


@pytest.mark.asyncio
async def test_unknown_ticket_fails_without_broadcast(
    chat, broadcaster, connect, drain, db_session
):
    """Foreign-key violation → StoreError, error logged, nothing published."""
    watcher = connect()
    broadcaster.join(watcher, 5)

    with capture_logs() as logs:
        with pytest.raises(StoreError):
            await chat.send_message(5, "customer", "hello")

    assert drain(watcher) == []
    assert (await db_session.execute(select(ChatMessage))).scalars().all() == []
    assert any(
        entry["event"] == "chat.persist_failed" and entry["ticket_id"] == 5
        for entry in logs
    )


@pytest.mark.asyncio
async def test_session_usable_after_failed_write(chat, ticket):
    ticket_id = ticket.id  # rollback expires loaded objects
    with pytest.raises(StoreError):
        await chat.send_message(999, "customer", "lost")
    msg = await chat.send_message(ticket_id, "customer", "still works")
    assert msg.id is not None


@pytest.mark.parametrize("sender", ["robot", "", None, "Customer"])
@pytest.mark.asyncio
async def test_unknown_sender_rejected(chat, ticket, sender, connect, drain, broadcaster):
    watcher = connect()
    broadcaster.join(watcher, ticket.id)

    with pytest.raises(ValidationError):
        await chat.send_message(ticket.id, sender, "hello")
    assert drain(watcher) == []


@pytest.mark.asyncio
async def test_blank_message_rejected(chat, ticket):
    with pytest.raises(ValidationError):
        await chat.send_message(ticket.id, "customer", "   ")


@pytest.mark.asyncio
async def test_concurrent_senders_broadcast_in_submission_order(
    session_factory, ticket, broadcaster, connect, drain
):
    watcher = connect()
    broadcaster.join(watcher, ticket.id)

    async def send(i):
        async with session_factory() as db:
            await ChatService(db, broadcaster, ordered=True).send_message(
                ticket.id, "customer", f"m{i}"
            )

    await asyncio.gather(*(send(i) for i in range(5)))

    frames = drain(watcher)
    assert [f["message"] for f in frames] == ["m0", "m1", "m2", "m3", "m4"]
    ids = [f["id"] for f in frames]
    assert ids == sorted(ids)


@pytest.mark.asyncio
async def test_list_messages(chat, ticket):
    await chat.send_message(ticket.id, "customer", "one")
    await chat.send_message(ticket.id, "admin", "two")

    messages = await chat.list_messages(ticket.id)
    assert [m.message for m in messages] == ["one", "two"]


@pytest.mark.asyncio
async def test_list_messages_unknown_ticket(chat):
    with pytest.raises(NotFoundError):
        await chat.list_messages(404)
