"""Ticket lifecycle tests at the service layer.

Learn: The service is exercised directly with a real (SQLite) session and
an in-memory broadcaster, so each test can check both what was stored
and what every connection was told.
"""

import pytest
from sqlalchemy import select

from ticketrelay.db.models import Ticket, TicketStatus
from ticketrelay.errors import NotFoundError, ValidationError
from ticketrelay.services.ticket_service import (
    TicketService,
    build_maps_link,
    resolve_address,
)
from ticketrelay.services.user_service import UserService

MAPS = "https://www.google.com/maps/search/?api=1&query="


@pytest.fixture
async def user(db_session):
    return await UserService(db_session).register(
        "carol", "Carol", "pw123", address="  7 Elm Road, Leeds  "
    )


@pytest.fixture
async def homeless_user(db_session):
    return await UserService(db_session).register("dave", "Dave", "pw123")


@pytest.fixture
def svc(db_session, broadcaster):
    return TicketService(db_session, broadcaster)


# ═══════════════════════════════════════════════════════════
# Address / maps link derivation
# ═══════════════════════════════════════════════════════════


def test_resolve_address_prefers_supplied():
    assert resolve_address("  1 Main St ", "2 Side St") == "1 Main St"


def test_resolve_address_falls_back_to_profile():
    assert resolve_address("   ", "2 Side St") == "2 Side St"
    assert resolve_address(None, "2 Side St") == "2 Side St"


def test_resolve_address_none_when_nothing_known():
    assert resolve_address(None, None) is None
    assert resolve_address("", "  ") is None


def test_maps_link_is_url_encoded_and_deterministic():
    link = build_maps_link("Jl. Sudirman No. 1, Jakarta")
    assert link == MAPS + "Jl.%20Sudirman%20No.%201%2C%20Jakarta"
    assert build_maps_link("Jl. Sudirman No. 1, Jakarta") == link


def test_maps_link_encodes_reserved_characters():
    assert build_maps_link("A&B/C?#") == MAPS + "A%26B%2FC%3F%23"


# ═══════════════════════════════════════════════════════════
# Create
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_create_ticket_with_supplied_address(svc, user):
    ticket = await svc.create_ticket(
        user.id, "Broken pipe", "Kitchen sink leaking", address=" 1 Main St "
    )
    assert ticket.id is not None
    assert ticket.status == TicketStatus.OPEN.value
    assert ticket.user_id == user.id
    assert ticket.address == "1 Main St"
    assert ticket.maps_link == MAPS + "1%20Main%20St"
    assert ticket.messages == []
    assert ticket.user.username == "carol"


@pytest.mark.asyncio
async def test_create_ticket_uses_profile_address(svc, user):
    ticket = await svc.create_ticket(user.id, "No heat")
    assert ticket.address == "7 Elm Road, Leeds"
    assert ticket.maps_link == MAPS + "7%20Elm%20Road%2C%20Leeds"


@pytest.mark.asyncio
async def test_create_ticket_without_any_address(svc, homeless_user):
    ticket = await svc.create_ticket(homeless_user.id, "No heat")
    assert ticket.address is None
    assert ticket.maps_link is None


@pytest.mark.asyncio
async def test_create_ticket_requires_title(svc, user, db_session):
    with pytest.raises(ValidationError):
        await svc.create_ticket(user.id, "   ")
    assert (await db_session.execute(select(Ticket))).scalars().all() == []


@pytest.mark.asyncio
async def test_create_ticket_unknown_user(svc):
    with pytest.raises(NotFoundError):
        await svc.create_ticket(12345, "Ghost ticket")


@pytest.mark.asyncio
async def test_create_ticket_broadcasts_globally(svc, user, broadcaster, connect, drain):
    watcher = connect()
    ticket = await svc.create_ticket(user.id, "Broken pipe")

    frames = drain(watcher)
    assert len(frames) == 1
    assert frames[0]["type"] == "newTicket"
    assert frames[0]["id"] == ticket.id
    assert frames[0]["userId"] == user.id
    assert frames[0]["messages"] == []
    assert frames[0]["user"]["username"] == "carol"
    assert "passwordHash" not in frames[0]["user"]


# ═══════════════════════════════════════════════════════════
# Read
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_list_tickets_newest_first(svc, user):
    first = await svc.create_ticket(user.id, "First")
    second = await svc.create_ticket(user.id, "Second")
    third = await svc.create_ticket(user.id, "Third")

    tickets = await svc.list_tickets()
    assert [t.id for t in tickets] == [third.id, second.id, first.id]
    assert all(t.user.id == user.id for t in tickets)


@pytest.mark.asyncio
async def test_get_ticket_not_found(svc):
    with pytest.raises(NotFoundError):
        await svc.get_ticket(404)


# ═══════════════════════════════════════════════════════════
# Status
# ═══════════════════════════════════════════════════════════


@pytest.mark.asyncio
async def test_update_status_persists_and_broadcasts(
    svc, user, broadcaster, connect, drain
):
    ticket = await svc.create_ticket(user.id, "Broken pipe")
    watcher = connect()

    updated = await svc.update_status(ticket.id, "resolved")

    assert updated.status == "resolved"
    assert (await svc.get_ticket(ticket.id)).status == "resolved"
    frames = drain(watcher)
    assert [f["type"] for f in frames] == ["ticketUpdated"]
    assert frames[0]["status"] == "resolved"


@pytest.mark.asyncio
async def test_update_status_rejects_unknown_status(svc, user, connect, drain):
    ticket = await svc.create_ticket(user.id, "Broken pipe")
    watcher = connect()

    with pytest.raises(ValidationError):
        await svc.update_status(ticket.id, "exploded")

    assert (await svc.get_ticket(ticket.id)).status == "open"
    assert drain(watcher) == []


@pytest.mark.asyncio
async def test_update_status_not_found(svc, connect, drain):
    watcher = connect()
    with pytest.raises(NotFoundError):
        await svc.update_status(404, TicketStatus.CLOSED)
    assert drain(watcher) == []
