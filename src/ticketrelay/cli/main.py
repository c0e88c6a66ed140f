"""TicketRelay CLI — run the server and work with tickets from a terminal.

Usage:
    ticketrelay serve                              # Run the API + WebSocket server
    ticketrelay adduser root --name Desk --admin   # Create a support admin
    ticketrelay login alice                        # Print a bearer token
    ticketrelay tickets                            # List tickets, newest first
    ticketrelay show 42                            # One ticket with its chat
    ticketrelay create "Broken pipe" -d "Sink"     # Open a ticket (needs a token)
    ticketrelay status 42 resolved                 # Change a ticket's status
    ticketrelay say 42 "On my way" --sender admin  # Post into a ticket's chat
"""

from __future__ import annotations

import asyncio
import concurrent.futures
import json
import os
import sys
from typing import Optional

import click
import httpx

from ticketrelay import __version__

# ---------------------------------------------------------------------------
# Config
# ---------------------------------------------------------------------------

DEFAULT_API_URL = "http://localhost:3000"


def _api_url() -> str:
    return os.environ.get("TICKETRELAY_API_URL", DEFAULT_API_URL).rstrip("/")


def _client(token: Optional[str] = None) -> httpx.AsyncClient:
    """Build an async HTTP client pointed at the TicketRelay server."""
    headers = {"Authorization": f"Bearer {token}"} if token else {}
    return httpx.AsyncClient(base_url=_api_url(), headers=headers, timeout=30.0)


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _run(coro):
    """Run an async coroutine from synchronous Click handler.

    Handles nested event loops (e.g. when invoked via Click CliRunner
    inside an existing async context like tests) by offloading to a thread.
    """
    try:
        asyncio.get_running_loop()
    except RuntimeError:
        return asyncio.run(coro)
    else:
        with concurrent.futures.ThreadPoolExecutor(max_workers=1) as pool:
            return pool.submit(asyncio.run, coro).result()


def _check(r: httpx.Response) -> dict | list:
    """Return the JSON body, or print the server's error and exit 1."""
    if r.is_success:
        return r.json()
    try:
        message = r.json().get("error", r.text)
    except (ValueError, AttributeError):
        message = r.text
    click.secho(f"Error ({r.status_code}): {message}", fg="red", err=True)
    sys.exit(1)


def _token_from_ctx(token: Optional[str]) -> str:
    tok = token or os.environ.get("TICKETRELAY_TOKEN")
    if not tok:
        click.secho(
            "Error: --token required (or set TICKETRELAY_TOKEN env var)",
            fg="red",
            err=True,
        )
        sys.exit(1)
    return tok


def _status_color(status: str) -> str:
    colors = {
        "open": "yellow",
        "in_progress": "cyan",
        "resolved": "green",
        "closed": "white",
        "customer": "blue",
        "admin": "magenta",
        "bot": "white",
    }
    return colors.get(status, "white")


def _print_ticket(t: dict) -> None:
    click.secho(f"Ticket #{t['id']}: {t['title']}", bold=True)
    click.echo(f"  Status:  {click.style(t['status'], fg=_status_color(t['status']))}")
    owner = t.get("user") or {}
    click.echo(f"  Owner:   {owner.get('name', '—')} ({owner.get('username', t['userId'])})")
    if t.get("address"):
        click.echo(f"  Address: {t['address']}")
        click.echo(f"  Map:     {t['mapsLink']}")
    if t.get("description"):
        click.echo(f"  {t['description']}")


# ---------------------------------------------------------------------------
# CLI group
# ---------------------------------------------------------------------------


@click.group()
@click.version_option(version=__version__, prog_name="ticketrelay")
def main():
    """TicketRelay — support tickets with live chat rooms."""


@main.command()
@click.option("--host", default=None, help="Bind address (default from settings)")
@click.option("--port", type=int, default=None, help="Port (default from settings)")
@click.option("--reload", is_flag=True, help="Auto-reload on code changes")
def serve(host: Optional[str], port: Optional[int], reload: bool):
    """Run the API and WebSocket server with uvicorn."""
    import uvicorn

    from ticketrelay.config import settings

    uvicorn.run(
        "ticketrelay.main:app",
        host=host or settings.host,
        port=port or settings.port,
        reload=reload,
    )


@main.command()
@click.argument("username")
@click.option("--name", required=True, help="Display name")
@click.password_option(confirmation_prompt=False)
@click.option("--address", default=None, help="Default service address")
@click.option("--admin", is_flag=True, help="Grant the admin role")
def adduser(
    username: str, name: str, password: str, address: Optional[str], admin: bool
):
    """Create a user straight in the database.

    Registration over HTTP only ever creates customers; this is how
    support staff accounts with the admin role are made.
    """
    _run(_adduser_impl(username, name, password, address, admin))


async def _adduser_impl(
    username: str, name: str, password: str, address: Optional[str], admin: bool
):
    from ticketrelay.db import engine as db_engine
    from ticketrelay.db.models import UserRole
    from ticketrelay.errors import TicketRelayError
    from ticketrelay.services.user_service import UserService

    role = UserRole.ADMIN if admin else UserRole.CUSTOMER
    async with db_engine.async_session_factory() as db:
        try:
            user = await UserService(db).register(
                username, name, password, address=address, role=role
            )
        except TicketRelayError as e:
            click.secho(f"Error: {e.message}", fg="red", err=True)
            sys.exit(1)
    click.secho(f"User #{user.id} {user.username} created ({user.role})", fg="green")


@main.command()
@click.argument("username")
@click.password_option(confirmation_prompt=False)
def login(username: str, password: str):
    """Log in and print a bearer token (export it as TICKETRELAY_TOKEN)."""
    _run(_login_impl(username, password))


async def _login_impl(username: str, password: str):
    async with _client() as c:
        data = _check(await c.post(
            "/api/auth/login", json={"username": username, "password": password}
        ))
    click.echo(data["token"])


@main.command()
@click.option("--json", "as_json", is_flag=True, help="Raw JSON output")
def tickets(as_json: bool):
    """List tickets, newest first."""
    _run(_tickets_impl(as_json))


async def _tickets_impl(as_json: bool):
    async with _client() as c:
        rows = _check(await c.get("/api/tickets"))

    if as_json:
        click.echo(json.dumps(rows, indent=2))
        return
    if not rows:
        click.echo("No tickets.")
        return

    click.secho(f"Tickets ({len(rows)}):", bold=True)
    for t in rows:
        status_str = click.style(f"{t['status']:12s}", fg=_status_color(t["status"]))
        owner = (t.get("user") or {}).get("username", "—")
        click.echo(
            f"  #{t['id']:<5} {status_str} {t['title'][:40]:40s}  "
            f"{owner:15s} {len(t.get('messages', []))} msg"
        )


@main.command()
@click.argument("ticket_id", type=int)
def show(ticket_id: int):
    """Show one ticket and its chat history."""
    _run(_show_impl(ticket_id))


async def _show_impl(ticket_id: int):
    async with _client() as c:
        t = _check(await c.get(f"/api/tickets/{ticket_id}"))

    _print_ticket(t)
    click.echo()
    if not t["messages"]:
        click.echo("  (no messages)")
    for m in t["messages"]:
        who = click.style(f"{m['sender']:8s}", fg=_status_color(m["sender"]))
        click.echo(f"  {m['createdAt'][:19]}  {who}  {m['message']}")


@main.command()
@click.argument("title")
@click.option("--description", "-d", default="", help="Longer description")
@click.option("--address", "-a", default=None, help="Service address (defaults to yours)")
@click.option("--token", help="Bearer token (or set TICKETRELAY_TOKEN)")
def create(title: str, description: str, address: Optional[str], token: Optional[str]):
    """Open a ticket as the logged-in user."""
    _run(_create_impl(title, description, address, token))


async def _create_impl(
    title: str, description: str, address: Optional[str], token: Optional[str]
):
    tok = _token_from_ctx(token)
    body = {"title": title, "description": description}
    if address:
        body["address"] = address

    async with _client(tok) as c:
        t = _check(await c.post("/api/tickets", json=body))
    click.secho(f"Ticket #{t['id']} created", fg="green")
    _print_ticket(t)


@main.command()
@click.argument("ticket_id", type=int)
@click.argument("new_status", type=click.Choice(["open", "in_progress", "resolved", "closed"]))
@click.option("--token", help="Bearer token (needed when the server requires admins)")
def status(ticket_id: int, new_status: str, token: Optional[str]):
    """Change a ticket's status."""
    _run(_status_impl(ticket_id, new_status, token or os.environ.get("TICKETRELAY_TOKEN")))


async def _status_impl(ticket_id: int, new_status: str, token: Optional[str]):
    async with _client(token) as c:
        t = _check(await c.patch(f"/api/tickets/{ticket_id}", json={"status": new_status}))
    status_str = click.style(t["status"], fg=_status_color(t["status"]))
    click.echo(f"Ticket #{t['id']} → {status_str}")


@main.command()
@click.argument("ticket_id", type=int)
@click.argument("message")
@click.option(
    "--sender", type=click.Choice(["customer", "admin", "bot"]), default="admin",
    show_default=True,
)
def say(ticket_id: int, message: str, sender: str):
    """Post a chat message into a ticket's room."""
    _run(_say_impl(ticket_id, message, sender))


async def _say_impl(ticket_id: int, message: str, sender: str):
    async with _client() as c:
        m = _check(await c.post(
            f"/api/tickets/{ticket_id}/messages",
            json={"sender": sender, "message": message},
        ))
    click.echo(f"Message #{m['id']} sent to ticket #{m['ticketId']}")


# ---------------------------------------------------------------------------
# Entry point
# ---------------------------------------------------------------------------

if __name__ == "__main__":
    main()
