"""Test fixtures — a fresh SQLite database per test.

Learn: Testing pattern for async SQLAlchemy + FastAPI:

1. Env vars are set BEFORE anything imports ticketrelay.config, because
   Settings() refuses to start without a JWT secret.
2. Each test gets its own SQLite file under tmp_path with the schema
   created from the models. NullPool means every session opens a fresh
   connection, so sessions can be used from any event loop (the
   WebSocket tests run the app in TestClient's own loop).
3. Each test builds its own app via create_app(), with get_db and
   get_session_factory overridden to point at that file and its own
   RoomBroadcaster, so no state leaks between tests.
"""

import json
import os
import tempfile

_TEST_DIR = tempfile.mkdtemp(prefix="ticketrelay-tests-")
os.environ.setdefault("TICKETRELAY_JWT_SECRET", "test-secret-not-for-production")
os.environ.setdefault("TICKETRELAY_BCRYPT_ROUNDS", "4")
# Nothing listens on port 1: lifespan startup logs redis as unavailable
os.environ.setdefault("TICKETRELAY_REDIS_URL", "redis://127.0.0.1:1/0")
os.environ.setdefault(
    "TICKETRELAY_DATABASE_URL", f"sqlite+aiosqlite:///{_TEST_DIR}/default.db"
)

import pytest  # noqa: E402
import pytest_asyncio  # noqa: E402
from httpx import ASGITransport, AsyncClient  # noqa: E402
from sqlalchemy import create_engine  # noqa: E402
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker  # noqa: E402
from sqlalchemy.pool import NullPool  # noqa: E402

from ticketrelay.db.engine import build_engine, get_db, get_session_factory  # noqa: E402
from ticketrelay.db.models import Base  # noqa: E402
from ticketrelay.main import create_app  # noqa: E402
from ticketrelay.realtime.rooms import RoomBroadcaster  # noqa: E402


@pytest.fixture()
def db_path(tmp_path):
    """SQLite file with the full schema, created synchronously."""
    path = tmp_path / "ticketrelay.db"
    sync_engine = create_engine(f"sqlite:///{path}")
    Base.metadata.create_all(sync_engine)
    sync_engine.dispose()
    return path


@pytest.fixture()
def session_factory(db_path):
    engine = build_engine(f"sqlite+aiosqlite:///{db_path}", poolclass=NullPool)
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture()
async def db_session(session_factory):
    """Direct session for arranging data and checking what was stored."""
    async with session_factory() as session:
        yield session


@pytest.fixture()
def broadcaster():
    return RoomBroadcaster()


@pytest.fixture()
def app(session_factory, broadcaster, monkeypatch):
    """A fresh app wired to this test's database and broadcaster."""
    from ticketrelay.api import health

    monkeypatch.setattr(health, "engine", session_factory.kw["bind"])
    application = create_app()
    application.state.broadcaster = broadcaster

    async def override_get_db():
        async with session_factory() as session:
            yield session

    application.dependency_overrides[get_db] = override_get_db
    application.dependency_overrides[get_session_factory] = lambda: session_factory
    return application


@pytest_asyncio.fixture()
async def client(app):
    """HTTP client talking to the app in-process."""
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac


@pytest_asyncio.fixture()
async def alice(client):
    """Register + login 'alice'. Returns (auth headers, user dict)."""
    r = await client.post(
        "/api/auth/register",
        json={
            "username": "alice",
            "name": "Alice",
            "password": "pw123",
            "address": "12 Baker Street, London",
        },
    )
    assert r.status_code == 201
    r = await client.post(
        "/api/auth/login", json={"username": "alice", "password": "pw123"}
    )
    assert r.status_code == 200
    body = r.json()
    return {"Authorization": f"Bearer {body['token']}"}, body["user"]


# ─── Fake event-channel connections ──────────────────────


async def _discard(frame: str) -> None:
    pass


@pytest.fixture()
def connect(broadcaster):
    """Register a fake connection (no socket; frames stay in its outbox)."""

    def _connect():
        return broadcaster.registry.register(_discard)

    return _connect


@pytest.fixture()
def drain():
    """Pop every queued frame off a connection, decoded."""

    def _drain(conn) -> list[dict]:
        frames = []
        while not conn.outbox.empty():
            frames.append(json.loads(conn.outbox.get_nowait()))
        return frames

    return _drain
