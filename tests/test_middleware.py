"""Tests for HTTP middleware — security headers, request IDs, rate limiting.

Learn: Redis isn't initialized in tests (no lifespan), so the rate limiter
passes everything through; one test fakes a Redis client to exercise it.
"""

import pytest

from ticketrelay.db import redis_pool


@pytest.mark.asyncio
async def test_security_headers_on_health(client):
    r = await client.get("/api/health")
    assert r.status_code == 200
    assert r.headers["X-Content-Type-Options"] == "nosniff"
    assert r.headers["X-Frame-Options"] == "DENY"
    assert r.headers["Referrer-Policy"] == "strict-origin-when-cross-origin"


@pytest.mark.asyncio
async def test_api_responses_are_not_cacheable(client):
    r = await client.get("/api/tickets")
    assert r.headers["Cache-Control"] == "no-store"


@pytest.mark.asyncio
async def test_request_id_generated(client):
    """Each request gets a unique X-Request-ID header."""
    r1 = await client.get("/api/health")
    r2 = await client.get("/api/health")
    assert r1.headers["X-Request-ID"] != r2.headers["X-Request-ID"]


@pytest.mark.asyncio
async def test_request_id_propagated(client):
    r = await client.get("/api/health", headers={"X-Request-ID": "trace-12345"})
    assert r.headers["X-Request-ID"] == "trace-12345"


@pytest.mark.asyncio
async def test_no_hsts_on_http(client):
    r = await client.get("/api/health")
    assert "Strict-Transport-Security" not in r.headers


class _FakeRedis:
    def __init__(self):
        self.counts = {}

    async def incr(self, key):
        self.counts[key] = self.counts.get(key, 0) + 1
        return self.counts[key]

    async def expire(self, key, seconds):
        return True


@pytest.mark.asyncio
async def test_auth_endpoints_are_rate_limited(client, monkeypatch):
    """Login gets the stricter per-minute budget; the overflow request is 429."""
    monkeypatch.setattr(redis_pool, "_redis", _FakeRedis())

    statuses = []
    for _ in range(11):
        r = await client.post(
            "/api/auth/login", json={"username": "nobody", "password": "x"}
        )
        statuses.append(r.status_code)

    assert statuses[:10] == [401] * 10
    assert statuses[10] == 429
    assert r.json() == {"error": "Rate limit exceeded. Try again later."}
    assert r.headers["Retry-After"] == "60"


@pytest.mark.asyncio
async def test_rate_limit_headers(client, monkeypatch):
    monkeypatch.setattr(redis_pool, "_redis", _FakeRedis())
    r = await client.get("/api/tickets")
    assert r.headers["X-RateLimit-Limit"] == "100"
    assert r.headers["X-RateLimit-Remaining"] == "99"
