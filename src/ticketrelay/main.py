"""FastAPI application factory.

Learn: App factory pattern — create_app() returns a configured FastAPI
instance with its own RoomBroadcaster on app.state. Lifespan manages
startup/shutdown (Redis, database engine). Middleware, CORS, error
handlers and routers are all registered here.
"""

from contextlib import asynccontextmanager

import structlog
from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, PlainTextResponse
from sqlalchemy.exc import SQLAlchemyError

from ticketrelay import __version__
from ticketrelay.api import api_router
from ticketrelay.config import settings
from ticketrelay.errors import AuthError, TicketRelayError
from ticketrelay.realtime.registry import ConnectionRegistry
from ticketrelay.realtime.rooms import RoomBroadcaster

logger = structlog.get_logger()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown lifecycle.

    Learn: Anything before `yield` runs at startup, after `yield` runs at
    shutdown. Rooms need no setup: they start empty on every boot and
    clients re-join after reconnecting.
    """
    logger.info(
        "ticketrelay.starting",
        version=__version__,
        environment=settings.environment,
        port=settings.port,
    )

    from ticketrelay.db.redis_pool import close_redis, init_redis
    try:
        await init_redis()
        logger.info("ticketrelay.redis_connected", url=settings.redis_url)
    except Exception as e:
        logger.warning("ticketrelay.redis_unavailable", error=str(e))
        # Redis is optional — only rate limiting is lost

    yield

    logger.info(
        "ticketrelay.shutdown", connections=len(app.state.broadcaster.registry)
    )
    await close_redis()

    from ticketrelay.db.engine import engine
    await engine.dispose()


# ─── Error mapping ───────────────────────────────────────


async def _domain_error(request: Request, exc: TicketRelayError) -> JSONResponse:
    headers = {"WWW-Authenticate": "Bearer"} if isinstance(exc, AuthError) else None
    return JSONResponse(
        status_code=exc.status_code, content={"error": exc.message}, headers=headers
    )


async def _request_validation_error(
    request: Request, exc: RequestValidationError
) -> JSONResponse:
    """Pydantic body/path validation → 400 with a one-line message."""
    first = exc.errors()[0] if exc.errors() else {}
    field = ".".join(str(p) for p in first.get("loc", ()) if p != "body")
    message = first.get("msg", "Invalid request")
    return JSONResponse(
        status_code=400,
        content={"error": f"{field}: {message}" if field else message},
    )


async def _store_error(request: Request, exc: SQLAlchemyError) -> JSONResponse:
    logger.error("store.error", path=request.url.path, error=str(exc))
    return JSONResponse(status_code=500, content={"error": "Store error"})


async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    logger.exception("http.unhandled_error", path=request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


def create_app() -> FastAPI:
    """Build and return the FastAPI application."""
    app = FastAPI(
        title="TicketRelay",
        description="Support tickets with live chat rooms and real-time updates",
        version=__version__,
        lifespan=lifespan,
    )
    app.state.broadcaster = RoomBroadcaster(
        ConnectionRegistry(max_pending=settings.outbound_queue_size)
    )

    # ── Middleware stack ──────────────────────────────────────
    # Note: Starlette middleware executes in reverse order of registration.
    # Request flow: CORS → RateLimit → Security → RequestId → handler

    from ticketrelay.middleware.rate_limit import RateLimitMiddleware
    from ticketrelay.middleware.request_id import RequestIdMiddleware
    from ticketrelay.middleware.security import SecurityHeadersMiddleware

    app.add_middleware(RequestIdMiddleware)
    app.add_middleware(SecurityHeadersMiddleware)
    app.add_middleware(
        RateLimitMiddleware,
        default_rpm=settings.rate_limit_rpm,
        auth_rpm=settings.rate_limit_auth_rpm,
    )
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # ── Error handlers ────────────────────────────────────────
    app.add_exception_handler(TicketRelayError, _domain_error)
    app.add_exception_handler(RequestValidationError, _request_validation_error)
    app.add_exception_handler(SQLAlchemyError, _store_error)
    app.add_exception_handler(Exception, _unexpected_error)

    @app.get("/", response_class=PlainTextResponse, include_in_schema=False)
    async def banner():
        return f"TicketRelay {__version__} is running. API under /api, events at /ws."

    app.include_router(api_router)

    from ticketrelay.realtime.websocket import router as ws_router
    app.include_router(ws_router)

    return app


# Default app instance (used by uvicorn: ticketrelay.main:app)
app = create_app()
