"""API route aggregation.

All routers registered here get mounted in main.py under /api.

Learn: Unlike a blanket auth dependency on include_router, auth here is
per route: reading tickets and chatting is open, creating a ticket needs
a bearer token, and status changes follow a configurable policy.
"""

from fastapi import APIRouter

from ticketrelay.api.auth import router as auth_router
from ticketrelay.api.health import router as health_router
from ticketrelay.api.tickets import router as tickets_router

api_router = APIRouter(prefix="/api")

api_router.include_router(health_router, tags=["health"])
api_router.include_router(auth_router, tags=["auth"])
api_router.include_router(tickets_router, tags=["tickets", "messages"])
