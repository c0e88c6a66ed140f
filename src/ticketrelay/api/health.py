"""Health check endpoint.

Learn: Simple GET endpoint that verifies the server is running, the
database answers, and reports real-time load (connections and rooms).
Redis is optional, so a missing Redis marks it "unavailable" without
degrading overall status.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text

from ticketrelay import __version__
from ticketrelay.api.deps import get_broadcaster
from ticketrelay.db.engine import engine
from ticketrelay.realtime.rooms import RoomBroadcaster

router = APIRouter()


@router.get("/health")
async def health_check(broadcaster: RoomBroadcaster = Depends(get_broadcaster)):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    try:
        from ticketrelay.db.redis_pool import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except RuntimeError:
        checks["redis"] = "unavailable"
    except Exception as e:
        checks["redis"] = f"error: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"

    return {
        "status": status,
        **checks,
        "connections": len(broadcaster.registry),
        "rooms": len(broadcaster.rooms()),
    }
