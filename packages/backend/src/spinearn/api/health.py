"""Health check endpoint.

Learn: Reports each dependency separately. The API can serve with Redis
down (no rate limits, no admin activity feed) and with the LISTEN
connection down (badges go stale until it reconnects), so the endpoint
says "degraded" instead of failing.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from spinearn import __version__
from spinearn.db.engine import engine

router = APIRouter()


async def _check_postgres() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
        return "ok"
    except Exception as e:
        return f"error: {e}"


async def _check_redis() -> str:
    from spinearn.realtime.pubsub import get_redis

    try:
        await get_redis().ping()
        return "ok"
    except Exception as e:
        return f"error: {e}"


def _check_change_feed(request: Request) -> str:
    distributor = getattr(request.app.state, "unread", None)
    if distributor is None:
        return "error: not installed"
    return "ok" if distributor.feed.connected else "error: disconnected"


@router.get("/health")
async def health_check(request: Request):
    """Check server health and dependency connectivity."""
    checks = {
        "server": "ok",
        "postgres": await _check_postgres(),
        "redis": await _check_redis(),
        "change_feed": _check_change_feed(request),
    }
    status = "healthy" if all(v == "ok" for v in checks.values()) else "degraded"
    return {"status": status, "version": __version__, **checks}
