"""Health check endpoint.

Verifies the server is running and reports database and Redis
reachability plus how many users have a live stream open.
"""

from fastapi import APIRouter, Depends
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from smartflow import __version__
from smartflow.db.engine import get_db
from smartflow.realtime.registry import PushRegistry, get_push_registry

router = APIRouter()


@router.get("/health")
async def health_check(
    db: AsyncSession = Depends(get_db),
    push: PushRegistry = Depends(get_push_registry),
):
    """Check server health and dependency connectivity."""
    checks = {"server": "ok", "version": __version__}

    try:
        await db.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        checks["database"] = f"error: {e}"

    # Redis only backs rate limiting, so it doesn't affect status
    try:
        from smartflow.redis_client import get_redis

        await get_redis().ping()
        checks["redis"] = "ok"
    except Exception as e:
        checks["redis"] = f"unavailable: {e}"

    status = "healthy" if checks["database"] == "ok" else "degraded"
    return {
        "status": status,
        **checks,
        "stream_users": len(push.connected_users()),
    }
