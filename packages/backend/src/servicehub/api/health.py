"""Health check endpoint.

Learn: Reports both halves of the live pipeline plus how many views are
currently attached. Postgres down means fetches fail and the last known
counts stay on screen; Redis down means new sockets are refused. Either
way the answer is 200 with status "degraded", never a 5xx, so load
balancers keep routing REST traffic.
"""

from fastapi import APIRouter, Request
from sqlalchemy import text

from servicehub import __version__
from servicehub.db.engine import engine

router = APIRouter()


async def _check_postgres() -> str:
    try:
        async with engine.connect() as conn:
            await conn.execute(text("SELECT 1"))
    except Exception as e:
        return f"error: {e}"
    return "ok"


async def _check_redis() -> str:
    from servicehub.realtime.pubsub import get_redis

    try:
        await get_redis().ping()
    except Exception as e:
        return f"error: {e}"
    return "ok"


@router.get("/health")
async def health_check(request: Request):
    checks = {"postgres": await _check_postgres(), "redis": await _check_redis()}
    registry = getattr(request.app.state, "registry", None)

    return {
        "status": "healthy" if all(v == "ok" for v in checks.values()) else "degraded",
        "version": __version__,
        "checks": checks,
        "active_handles": registry.active_handles() if registry else 0,
    }
