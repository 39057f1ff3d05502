"""
Health check endpoints - used by load balancers, Docker healthcheck, and monitoring.

- GET /health       - basic liveness (always 200 if app running)
- GET /health/ready - readiness check (DB + Redis, plus dispatcher heartbeat when enabled)
"""
import logging
from datetime import datetime, timezone
from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy import text

from src.api.deps import get_app_settings
from src.config import Settings
from src.database import get_db

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


@router.get("/health")
async def health_check():
    """Basic liveness check - returns 200 if the app is running."""
    return {
        "status": "healthy",
        "timestamp": datetime.now(timezone.utc).isoformat(),
        "version": VERSION,
    }


@router.get("/health/ready")
async def readiness_check(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_app_settings),
):
    """
    Readiness check - verifies database and Redis connectivity.
    Redis is best-effort for the queue, so a Redis outage reports "degraded"
    rather than failing the probe.
    """
    checks = {
        "database": await _check_database(db),
        "redis": await _check_redis(),
    }
    if settings.dispatcher_enabled:
        checks["dispatcher"] = await _check_dispatcher()

    all_healthy = all(c["healthy"] for c in checks.values())
    return {
        "status": "ready" if all_healthy else "degraded",
        "checks": checks,
        "timestamp": datetime.now(timezone.utc).isoformat(),
    }


async def _check_database(db: AsyncSession) -> dict:
    try:
        result = await db.execute(text("SELECT 1"))
        result.scalar()
        return {"healthy": True}
    except Exception as e:
        logger.error("Database health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_redis() -> dict:
    try:
        from src.utils.redis_client import get_redis
        redis = await get_redis()
        await redis.ping()
        return {"healthy": True}
    except Exception as e:
        logger.warning("Redis health check failed: %s", str(e))
        return {"healthy": False, "error": str(e)}


async def _check_dispatcher() -> dict:
    """Dispatcher heartbeat freshness (the key expires when the loop stalls)."""
    try:
        from src.utils.redis_client import get_redis, HEARTBEAT_KEY_PREFIX
        redis = await get_redis()
        heartbeat = await redis.get(f"{HEARTBEAT_KEY_PREFIX}event_dispatcher")
        return {"healthy": heartbeat is not None, "last_heartbeat": heartbeat}
    except Exception as e:
        return {"healthy": False, "error": str(e)}
