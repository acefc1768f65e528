"""
Liveness and readiness probes.

GET /health reports the process is up. GET /health/ready checks the
database and Redis and counts running background workers. Redis only backs
queue wake-ups, heartbeats and alert cooldowns, so losing it reports
"degraded" rather than failing the probe.
"""
import logging
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Request
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession

from hookgate.database import get_db
from hookgate.schemas.api_responses import HealthResponse, ReadinessResponse
from hookgate.utils.redis_client import get_redis

logger = logging.getLogger(__name__)
router = APIRouter(tags=["health"])

VERSION = "1.0.0"


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


async def _database_ok(db: AsyncSession) -> bool:
    try:
        await db.execute(text("SELECT 1"))
        return True
    except Exception as e:
        logger.error("Readiness: database unreachable: %s", str(e))
        return False


async def _redis_ok() -> bool:
    try:
        await (await get_redis()).ping()
        return True
    except Exception as e:
        logger.warning("Readiness: redis unreachable: %s", str(e))
        return False


@router.get("/health", response_model=HealthResponse)
async def health_check():
    return {"status": "healthy", "timestamp": _now(), "version": VERSION}


@router.get("/health/ready", response_model=ReadinessResponse)
async def readiness_check(request: Request, db: AsyncSession = Depends(get_db)):
    checks = {"database": await _database_ok(db), "redis": await _redis_ok()}
    workers = [t for t in getattr(request.app.state, "worker_tasks", None) or [] if not t.done()]
    return {
        "status": "ready" if all(checks.values()) else "degraded",
        "checks": checks,
        "timestamp": _now(),
        "workers": len(workers),
    }
