import structlog
from fastapi import APIRouter, Request
from fastapi.responses import JSONResponse
from sqlalchemy import text

logger = structlog.get_logger(__name__)

router = APIRouter()

SERVICE_NAME = "storefront-webhooks"


@router.get("/health")
async def health_check(request: Request):
    """Liveness probe. Returns 503 during graceful shutdown so the load balancer drains traffic."""
    if getattr(request.app.state, "shutting_down", False):
        return JSONResponse(
            status_code=503,
            content={"status": "shutting_down", "service": SERVICE_NAME},
        )
    return {"status": "healthy", "service": SERVICE_NAME}


@router.get("/ready")
async def readiness_check(request: Request):
    """Readiness check - verifies dependencies are available.

    Redis is only checked when the Redis debug-session store is in use.
    """
    checks = {"database": False}

    try:
        from app.db.base import get_session_factory

        async with get_session_factory()() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = True
    except Exception as e:
        logger.error("readiness_database_failed", error=str(e))

    if getattr(request.app.state, "uses_redis", False):
        checks["redis"] = False
        try:
            from app.db.redis import get_redis

            await get_redis().ping()
            checks["redis"] = True
        except Exception as e:
            logger.error("readiness_redis_failed", error=str(e))

    all_healthy = all(checks.values())
    status_code = 200 if all_healthy else 503

    return JSONResponse(
        status_code=status_code,
        content={"status": "ready" if all_healthy else "degraded", "checks": checks},
    )
