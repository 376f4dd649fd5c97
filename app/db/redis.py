"""Redis client backing the shared debug-session store.

Only initialized when REDIS_URL is set; single-process deployments keep
debug sessions in memory instead.
"""

import redis.asyncio as redis
import structlog

from app.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


async def init_redis(url: str | None = None) -> None:
    """Connect and ping. Raises if Redis is configured but unreachable."""
    global _redis

    if _redis is not None:
        return

    redis_url = url or get_settings().redis_url
    if not redis_url:
        raise RuntimeError("REDIS_URL is not configured")

    client = redis.from_url(
        redis_url,
        encoding="utf-8",
        decode_responses=True,
        socket_connect_timeout=5,
        socket_timeout=5,
    )
    await client.ping()
    _redis = client
    logger.info("redis_connected")


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def get_redis() -> redis.Redis:
    """Return the shared Redis client.

    Raises RuntimeError if init_redis() has not been called.
    """
    if _redis is None:
        raise RuntimeError("Redis not initialized. Call init_redis() first.")
    return _redis
