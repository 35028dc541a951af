"""
Async Redis client shared by the live-delivery relay.

Redis is advisory here: when it is disabled or unreachable the application
runs single-process and delivers live messages locally.
"""

from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.logging import get_logger
from app.core.metrics import redis_connection_errors

logger = get_logger(__name__)
settings = get_settings()

_redis_client: Optional[redis.Redis] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create the Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            health_check_interval=30,
        )
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            redis_connection_errors.inc()
            logger.error("redis_connection_failed", url=settings.REDIS_URL, error=str(e))
            await client.aclose()
            return None
        _redis_client = client
        logger.info("redis_connected", url=settings.REDIS_URL)

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None


async def redis_status() -> dict:
    if not settings.REDIS_ENABLED:
        return {"status": "disabled"}
    if _redis_client is None:
        return {"status": "unavailable"}
    try:
        await _redis_client.ping()
    except (redis.RedisError, OSError) as e:
        return {"status": "error", "error": str(e)}
    return {"status": "connected"}
