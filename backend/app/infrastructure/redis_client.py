"""
Async Redis client shared by the notifier and the health check.
Connection failures are logged and reported as None so callers can
degrade instead of failing the request. After a failed connect no new
attempt is made for REDIS_RETRY_BACKOFF_SECONDS.
"""

import time
from typing import Optional

import redis.asyncio as redis

from app.core.config import get_settings
from app.core.logging import get_logger

logger = get_logger(__name__)

_redis_client: Optional[redis.Redis] = None
_last_failure: Optional[float] = None


async def get_redis() -> Optional[redis.Redis]:
    """Get or create Redis connection. Returns None if Redis is disabled or down."""
    global _redis_client, _last_failure
    settings = get_settings()

    if not settings.REDIS_ENABLED:
        return None

    if _redis_client is None:
        if _last_failure is not None and time.monotonic() - _last_failure < settings.REDIS_RETRY_BACKOFF_SECONDS:
            return None

        client = redis.from_url(
            settings.REDIS_URL,
            encoding="utf-8",
            decode_responses=True,
            socket_connect_timeout=5,
            socket_timeout=5,
            retry_on_timeout=True,
        )
        try:
            await client.ping()
        except (redis.RedisError, OSError) as e:
            _last_failure = time.monotonic()
            logger.error(
                "redis_connection_failed",
                url=settings.REDIS_URL,
                error=str(e),
                retry_in_seconds=settings.REDIS_RETRY_BACKOFF_SECONDS,
            )
            await client.aclose()
            return None
        logger.info("redis_connected", url=settings.REDIS_URL)
        _redis_client = client
        _last_failure = None

    return _redis_client


async def close_redis() -> None:
    """Close Redis connection on shutdown."""
    global _redis_client, _last_failure
    if _redis_client:
        await _redis_client.aclose()
        _redis_client = None
    _last_failure = None


async def get_redis_status() -> dict:
    """Redis status for the health endpoint."""
    client = await get_redis()
    if not client:
        return {"status": "disabled" if not get_settings().REDIS_ENABLED else "unavailable"}

    try:
        info = await client.info("server")
        return {"status": "connected", "version": info.get("redis_version")}
    except redis.RedisError as e:
        return {"status": "error", "error": str(e)}
