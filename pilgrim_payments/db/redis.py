"""Redis client for the admin payment-stats cache.

The payment path never reads or writes Redis; only maintenance does. Unless
``REDIS_REQUIRED`` is set, an unreachable Redis at startup leaves the cache
disabled instead of failing the boot, and admin stats are computed on demand.
"""

import redis.asyncio as redis
import structlog
from redis.exceptions import RedisError

from pilgrim_payments.core.config import get_settings

logger = structlog.get_logger(__name__)

_redis: redis.Redis | None = None


def cache_key(*parts: str) -> str:
    """Namespace a cache key, e.g. ``cache_key("admin", "payment_stats")``."""
    return ":".join((get_settings().redis_key_prefix, *parts))


async def init_redis(url: str | None = None, required: bool | None = None) -> bool:
    """Connect the stats cache. Returns False when it is left disabled."""
    global _redis

    if _redis is not None:
        return True

    settings = get_settings()
    if required is None:
        required = settings.redis_required

    client = redis.from_url(url or settings.redis_url, encoding="utf-8", decode_responses=True)
    try:
        await client.ping()
    except (RedisError, OSError) as exc:
        await client.aclose()
        if required:
            raise
        logger.warning("stats_cache_disabled", error=str(exc), error_type=type(exc).__name__)
        return False

    _redis = client
    return True


async def close_redis() -> None:
    global _redis

    if _redis is not None:
        await _redis.aclose()
        _redis = None


def stats_cache_enabled() -> bool:
    return _redis is not None


def get_redis() -> redis.Redis:
    """Return the stats-cache client.

    Raises RuntimeError if the cache is disabled or init_redis() was never called.
    """
    if _redis is None:
        raise RuntimeError("Stats cache unavailable: Redis is not connected")
    return _redis


async def ping_redis() -> bool:
    if _redis is None:
        return False
    try:
        return bool(await _redis.ping())
    except (RedisError, OSError) as exc:
        logger.error("redis_ping_failed", error=str(exc))
        return False
