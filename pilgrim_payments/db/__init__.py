"""Database package: the SQL engine and the Redis stats cache."""

from pilgrim_payments.db.base import Base, close_db, get_session_factory, init_db, ping_db
from pilgrim_payments.db.redis import (
    cache_key,
    close_redis,
    get_redis,
    init_redis,
    ping_redis,
    stats_cache_enabled,
)

__all__ = [
    "Base",
    "cache_key",
    "close_db",
    "close_redis",
    "get_redis",
    "get_session_factory",
    "init_db",
    "init_redis",
    "ping_db",
    "ping_redis",
    "stats_cache_enabled",
]
