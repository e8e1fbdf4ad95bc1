"""Connection helpers for the Redis client and SQLAlchemy engines."""

from __future__ import annotations

from typing import Dict, Optional

import redis
from sqlalchemy import create_engine
from sqlalchemy.engine import Engine
from sqlalchemy.exc import ArgumentError, NoSuchModuleError

from dblock.errors import ConfigError


_DB_ENGINES: Dict[str, Engine] = {}

REDIS_SCHEMES = ("redis", "rediss", "unix")


def is_redis_uri(uri: str) -> bool:
    scheme, sep, _ = uri.partition("://")
    return bool(sep) and scheme.lower() in REDIS_SCHEMES


def create_redis_client(url: str, pool_size: Optional[int] = None) -> redis.Redis:
    pool = redis.ConnectionPool.from_url(url, max_connections=pool_size or 100)
    return redis.Redis(connection_pool=pool)


def db_connection(
    url: Optional[str],
    pool_size: Optional[int] = None,
) -> Optional[Engine]:
    if not url:
        return None

    key = f"{url}|{pool_size or ''}"
    if key in _DB_ENGINES:
        return _DB_ENGINES[key]

    kwargs = {"echo": False}
    if pool_size and not url.startswith("sqlite"):
        kwargs["pool_size"] = pool_size

    try:
        engine = create_engine(url, **kwargs)
    except (ArgumentError, NoSuchModuleError, ImportError) as e:
        # unknown dialect or a DBAPI driver that is not installed
        raise ConfigError(f"Unsupported database uri {url!r}", e)
    _DB_ENGINES[key] = engine
    return engine
