"""Redis cache client.

Caching is strictly best-effort: when Redis is missing or unreachable every
read is a miss (``None``) and every write is a no-op (``False``). Callers never
need to special-case cache availability.
"""

from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Optional

from redis.asyncio import ConnectionPool, Redis
from redis.asyncio.connection import Connection, SSLConnection
from redis.exceptions import RedisError

from obe_backend.core.redis_factory import parse_redis_target

logger = logging.getLogger(__name__)

# Failures that mean "cache unavailable" rather than a programming error.
_UNAVAILABLE = (RedisError, OSError, asyncio.TimeoutError)


class CacheConfig:
    """Redis cache configuration."""

    def __init__(
        self,
        host: str = "localhost",
        port: int = 6379,
        db: int = 0,
        password: Optional[str] = None,
        max_connections: int = 50,
        socket_timeout: float = 2.0,
        socket_connect_timeout: float = 2.0,
        ssl: bool = False,
    ):
        self.host = host
        self.port = port
        self.db = db
        self.password = password
        self.max_connections = max_connections
        self.socket_timeout = socket_timeout
        self.socket_connect_timeout = socket_connect_timeout
        self.ssl = ssl

    @classmethod
    def from_url(cls, redis_url: str) -> CacheConfig:
        target = parse_redis_target(redis_url, component="cache")
        return cls(
            host=target.host,
            port=target.port,
            db=target.db,
            password=target.password,
            ssl=target.ssl,
        )


class CacheClient:
    """Async Redis client storing JSON values with optional TTL."""

    def __init__(self, config: Optional[CacheConfig] = None, *, client: Optional[Redis] = None):
        self.config = config or CacheConfig()
        self._pool: Optional[ConnectionPool] = None
        self._client: Optional[Redis] = client

    @property
    def connected(self) -> bool:
        return self._client is not None

    async def connect(self) -> None:
        """Create the connection pool (no round trip; see :meth:`ping`)."""
        if self._client is not None:
            return

        self._pool = ConnectionPool(
            host=self.config.host,
            port=self.config.port,
            db=self.config.db,
            password=self.config.password,
            max_connections=self.config.max_connections,
            socket_timeout=self.config.socket_timeout,
            socket_connect_timeout=self.config.socket_connect_timeout,
            decode_responses=True,
            connection_class=SSLConnection if self.config.ssl else Connection,
        )
        self._client = Redis(connection_pool=self._pool)
        logger.info("Redis cache connected")

    async def disconnect(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None

        if self._pool is not None:
            await self._pool.disconnect()
            self._pool = None

        logger.info("Redis cache disconnected")

    async def ping(self) -> bool:
        if self._client is None:
            return False
        try:
            return bool(await self._client.ping())
        except _UNAVAILABLE as exc:
            logger.warning("Cache ping failed: %s", exc)
            return False

    async def get(self, key: str) -> Any:
        """Return the decoded value, or ``None`` on miss or any cache failure."""
        if self._client is None:
            return None
        try:
            value = await self._client.get(key)
        except _UNAVAILABLE as exc:
            logger.warning("Cache get failed for key %s (skipping cache): %s", key, exc)
            return None
        if value is None:
            return None
        try:
            return json.loads(value)
        except (TypeError, ValueError) as exc:
            logger.warning("Cache value for key %s is not valid JSON: %s", key, exc)
            return None

    async def set(self, key: str, value: Any, ttl_seconds: Optional[int] = None) -> bool:
        """Store ``value`` as JSON; ``False`` when the cache is unavailable."""
        if self._client is None:
            return False
        try:
            serialized = json.dumps(value, default=str)
        except (TypeError, ValueError) as exc:
            logger.warning("Cache value for key %s is not serializable: %s", key, exc)
            return False
        try:
            if ttl_seconds and ttl_seconds > 0:
                await self._client.setex(key, int(ttl_seconds), serialized)
            else:
                await self._client.set(key, serialized)
        except _UNAVAILABLE as exc:
            logger.warning("Cache set failed for key %s (skipping cache): %s", key, exc)
            return False
        return True

    async def delete(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            return await self._client.delete(key) > 0
        except _UNAVAILABLE as exc:
            logger.warning("Cache delete failed for key %s: %s", key, exc)
            return False

    async def delete_pattern(self, pattern: str) -> int:
        """Delete every key matching a Redis glob pattern; returns the count."""
        if self._client is None:
            return 0
        try:
            keys = [key async for key in self._client.scan_iter(match=pattern)]
            if not keys:
                return 0
            deleted = await self._client.delete(*keys)
        except _UNAVAILABLE as exc:
            logger.warning("Cache delete_pattern failed for pattern %s: %s", pattern, exc)
            return 0
        logger.info("Deleted %d cache keys matching pattern: %s", deleted, pattern)
        return deleted

    async def exists(self, key: str) -> bool:
        if self._client is None:
            return False
        try:
            return await self._client.exists(key) > 0
        except _UNAVAILABLE as exc:
            logger.warning("Cache exists check failed for key %s: %s", key, exc)
            return False

    async def ttl(self, key: str) -> int:
        """Remaining TTL in seconds; -2 missing key, -1 no expiry or unavailable."""
        if self._client is None:
            return -1
        try:
            return int(await self._client.ttl(key))
        except _UNAVAILABLE as exc:
            logger.warning("Cache ttl failed for key %s: %s", key, exc)
            return -1


_cache: Optional[CacheClient] = None


def get_cache() -> CacheClient:
    """Get the process cache client; raises when caching is not configured."""
    if _cache is None:
        raise RuntimeError("Cache not initialized. Call init_cache() first.")
    return _cache


def init_cache(config: Optional[CacheConfig] = None, *, client: Optional[Redis] = None) -> CacheClient:
    global _cache
    if _cache is None:
        _cache = CacheClient(config, client=client)
    return _cache


def reset_cache() -> None:
    global _cache
    _cache = None


__all__ = [
    "CacheClient",
    "CacheConfig",
    "get_cache",
    "init_cache",
    "reset_cache",
]
