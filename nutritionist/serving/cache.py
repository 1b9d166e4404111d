"""
Redis Cache

Optional JSON cache for dashboard aggregates and the prefetched product
catalogue. Keys are namespaced per `CacheManager`; TTLs come from the
`REDIS_*_TTL_SECONDS` settings.

Every operation degrades to a miss when Redis is disabled, not yet
initialised or failing, so a request never fails because of the cache.
"""

import json
from datetime import timedelta
from typing import Any, Awaitable, Callable, Optional, Union

import structlog
from redis.asyncio import ConnectionPool, Redis
from redis.exceptions import RedisError

from nutritionist.config import Settings, get_settings

logger = structlog.get_logger(__name__)

_client: Optional[Redis] = None


async def init_redis(settings: Optional[Settings] = None) -> Optional[Redis]:
    """
    Connect and ping Redis.

    Returns:
        The client, or None when caching is disabled

    Raises:
        RedisError, OSError: If Redis is enabled but unreachable
    """
    global _client

    if _client is not None:
        return _client

    settings = settings or get_settings()
    if not settings.redis.enabled:
        logger.info("Redis disabled, caching off")
        return None

    pool = ConnectionPool.from_url(
        settings.redis.get_url(),
        max_connections=settings.redis.max_connections,
        socket_timeout=settings.redis.socket_timeout,
        decode_responses=True,
    )
    client = Redis(connection_pool=pool)
    try:
        await client.ping()
    except (RedisError, OSError):
        await client.aclose(close_connection_pool=True)
        raise

    _client = client
    logger.info("Redis connected", host=settings.redis.host, db=settings.redis.db)
    return _client


async def close_redis() -> None:
    global _client

    if _client is None:
        return
    await _client.aclose(close_connection_pool=True)
    _client = None
    logger.info("Redis connection closed")


def get_redis() -> Optional[Redis]:
    """Current client, None when caching is off."""
    return _client


async def cache_get(key: str) -> Optional[Any]:
    if _client is None:
        return None

    try:
        raw = await _client.get(key)
    except RedisError as e:
        logger.warning("Cache read failed", key=key, error=str(e))
        return None

    if raw is None:
        return None
    try:
        return json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("Dropping undecodable cache entry", key=key)
        return None


async def cache_set(key: str, value: Any, ttl: Optional[Union[int, timedelta]] = None) -> bool:
    """Store `value` as JSON. Returns False when nothing was written."""
    if _client is None:
        return False

    try:
        payload = json.dumps(value, default=str)
    except (TypeError, ValueError) as e:
        logger.warning("Value not cacheable", key=key, error=str(e))
        return False

    seconds = int(ttl.total_seconds()) if isinstance(ttl, timedelta) else ttl
    try:
        await _client.set(key, payload, ex=seconds or None)
    except RedisError as e:
        logger.warning("Cache write failed", key=key, error=str(e))
        return False
    return True


async def cache_delete_pattern(pattern: str) -> int:
    """Delete keys matching a glob pattern, returning how many went."""
    if _client is None:
        return 0

    try:
        keys = [key async for key in _client.scan_iter(match=pattern)]
        return await _client.delete(*keys) if keys else 0
    except RedisError as e:
        logger.warning("Cache invalidation failed", pattern=pattern, error=str(e))
        return 0


class CacheManager:
    """
    Namespaced view of the cache.

    Example:
        stats_cache = CacheManager("stats", ttl=lambda s: s.redis.stats_ttl_seconds)
        stats = await stats_cache.get_or_set("dashboard:-:-", compute_stats)
    """

    def __init__(self, namespace: str, ttl: Union[int, Callable[[Settings], int]] = 3600):
        self.namespace = namespace
        self._ttl = ttl

    @property
    def ttl(self) -> int:
        return self._ttl(get_settings()) if callable(self._ttl) else self._ttl

    def _key(self, key: str) -> str:
        return f"{self.namespace}:{key}"

    async def get(self, key: str) -> Optional[Any]:
        return await cache_get(self._key(key))

    async def set(self, key: str, value: Any, ttl: Optional[int] = None) -> bool:
        return await cache_set(self._key(key), value, ttl or self.ttl)

    async def invalidate_all(self) -> int:
        return await cache_delete_pattern(self._key("*"))

    async def get_or_set(self, key: str, factory: Callable[[], Awaitable[Any]], ttl: Optional[int] = None) -> Any:
        """Cached value, or the factory's result stored for next time."""
        value = await self.get(key)
        if value is None:
            value = await factory()
            await self.set(key, value, ttl)
        return value


stats_cache = CacheManager("stats", ttl=lambda settings: settings.redis.stats_ttl_seconds)
products_cache = CacheManager("products", ttl=lambda settings: settings.redis.products_ttl_seconds)
