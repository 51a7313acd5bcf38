"""
Builds the cache manager and its collaborators from process settings.
"""

from typing import Optional, TYPE_CHECKING

import redis.asyncio as redis

from shared.config import ApiCacheSettings, ClientRegistry, load_client_registry
from shared.logging import get_logger
from .caching.cache_manager import CacheManager
from .caching.compression import CompressionCodec
from .caching.postgres_store import PostgresCacheStore
from .caching.redis_store import RedisCacheStore
from .caching.store import CacheStore, InMemoryCacheStore
from .errorlog.logger import ApiErrorLogger
from .errorlog.postgres_store import PostgresErrorStore
from .errorlog.redis_store import RedisErrorStore
from .errorlog.store import ErrorStore, InMemoryErrorStore
from .postgres import PostgresPool
from .ratelimit.limiter import WindowRateLimiter
from .ratelimit.postgres_store import PostgresRateLimitStore
from .ratelimit.redis_store import RedisRateLimitStore
from .ratelimit.store import InMemoryRateLimitStore, RateLimitStore

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

logger = get_logger("api_cache.factory")


def load_registry(settings: ApiCacheSettings) -> ClientRegistry:
    """Client registry from ``settings.clients_file``; empty when none is configured."""
    if not settings.clients_file:
        logger.warning("No clients file configured; registry is empty")
        return ClientRegistry()
    return load_client_registry(settings.clients_file)


class _Connections:
    """Lazily shared Redis client and PostgreSQL pool for one manager."""

    def __init__(self, settings: ApiCacheSettings):
        self.settings = settings
        self._redis: Optional[redis.Redis] = None
        self._pool: Optional[PostgresPool] = None

    @property
    def redis(self) -> redis.Redis:
        if self._redis is None:
            self._redis = redis.from_url(
                self.settings.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
            )
        return self._redis

    @property
    def pool(self) -> PostgresPool:
        if self._pool is None:
            self._pool = PostgresPool(self.settings.postgres_dsn)
        return self._pool


def _build_cache_store(settings: ApiCacheSettings, connections: _Connections) -> CacheStore:
    if settings.cache_backend == "memory":
        return InMemoryCacheStore()
    if settings.cache_backend == "postgres":
        return PostgresCacheStore(connections.pool)
    return RedisCacheStore(settings.redis_url, key_prefix=settings.key_prefix, client=connections.redis)


def _build_rate_limit_store(settings: ApiCacheSettings, connections: _Connections) -> RateLimitStore:
    if settings.rate_limit_backend == "memory":
        return InMemoryRateLimitStore()
    if settings.rate_limit_backend == "postgres":
        return PostgresRateLimitStore(connections.pool, table=f"{settings.key_prefix}_rate_limits")
    return RedisRateLimitStore(settings.redis_url, key_prefix=settings.key_prefix, client=connections.redis)


def _build_error_store(settings: ApiCacheSettings, connections: _Connections) -> ErrorStore:
    # Errors are persisted next to the cached responses
    if settings.cache_backend == "memory":
        return InMemoryErrorStore(max_entries=settings.error_log_max_entries)
    if settings.cache_backend == "postgres":
        return PostgresErrorStore(connections.pool, table=f"{settings.key_prefix}_errors")
    return RedisErrorStore(
        settings.redis_url,
        key_prefix=settings.key_prefix,
        max_entries=settings.error_log_max_entries,
        client=connections.redis,
    )


def build_cache_manager(
    settings: ApiCacheSettings,
    registry: Optional[ClientRegistry] = None,
    *,
    metrics: Optional["MetricsCollector"] = None,
) -> CacheManager:
    """Wire stores, limiter and codec for the configured backends."""
    registry = registry if registry is not None else load_registry(settings)
    connections = _Connections(settings)

    cache_store = _build_cache_store(settings, connections)
    rate_limit_store = _build_rate_limit_store(settings, connections)
    rate_limiter = WindowRateLimiter(rate_limit_store, registry, metrics=metrics)
    error_logger = ApiErrorLogger.from_settings(settings, _build_error_store(settings, connections))

    logger.info(
        "Cache manager configured",
        cache_backend=cache_store.backend_id,
        rate_limit_backend=rate_limit_store.backend_id,
        clients=registry.names()
    )
    return CacheManager(
        registry,
        cache_store,
        rate_limiter,
        CompressionCodec(),
        metrics=metrics,
        error_logger=error_logger,
    )
