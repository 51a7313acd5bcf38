"""
Redis error store.

Each client's errors are a capped list at ``{prefix}:errors:{client}``,
newest first, holding one JSON document per record.
"""

import json
from contextlib import contextmanager
from typing import Iterator, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shared.errors import StorageError, StorageUnavailableError
from shared.logging import get_logger
from .models import ErrorRecord


class RedisErrorStore:
    """Error records kept in Redis lists, trimmed to ``max_entries`` per client."""

    backend_id = "redis"

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "api_cache",
        max_entries: int = 10000,
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.max_entries = max_entries
        self.logger = get_logger("api_cache.errorlog.redis")
        self.redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(self.redis_url, decode_responses=False)
        return self.redis

    def _key(self, client: str) -> str:
        return f"{self.key_prefix}:errors:{client}"

    @contextmanager
    def _storage_errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            raise StorageUnavailableError(self.backend_id, str(e), {"operation": operation}) from e
        except RedisError as e:
            raise StorageError(self.backend_id, str(e), {"operation": operation}) from e

    async def add(self, record: ErrorRecord) -> ErrorRecord:
        key = self._key(record.api_client)
        with self._storage_errors("add_error"):
            r = await self._get_redis()
            await r.lpush(key, json.dumps(record.to_dict()))
            await r.ltrim(key, 0, self.max_entries - 1)
        return record

    async def recent(self, client: str, limit: int = 50) -> List[ErrorRecord]:
        with self._storage_errors("recent_errors"):
            r = await self._get_redis()
            raw = await r.lrange(self._key(client), 0, limit - 1)
        return [ErrorRecord.from_dict(json.loads(item)) for item in raw]

    async def count(self, client: str) -> int:
        with self._storage_errors("count_errors"):
            r = await self._get_redis()
            return int(await r.llen(self._key(client)))

    async def clear(self, client: str) -> int:
        key = self._key(client)
        with self._storage_errors("clear_errors"):
            r = await self._get_redis()
            count = int(await r.llen(key))
            await r.delete(key)
        return count

    async def ping(self) -> bool:
        try:
            r = await self._get_redis()
            return bool(await r.ping())
        except RedisError as e:
            self.logger.warning("Redis ping failed", error=str(e))
            return False

    async def close(self) -> None:
        if self.redis is not None:
            await self.redis.aclose()
            self.redis = None
