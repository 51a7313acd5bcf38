"""
Redis rate limit store.

Each client's window is a hash at ``{prefix}:ratelimit:{client}``. Opening
a window and incrementing it happen in one Lua script, so concurrent
callers across processes never lose an increment or reset a live window.
"""

import math
from typing import Dict, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shared.errors import StorageError, StorageUnavailableError
from shared.logging import get_logger
from .window import RateLimitWindow

INCREMENT_SCRIPT = """
local now = tonumber(ARGV[1])
local start = redis.call('HGET', KEYS[1], 'window_start')
local decay = redis.call('HGET', KEYS[1], 'decay_seconds')
if (not start) or now >= tonumber(start) + tonumber(decay or ARGV[3]) then
    redis.call('DEL', KEYS[1])
    redis.call('HSET', KEYS[1],
        'window_start', ARGV[1],
        'request_count', 0,
        'max_requests', ARGV[2],
        'decay_seconds', ARGV[3])
    redis.call('PEXPIRE', KEYS[1], ARGV[5])
end
local count = redis.call('HINCRBY', KEYS[1], 'request_count', ARGV[4])
local row = redis.call('HMGET', KEYS[1], 'window_start', 'max_requests', 'decay_seconds')
return {row[1], tostring(count), row[2], row[3]}
"""

UNLIMITED = -1


def _text(value) -> str:
    return value.decode() if isinstance(value, bytes) else str(value)


def _window(client: str, start, count, max_requests, decay) -> RateLimitWindow:
    limit = int(_text(max_requests))
    return RateLimitWindow(
        client=client,
        window_start=float(_text(start)),
        request_count=int(_text(count)),
        max_requests=None if limit < 0 else limit,
        decay_seconds=int(_text(decay)),
    )


class RedisRateLimitStore:
    """Window counters shared through Redis."""

    backend_id = "redis"

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "api_cache",
        client: Optional[redis.Redis] = None,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.logger = get_logger("api_cache.ratelimit.redis")
        self.redis: Optional[redis.Redis] = client

    async def _get_redis(self) -> redis.Redis:
        """Get Redis connection."""
        if self.redis is None:
            self.redis = redis.from_url(
                self.redis_url,
                decode_responses=False,
                socket_connect_timeout=5,
                socket_timeout=5,
                health_check_interval=30,
            )
        return self.redis

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

    def _key(self, client: str) -> str:
        return f"{self.key_prefix}:ratelimit:{client}"

    def _translate(self, operation: str, client: str, error: RedisError) -> StorageError:
        if isinstance(error, (RedisConnectionError, RedisTimeoutError)):
            self.logger.error("Redis unavailable", operation=operation, client=client, error=str(error))
            return StorageUnavailableError(self.backend_id, str(error), {"operation": operation})
        self.logger.error("Redis operation failed", operation=operation, client=client, error=str(error))
        return StorageError(self.backend_id, str(error), {"operation": operation})

    async def get_window(self, client: str) -> Optional[RateLimitWindow]:
        try:
            r = await self._get_redis()
            raw: Dict[bytes, bytes] = await r.hgetall(self._key(client))
        except RedisError as e:
            raise self._translate("get_window", client, e) from e

        if not raw:
            return None
        data = {_text(k): v for k, v in raw.items()}
        return _window(
            client,
            data["window_start"],
            data["request_count"],
            data.get("max_requests", UNLIMITED),
            data["decay_seconds"],
        )

    async def increment(
        self,
        client: str,
        amount: int,
        *,
        max_requests: Optional[int],
        decay_seconds: int,
        now: float,
    ) -> RateLimitWindow:
        limit = UNLIMITED if max_requests is None or max_requests < 0 else max_requests
        try:
            r = await self._get_redis()
            start, count, stored_max, decay = await r.eval(
                INCREMENT_SCRIPT,
                1,
                self._key(client),
                repr(float(now)),
                str(limit),
                str(decay_seconds),
                str(amount),
                str(math.ceil(decay_seconds * 1000)),
            )
        except RedisError as e:
            raise self._translate("increment", client, e) from e

        return _window(client, start, count, stored_max, decay)

    async def clear(self, client: str) -> None:
        try:
            r = await self._get_redis()
            await r.delete(self._key(client))
        except RedisError as e:
            raise self._translate("clear", client, e) from e
