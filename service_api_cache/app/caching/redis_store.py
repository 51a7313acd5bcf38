"""
Redis cache store.

Each record is a hash at ``{prefix}:{namespace}:response:{key}``; a sorted
set at ``{prefix}:{namespace}:index`` tracks every key of the namespace
scored by its expiry timestamp (``+inf`` for records that never expire).
Writes that touch both structures run as Lua scripts so readers never see a
half-written record.
"""

from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Dict, Iterator, List, Optional

import redis.asyncio as redis
from redis.exceptions import ConnectionError as RedisConnectionError
from redis.exceptions import RedisError, TimeoutError as RedisTimeoutError

from shared.errors import StorageError, StorageUnavailableError
from shared.logging import get_logger
from .models import CacheRecord
from .store import Clock, compute_expires_at, utc_now

UPSERT_SCRIPT = """
redis.call('DEL', KEYS[1])
redis.call('HSET', KEYS[1], unpack(ARGV, 3))
redis.call('ZADD', KEYS[2], ARGV[1], ARGV[2])
return 1
"""

SWEEP_SCRIPT = """
local members = redis.call('ZRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
for _, member in ipairs(members) do
    redis.call('DEL', ARGV[2] .. member)
end
redis.call('ZREMRANGEBYSCORE', KEYS[1], '-inf', ARGV[1])
return #members
"""

CLEAR_SCRIPT = """
local members = redis.call('ZRANGE', KEYS[1], 0, -1)
for _, member in ipairs(members) do
    redis.call('DEL', ARGV[1] .. member)
end
redis.call('DEL', KEYS[1])
return #members
"""

_TEXT_FIELDS = (
    "key", "client", "endpoint", "base_url", "full_url", "method", "version",
    "attributes", "request_params_summary",
)
_BYTES_FIELDS = ("request_headers", "request_body", "response_headers", "response_body")
_TIME_FIELDS = ("expires_at", "created_at", "updated_at")


def _encode_record(record: CacheRecord) -> List[bytes]:
    """Flatten a record into HSET field/value pairs, omitting None fields."""
    pairs: List[bytes] = []

    def add(name: str, value: bytes) -> None:
        pairs.append(name.encode())
        pairs.append(value)

    for name in _TEXT_FIELDS:
        value = getattr(record, name)
        if value is not None:
            add(name, value.encode("utf-8"))
    for name in _BYTES_FIELDS:
        value = getattr(record, name)
        if value is not None:
            add(name, value)
    add("status_code", str(record.status_code).encode())
    add("response_size", str(record.response_size).encode())
    if record.credits is not None:
        add("credits", str(record.credits).encode())
    if record.cost is not None:
        add("cost", repr(record.cost).encode())
    if record.response_time is not None:
        add("response_time", repr(record.response_time).encode())
    for name in _TIME_FIELDS:
        value = getattr(record, name)
        if value is not None:
            add(name, repr(value.timestamp()).encode())
    return pairs


def _decode_record(raw: Dict[bytes, bytes]) -> CacheRecord:
    data = {k.decode() if isinstance(k, bytes) else k: v for k, v in raw.items()}
    values = {}
    for name in _TEXT_FIELDS:
        if name in data:
            values[name] = data[name].decode("utf-8")
    for name in _BYTES_FIELDS:
        if name in data:
            values[name] = bytes(data[name])
    values["status_code"] = int(data["status_code"])
    values["response_size"] = int(data.get("response_size", b"0"))
    if "credits" in data:
        values["credits"] = int(data["credits"])
    if "cost" in data:
        values["cost"] = float(data["cost"])
    if "response_time" in data:
        values["response_time"] = float(data["response_time"])
    for name in _TIME_FIELDS:
        if name in data:
            values[name] = datetime.fromtimestamp(float(data[name]), tz=timezone.utc)
    values.setdefault("response_body", b"")
    return CacheRecord(**values)


def _score(moment: Optional[datetime]) -> str:
    return "+inf" if moment is None else repr(moment.timestamp())


class RedisCacheStore:
    """Cache store backed by Redis hashes and a per-namespace expiry index."""

    backend_id = "redis"

    def __init__(
        self,
        redis_url: str,
        *,
        key_prefix: str = "api_cache",
        client: Optional[redis.Redis] = None,
        clock: Optional[Clock] = None,
    ):
        self.redis_url = redis_url
        self.key_prefix = key_prefix
        self.clock = clock or utc_now
        self.logger = get_logger("api_cache.redis_store")
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

    def _record_prefix(self, namespace: str) -> str:
        return f"{self.key_prefix}:{namespace}:response:"

    def _record_key(self, namespace: str, key: str) -> str:
        return f"{self._record_prefix(namespace)}{key}"

    def _index_key(self, namespace: str) -> str:
        return f"{self.key_prefix}:{namespace}:index"

    @contextmanager
    def _storage_errors(self, operation: str, namespace: str) -> Iterator[None]:
        try:
            yield
        except (RedisConnectionError, RedisTimeoutError) as e:
            self.logger.error("Redis unavailable", operation=operation, namespace=namespace, error=str(e))
            raise StorageUnavailableError(self.backend_id, str(e), {"operation": operation}) from e
        except RedisError as e:
            self.logger.error("Redis operation failed", operation=operation, namespace=namespace, error=str(e))
            raise StorageError(self.backend_id, str(e), {"operation": operation}) from e

    async def store(self, namespace: str, record: CacheRecord, ttl: Optional[int] = None) -> CacheRecord:
        now = self.clock()
        return await self.put(namespace, record.stamped(now, compute_expires_at(now, ttl)))

    async def put(self, namespace: str, record: CacheRecord) -> CacheRecord:
        with self._storage_errors("store", namespace):
            r = await self._get_redis()
            await r.eval(
                UPSERT_SCRIPT,
                2,
                self._record_key(namespace, record.key),
                self._index_key(namespace),
                _score(record.expires_at),
                record.key,
                *_encode_record(record),
            )
        return record

    async def get(self, namespace: str, key: str) -> Optional[CacheRecord]:
        with self._storage_errors("get", namespace):
            r = await self._get_redis()
            raw = await r.hgetall(self._record_key(namespace, key))

        if not raw:
            return None
        record = _decode_record(raw)
        if record.is_expired(self.clock()):
            return None
        return record

    async def list_records(self, namespace: str, offset: int = 0, limit: int = 100) -> List[CacheRecord]:
        records: List[CacheRecord] = []
        with self._storage_errors("list_records", namespace):
            r = await self._get_redis()
            members = sorted(await r.zrange(self._index_key(namespace), 0, -1))
            for member in members[offset:offset + limit]:
                key = member.decode() if isinstance(member, bytes) else member
                raw = await r.hgetall(self._record_key(namespace, key))
                # Swept between the index read and the fetch
                if raw:
                    records.append(_decode_record(raw))
        return records

    async def delete_expired(self, namespace: str) -> int:
        now = self.clock()
        with self._storage_errors("delete_expired", namespace):
            r = await self._get_redis()
            deleted = await r.eval(
                SWEEP_SCRIPT,
                1,
                self._index_key(namespace),
                repr(now.timestamp()),
                self._record_prefix(namespace),
            )
        return int(deleted)

    async def count_total(self, namespace: str) -> int:
        with self._storage_errors("count_total", namespace):
            r = await self._get_redis()
            return int(await r.zcard(self._index_key(namespace)))

    async def count_active(self, namespace: str) -> int:
        now = self.clock()
        with self._storage_errors("count_active", namespace):
            r = await self._get_redis()
            return int(await r.zcount(self._index_key(namespace), f"({now.timestamp()!r}", "+inf"))

    async def count_expired(self, namespace: str) -> int:
        now = self.clock()
        with self._storage_errors("count_expired", namespace):
            r = await self._get_redis()
            return int(await r.zcount(self._index_key(namespace), "-inf", repr(now.timestamp())))

    async def clear(self, namespace: str) -> int:
        with self._storage_errors("clear", namespace):
            r = await self._get_redis()
            deleted = await r.eval(
                CLEAR_SCRIPT,
                1,
                self._index_key(namespace),
                self._record_prefix(namespace),
            )
        return int(deleted)
