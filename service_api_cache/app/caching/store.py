"""
Cache store protocol and the in-process backend.
"""

import asyncio
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Protocol

from shared.logging import get_logger
from .models import CacheRecord

Clock = Callable[[], datetime]


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def compute_expires_at(now: datetime, ttl: Optional[int]) -> Optional[datetime]:
    """``now + ttl`` for a positive ttl; no expiry otherwise."""
    if ttl is None or ttl <= 0:
        return None
    return now + timedelta(seconds=ttl)


class CacheStore(Protocol):
    """Namespaced, durable table of cache records keyed by fingerprint.

    Implementations must make :meth:`store` an atomic upsert and must treat
    expired records as absent on :meth:`get` even when they are still
    physically present. :meth:`put` writes an already stamped record as is
    and :meth:`list_records` pages through every physically present record
    in key order; both exist for moving records between namespaces.
    """

    backend_id: str

    async def store(self, namespace: str, record: CacheRecord, ttl: Optional[int] = None) -> CacheRecord: ...

    async def put(self, namespace: str, record: CacheRecord) -> CacheRecord: ...

    async def get(self, namespace: str, key: str) -> Optional[CacheRecord]: ...

    async def list_records(self, namespace: str, offset: int = 0, limit: int = 100) -> List[CacheRecord]: ...

    async def delete_expired(self, namespace: str) -> int: ...

    async def count_total(self, namespace: str) -> int: ...

    async def count_active(self, namespace: str) -> int: ...

    async def count_expired(self, namespace: str) -> int: ...

    async def clear(self, namespace: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryCacheStore:
    """Process-local cache store for development and tests."""

    backend_id = "memory"

    def __init__(self, clock: Optional[Clock] = None):
        self.clock = clock or utc_now
        self.logger = get_logger("api_cache.memory_store")
        self._tables: Dict[str, Dict[str, CacheRecord]] = {}
        self._lock = asyncio.Lock()

    async def store(self, namespace: str, record: CacheRecord, ttl: Optional[int] = None) -> CacheRecord:
        now = self.clock()
        return await self.put(namespace, record.stamped(now, compute_expires_at(now, ttl)))

    async def put(self, namespace: str, record: CacheRecord) -> CacheRecord:
        async with self._lock:
            self._tables.setdefault(namespace, {})[record.key] = record
        return record

    async def get(self, namespace: str, key: str) -> Optional[CacheRecord]:
        async with self._lock:
            record = self._tables.get(namespace, {}).get(key)
        if record is None or record.is_expired(self.clock()):
            return None
        return record

    async def list_records(self, namespace: str, offset: int = 0, limit: int = 100) -> List[CacheRecord]:
        async with self._lock:
            table = self._tables.get(namespace, {})
            return [table[key] for key in sorted(table)[offset:offset + limit]]

    async def delete_expired(self, namespace: str) -> int:
        now = self.clock()
        async with self._lock:
            table = self._tables.get(namespace, {})
            expired = [key for key, record in table.items() if record.is_expired(now)]
            for key in expired:
                del table[key]
        self.logger.debug("Deleted expired records", namespace=namespace, deleted=len(expired))
        return len(expired)

    async def count_total(self, namespace: str) -> int:
        async with self._lock:
            return len(self._tables.get(namespace, {}))

    async def count_active(self, namespace: str) -> int:
        now = self.clock()
        async with self._lock:
            return sum(1 for r in self._tables.get(namespace, {}).values() if not r.is_expired(now))

    async def count_expired(self, namespace: str) -> int:
        now = self.clock()
        async with self._lock:
            return sum(1 for r in self._tables.get(namespace, {}).values() if r.is_expired(now))

    async def clear(self, namespace: str) -> int:
        async with self._lock:
            table = self._tables.pop(namespace, {})
        self.logger.debug("Cleared namespace", namespace=namespace, deleted=len(table))
        return len(table)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """Nothing to release; present for parity with the shared backends."""
