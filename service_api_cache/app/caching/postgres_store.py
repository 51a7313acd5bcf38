"""
PostgreSQL cache store: one table per namespace.
"""

import hashlib
from typing import List, Optional, Set

import asyncpg

from shared.config import validate_identifier
from shared.logging import get_logger
from ..postgres import PostgresPool
from .models import CacheRecord
from .store import Clock, compute_expires_at, utc_now

_COLUMNS = (
    "key", "client", "version", "endpoint", "base_url", "full_url", "method",
    "attributes", "credits", "cost", "request_params_summary",
    "request_headers", "request_body", "response_headers", "response_body",
    "status_code", "response_size", "response_time", "expires_at",
    "created_at", "updated_at",
)


def _index_name(namespace: str) -> str:
    # Namespaces may already use the full identifier length
    digest = hashlib.sha1(namespace.encode()).hexdigest()[:16]
    return f"idx_{digest}_expires_at"


def _row_to_record(row: asyncpg.Record) -> CacheRecord:
    values = {name: row[name] for name in _COLUMNS}
    for name in ("request_headers", "request_body", "response_headers", "response_body"):
        if values[name] is not None:
            values[name] = bytes(values[name])
    return CacheRecord(**values)


class PostgresCacheStore:
    """Cache store backed by PostgreSQL tables created on first use."""

    backend_id = "postgres"

    def __init__(self, pool: PostgresPool, *, clock: Optional[Clock] = None):
        self.pool = pool
        self.clock = clock or utc_now
        self.logger = get_logger("api_cache.postgres_store")
        self._ready: Set[str] = set()

    def _table(self, namespace: str) -> str:
        validate_identifier(namespace)
        return f'"{namespace}"'

    async def _ensure_table(self, conn: asyncpg.Connection, namespace: str) -> str:
        table = self._table(namespace)
        if namespace in self._ready:
            return table

        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {table} (
                id BIGSERIAL PRIMARY KEY,
                key VARCHAR(255) NOT NULL UNIQUE,
                client VARCHAR(255) NOT NULL,
                version VARCHAR(64),
                endpoint TEXT NOT NULL,
                base_url TEXT,
                full_url TEXT,
                method VARCHAR(10) NOT NULL,
                attributes TEXT,
                credits INTEGER,
                cost DOUBLE PRECISION,
                request_params_summary TEXT,
                request_headers BYTEA,
                request_body BYTEA,
                response_headers BYTEA,
                response_body BYTEA NOT NULL,
                status_code INTEGER NOT NULL,
                response_size INTEGER NOT NULL DEFAULT 0,
                response_time DOUBLE PRECISION,
                expires_at TIMESTAMP WITH TIME ZONE,
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute(f"""
            CREATE INDEX IF NOT EXISTS "{_index_name(namespace)}" ON {table}(expires_at);
        """)

        self._ready.add(namespace)
        self.logger.info("Cache table ready", namespace=namespace)
        return table

    async def store(self, namespace: str, record: CacheRecord, ttl: Optional[int] = None) -> CacheRecord:
        now = self.clock()
        return await self.put(namespace, record.stamped(now, compute_expires_at(now, ttl)))

    async def put(self, namespace: str, record: CacheRecord) -> CacheRecord:
        columns = ", ".join(_COLUMNS)
        placeholders = ", ".join(f"${i}" for i in range(1, len(_COLUMNS) + 1))
        updates = ", ".join(f"{name} = EXCLUDED.{name}" for name in _COLUMNS if name != "key")

        async with self.pool.connection("store") as conn:
            table = await self._ensure_table(conn, namespace)
            await conn.execute(
                f"INSERT INTO {table} ({columns}) VALUES ({placeholders}) "
                f"ON CONFLICT (key) DO UPDATE SET {updates}",
                *[getattr(record, name) for name in _COLUMNS]
            )
        return record

    async def get(self, namespace: str, key: str) -> Optional[CacheRecord]:
        async with self.pool.connection("get") as conn:
            table = await self._ensure_table(conn, namespace)
            row = await conn.fetchrow(
                f"SELECT {', '.join(_COLUMNS)} FROM {table} "
                f"WHERE key = $1 AND (expires_at IS NULL OR expires_at > $2)",
                key, self.clock()
            )
        return _row_to_record(row) if row else None

    async def list_records(self, namespace: str, offset: int = 0, limit: int = 100) -> List[CacheRecord]:
        async with self.pool.connection("list_records") as conn:
            table = await self._ensure_table(conn, namespace)
            rows = await conn.fetch(
                f"SELECT {', '.join(_COLUMNS)} FROM {table} ORDER BY key OFFSET $1 LIMIT $2",
                offset, limit
            )
        return [_row_to_record(row) for row in rows]

    async def delete_expired(self, namespace: str) -> int:
        async with self.pool.connection("delete_expired") as conn:
            table = await self._ensure_table(conn, namespace)
            deleted = await conn.fetchval(
                f"WITH deleted AS (DELETE FROM {table} WHERE expires_at IS NOT NULL AND expires_at <= $1 "
                f"RETURNING 1) SELECT count(*) FROM deleted",
                self.clock()
            )
        return int(deleted or 0)

    async def count_total(self, namespace: str) -> int:
        async with self.pool.connection("count_total") as conn:
            table = await self._ensure_table(conn, namespace)
            return int(await conn.fetchval(f"SELECT count(*) FROM {table}"))

    async def count_active(self, namespace: str) -> int:
        async with self.pool.connection("count_active") as conn:
            table = await self._ensure_table(conn, namespace)
            return int(await conn.fetchval(
                f"SELECT count(*) FROM {table} WHERE expires_at IS NULL OR expires_at > $1",
                self.clock()
            ))

    async def count_expired(self, namespace: str) -> int:
        async with self.pool.connection("count_expired") as conn:
            table = await self._ensure_table(conn, namespace)
            return int(await conn.fetchval(
                f"SELECT count(*) FROM {table} WHERE expires_at IS NOT NULL AND expires_at <= $1",
                self.clock()
            ))

    async def clear(self, namespace: str) -> int:
        async with self.pool.connection("clear") as conn:
            table = await self._ensure_table(conn, namespace)
            deleted = await conn.fetchval(
                f"WITH deleted AS (DELETE FROM {table} RETURNING 1) SELECT count(*) FROM deleted"
            )
        return int(deleted or 0)

    async def ping(self) -> bool:
        return await self.pool.ping()

    async def close(self) -> None:
        await self.pool.stop()
