"""
PostgreSQL error store.
"""

from typing import List

import asyncpg

from shared.config import validate_identifier
from shared.logging import get_logger
from ..postgres import PostgresPool
from .models import ErrorRecord

_COLUMNS = (
    "api_client", "error_type", "log_level", "error_message", "api_message",
    "response_preview", "context_data", "created_at",
)


def _row_to_record(row: asyncpg.Record) -> ErrorRecord:
    return ErrorRecord(**{name: row[name] for name in _COLUMNS})


class PostgresErrorStore:
    """Error records in one PostgreSQL table shared by every client."""

    backend_id = "postgres"

    def __init__(self, pool: PostgresPool, *, table: str = "api_cache_errors"):
        self.pool = pool
        self.table = validate_identifier(table)
        self.logger = get_logger("api_cache.errorlog.postgres")
        self._ready = False

    async def _ensure_table(self, conn: asyncpg.Connection) -> None:
        if self._ready:
            return
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                id BIGSERIAL PRIMARY KEY,
                api_client VARCHAR(255) NOT NULL,
                error_type VARCHAR(255) NOT NULL,
                log_level VARCHAR(20) NOT NULL,
                error_message TEXT,
                api_message TEXT,
                response_preview TEXT,
                context_data TEXT,
                created_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW(),
                updated_at TIMESTAMP WITH TIME ZONE NOT NULL DEFAULT NOW()
            );
        """)
        await conn.execute(f"""
            CREATE INDEX IF NOT EXISTS idx_{self.table}_client_created
            ON {self.table}(api_client, created_at);
        """)
        self._ready = True
        self.logger.info("Error table ready", table=self.table)

    async def add(self, record: ErrorRecord) -> ErrorRecord:
        placeholders = ", ".join(f"${i}" for i in range(1, len(_COLUMNS) + 1))
        async with self.pool.connection("add_error") as conn:
            await self._ensure_table(conn)
            await conn.execute(
                f"INSERT INTO {self.table} ({', '.join(_COLUMNS)}) VALUES ({placeholders})",
                *[getattr(record, name) for name in _COLUMNS]
            )
        return record

    async def recent(self, client: str, limit: int = 50) -> List[ErrorRecord]:
        async with self.pool.connection("recent_errors") as conn:
            await self._ensure_table(conn)
            rows = await conn.fetch(
                f"SELECT {', '.join(_COLUMNS)} FROM {self.table} "
                f"WHERE api_client = $1 ORDER BY created_at DESC, id DESC LIMIT $2",
                client, limit
            )
        return [_row_to_record(row) for row in rows]

    async def count(self, client: str) -> int:
        async with self.pool.connection("count_errors") as conn:
            await self._ensure_table(conn)
            return int(await conn.fetchval(
                f"SELECT count(*) FROM {self.table} WHERE api_client = $1",
                client
            ))

    async def clear(self, client: str) -> int:
        async with self.pool.connection("clear_errors") as conn:
            await self._ensure_table(conn)
            deleted = await conn.fetchval(
                f"WITH deleted AS (DELETE FROM {self.table} WHERE api_client = $1 RETURNING 1) "
                f"SELECT count(*) FROM deleted",
                client
            )
        return int(deleted or 0)

    async def ping(self) -> bool:
        return await self.pool.ping()

    async def close(self) -> None:
        await self.pool.stop()
