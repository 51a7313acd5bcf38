"""
PostgreSQL rate limit store.
"""

from typing import Optional

import asyncpg

from shared.config import validate_identifier
from shared.logging import get_logger
from ..postgres import PostgresPool
from .window import RateLimitWindow

_EXPIRED = "EXCLUDED.window_start >= {t}.window_start + {t}.decay_seconds"


def _row_to_window(client: str, row: asyncpg.Record) -> RateLimitWindow:
    return RateLimitWindow(
        client=client,
        window_start=float(row["window_start"]),
        request_count=int(row["request_count"]),
        max_requests=row["max_requests"],
        decay_seconds=int(row["decay_seconds"]),
    )


class PostgresRateLimitStore:
    """Window counters in a single PostgreSQL table, one row per client."""

    backend_id = "postgres"

    def __init__(self, pool: PostgresPool, *, table: str = "api_cache_rate_limits"):
        self.pool = pool
        self.table = validate_identifier(table)
        self.logger = get_logger("api_cache.ratelimit.postgres")
        self._ready = False

    async def _ensure_table(self, conn: asyncpg.Connection) -> None:
        if self._ready:
            return
        await conn.execute(f"""
            CREATE TABLE IF NOT EXISTS {self.table} (
                client VARCHAR(255) PRIMARY KEY,
                window_start DOUBLE PRECISION NOT NULL,
                request_count BIGINT NOT NULL DEFAULT 0,
                max_requests INTEGER,
                decay_seconds INTEGER NOT NULL
            );
        """)
        self._ready = True
        self.logger.info("Rate limit table ready", table=self.table)

    async def get_window(self, client: str) -> Optional[RateLimitWindow]:
        async with self.pool.connection("get_window") as conn:
            await self._ensure_table(conn)
            row = await conn.fetchrow(
                f"SELECT window_start, request_count, max_requests, decay_seconds "
                f"FROM {self.table} WHERE client = $1",
                client
            )
        return _row_to_window(client, row) if row else None

    async def increment(
        self,
        client: str,
        amount: int,
        *,
        max_requests: Optional[int],
        decay_seconds: int,
        now: float,
    ) -> RateLimitWindow:
        t = self.table
        expired = _EXPIRED.format(t=t)
        limit = None if max_requests is None or max_requests < 0 else max_requests

        # The conflicting row is locked for the statement, so the
        # expiry check and the increment happen as one step.
        query = f"""
            INSERT INTO {t} (client, window_start, request_count, max_requests, decay_seconds)
            VALUES ($1, $2, $3, $4, $5)
            ON CONFLICT (client) DO UPDATE SET
                window_start = CASE WHEN {expired} THEN EXCLUDED.window_start ELSE {t}.window_start END,
                request_count = CASE WHEN {expired} THEN EXCLUDED.request_count
                                     ELSE {t}.request_count + EXCLUDED.request_count END,
                max_requests = CASE WHEN {expired} THEN EXCLUDED.max_requests ELSE {t}.max_requests END,
                decay_seconds = CASE WHEN {expired} THEN EXCLUDED.decay_seconds ELSE {t}.decay_seconds END
            RETURNING window_start, request_count, max_requests, decay_seconds
        """
        async with self.pool.connection("increment") as conn:
            await self._ensure_table(conn)
            row = await conn.fetchrow(query, client, float(now), amount, limit, decay_seconds)
        return _row_to_window(client, row)

    async def clear(self, client: str) -> None:
        async with self.pool.connection("clear") as conn:
            await self._ensure_table(conn)
            await conn.execute(f"DELETE FROM {self.table} WHERE client = $1", client)

    async def ping(self) -> bool:
        return await self.pool.ping()

    async def close(self) -> None:
        await self.pool.stop()
