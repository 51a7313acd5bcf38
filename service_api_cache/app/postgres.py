"""
PostgreSQL connection handling shared by the cache and rate limit stores.
"""

import asyncio
from contextlib import asynccontextmanager
from typing import AsyncIterator, Optional

import asyncpg

from shared.errors import StorageError, StorageUnavailableError
from shared.logging import get_logger

BACKEND_ID = "postgres"

_UNAVAILABLE_ERRORS = (
    OSError,
    asyncio.TimeoutError,
    asyncpg.exceptions.PostgresConnectionError,
    asyncpg.exceptions.ConnectionDoesNotExistError,
    asyncpg.exceptions.CannotConnectNowError,
    asyncpg.exceptions.TooManyConnectionsError,
)


class PostgresPool:
    """Lazily created asyncpg pool with storage error translation."""

    def __init__(self, dsn: str, *, min_size: int = 1, max_size: int = 10, command_timeout: float = 30):
        self.dsn = dsn
        self.min_size = min_size
        self.max_size = max_size
        self.command_timeout = command_timeout
        self.logger = get_logger("api_cache.postgres")
        self.pool: Optional[asyncpg.Pool] = None
        self._lock = asyncio.Lock()

    async def start(self) -> asyncpg.Pool:
        """Create the pool on first use."""
        async with self._lock:
            if self.pool is None:
                try:
                    self.pool = await asyncpg.create_pool(
                        self.dsn,
                        min_size=self.min_size,
                        max_size=self.max_size,
                        command_timeout=self.command_timeout
                    )
                except _UNAVAILABLE_ERRORS as e:
                    self.logger.error("Failed to connect to PostgreSQL", error=str(e))
                    raise StorageUnavailableError(BACKEND_ID, str(e), {"operation": "connect"}) from e
                self.logger.info("PostgreSQL pool started")
        return self.pool

    async def stop(self) -> None:
        if self.pool is not None:
            await self.pool.close()
            self.pool = None
            self.logger.info("PostgreSQL pool stopped")

    @asynccontextmanager
    async def connection(self, operation: str) -> AsyncIterator[asyncpg.Connection]:
        """Acquire a connection, translating driver failures into storage errors."""
        pool = await self.start()
        try:
            async with pool.acquire() as conn:
                yield conn
        except _UNAVAILABLE_ERRORS as e:
            self.logger.error("PostgreSQL unavailable", operation=operation, error=str(e))
            raise StorageUnavailableError(BACKEND_ID, str(e), {"operation": operation}) from e
        except (asyncpg.PostgresError, asyncpg.InterfaceError) as e:
            self.logger.error("PostgreSQL operation failed", operation=operation, error=str(e))
            raise StorageError(BACKEND_ID, str(e), {"operation": operation}) from e

    async def ping(self) -> bool:
        try:
            async with self.connection("ping") as conn:
                return await conn.fetchval("SELECT 1") == 1
        except StorageError as e:
            self.logger.warning("PostgreSQL ping failed", error=str(e))
            return False
