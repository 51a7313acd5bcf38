"""
Unit tests for the Redis rate limit store.
"""

from unittest.mock import AsyncMock, patch

import pytest
from redis.exceptions import ResponseError, TimeoutError as RedisTimeoutError

from shared.errors import StorageError, StorageUnavailableError
from service_api_cache.app.ratelimit.redis_store import INCREMENT_SCRIPT, RedisRateLimitStore


class TestRedisRateLimitStore:
    """Test cases for RedisRateLimitStore."""

    @pytest.fixture
    def store(self):
        return RedisRateLimitStore("redis://localhost:6379/0", key_prefix="test")

    @pytest.mark.asyncio
    async def test_increment_runs_script(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.eval.return_value = [b"1700000000.0", b"2", b"3", b"60"]

            window = await store.increment("demo", 1, max_requests=3, decay_seconds=60, now=1_700_000_000.0)

            mock_redis.eval.assert_called_once_with(
                INCREMENT_SCRIPT,
                1,
                "test:ratelimit:demo",
                "1700000000.0",
                "3",
                "60",
                "1",
                "60000",
            )
            assert window.client == "demo"
            assert window.window_start == 1_700_000_000.0
            assert window.request_count == 2
            assert window.max_requests == 3
            assert window.expires_at == 1_700_000_060.0

    @pytest.mark.asyncio
    async def test_unlimited_is_stored_as_sentinel(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.eval.return_value = [b"1700000000.0", b"5", b"-1", b"60"]

            window = await store.increment("demo", 5, max_requests=None, decay_seconds=60, now=1_700_000_000.0)

            assert mock_redis.eval.call_args.args[4] == "-1"
            assert window.max_requests is None
            assert window.is_unlimited

    @pytest.mark.asyncio
    async def test_get_window_parses_hash(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.hgetall.return_value = {
                b"window_start": b"1700000000.5",
                b"request_count": b"7",
                b"max_requests": b"10",
                b"decay_seconds": b"30",
            }

            window = await store.get_window("demo")

            mock_redis.hgetall.assert_called_once_with("test:ratelimit:demo")
            assert window.window_start == 1_700_000_000.5
            assert window.request_count == 7
            assert window.max_requests == 10
            assert window.decay_seconds == 30

    @pytest.mark.asyncio
    async def test_get_window_missing(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.hgetall.return_value = {}

            assert await store.get_window("demo") is None

    @pytest.mark.asyncio
    async def test_clear_deletes_key(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis

            await store.clear("demo")

            mock_redis.delete.assert_called_once_with("test:ratelimit:demo")

    @pytest.mark.asyncio
    async def test_timeout_is_unavailable(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.eval.side_effect = RedisTimeoutError("Timeout reading from socket")

            with pytest.raises(StorageUnavailableError):
                await store.increment("demo", 1, max_requests=3, decay_seconds=60, now=0.0)

    @pytest.mark.asyncio
    async def test_script_error_is_storage_error(self, store):
        with patch.object(store, '_get_redis', new_callable=AsyncMock) as mock_get_redis:
            mock_redis = AsyncMock()
            mock_get_redis.return_value = mock_redis
            mock_redis.eval.side_effect = ResponseError("ERR Error running script")

            with pytest.raises(StorageError) as exc_info:
                await store.increment("demo", 1, max_requests=3, decay_seconds=60, now=0.0)
            assert exc_info.value.details["operation"] == "increment"
