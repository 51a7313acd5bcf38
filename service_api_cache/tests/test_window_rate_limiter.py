"""
Unit tests for the fixed-window rate limiter.
"""

import asyncio
import sys

import pytest

from shared.errors import ConfigurationMissingError, ValidationError
from service_api_cache.app.ratelimit.limiter import WindowRateLimiter


class TestWindowRateLimiter:
    """Test cases for WindowRateLimiter."""

    @pytest.mark.asyncio
    async def test_quota_is_exhausted_after_max_requests(self, rate_limiter):
        assert await rate_limiter.allow_request("demo") is True

        for expected in (1, 2, 3):
            assert await rate_limiter.increment_attempts("demo") == expected

        assert await rate_limiter.allow_request("demo") is False
        assert await rate_limiter.get_remaining_attempts("demo") == 0
        assert 0 < await rate_limiter.get_available_in("demo") <= 60

    @pytest.mark.asyncio
    async def test_remaining_goes_negative_when_overdrawn(self, rate_limiter):
        await rate_limiter.increment_attempts("demo", 3)
        await rate_limiter.increment_attempts("demo")

        assert await rate_limiter.get_remaining_attempts("demo") == -1

    @pytest.mark.asyncio
    async def test_fresh_client_has_full_quota(self, rate_limiter):
        assert await rate_limiter.get_remaining_attempts("demo") == 3
        assert await rate_limiter.get_available_in("demo") == 0

    @pytest.mark.asyncio
    async def test_allow_request_does_not_consume_quota(self, rate_limiter):
        for _ in range(5):
            assert await rate_limiter.allow_request("demo") is True
        assert await rate_limiter.get_remaining_attempts("demo") == 3

    @pytest.mark.asyncio
    async def test_window_resets_after_decay(self, rate_limiter, clock):
        await rate_limiter.increment_attempts("demo", 3)
        assert await rate_limiter.allow_request("demo") is False

        clock.advance(59)
        assert await rate_limiter.allow_request("demo") is False
        assert await rate_limiter.get_available_in("demo") == 1

        clock.advance(1)
        assert await rate_limiter.allow_request("demo") is True
        assert await rate_limiter.get_remaining_attempts("demo") == 3
        assert await rate_limiter.increment_attempts("demo") == 1

    @pytest.mark.asyncio
    async def test_available_in_rounds_up(self, rate_limiter, clock):
        await rate_limiter.increment_attempts("demo")
        clock.advance(10.5)
        assert await rate_limiter.get_available_in("demo") == 50

    @pytest.mark.asyncio
    async def test_unlimited_client(self, rate_limiter):
        await rate_limiter.increment_attempts("unlimited", 10_000)

        assert await rate_limiter.allow_request("unlimited") is True
        assert await rate_limiter.get_remaining_attempts("unlimited") == sys.maxsize

    @pytest.mark.asyncio
    async def test_zero_increment_returns_current_count(self, rate_limiter):
        await rate_limiter.increment_attempts("demo", 2)
        assert await rate_limiter.increment_attempts("demo", 0) == 2

    @pytest.mark.asyncio
    @pytest.mark.parametrize("amount", [-1, 1.5, "1", True])
    async def test_invalid_amounts_rejected(self, rate_limiter, amount):
        with pytest.raises(ValidationError):
            await rate_limiter.increment_attempts("demo", amount)

    @pytest.mark.asyncio
    async def test_unknown_client(self, rate_limiter):
        with pytest.raises(ConfigurationMissingError):
            await rate_limiter.allow_request("nobody")
        with pytest.raises(ConfigurationMissingError):
            await rate_limiter.increment_attempts("nobody")

    @pytest.mark.asyncio
    async def test_clients_are_isolated(self, rate_limiter):
        await rate_limiter.increment_attempts("demo", 3)

        assert await rate_limiter.allow_request("demo") is False
        assert await rate_limiter.allow_request("demo-compressed") is True

    @pytest.mark.asyncio
    async def test_clear_resets_window(self, rate_limiter):
        await rate_limiter.increment_attempts("demo", 3)
        await rate_limiter.clear("demo")

        assert await rate_limiter.get_remaining_attempts("demo") == 3
        assert await rate_limiter.allow_request("demo") is True

    @pytest.mark.asyncio
    async def test_concurrent_increments_are_not_lost(self, rate_limiter):
        await asyncio.gather(*[rate_limiter.increment_attempts("demo") for _ in range(50)])
        assert await rate_limiter.get_remaining_attempts("demo") == 3 - 50

    @pytest.mark.asyncio
    async def test_status(self, rate_limiter, clock):
        await rate_limiter.increment_attempts("demo", 2)
        clock.advance(15)

        status = await rate_limiter.status("demo")

        assert status == {
            "client": "demo",
            "unlimited": False,
            "max_requests": 3,
            "decay_seconds": 60,
            "request_count": 2,
            "remaining": 1,
            "available_in": 45,
            "window_start": clock.current - 15,
        }

    @pytest.mark.asyncio
    async def test_status_without_window(self, rate_limiter):
        status = await rate_limiter.status("unlimited")
        assert status["unlimited"] is True
        assert status["max_requests"] is None
        assert status["request_count"] == 0
        assert status["window_start"] is None

    @pytest.mark.asyncio
    async def test_decisions_are_recorded(self, rate_limit_store, registry, clock, metrics):
        limiter = WindowRateLimiter(rate_limit_store, registry, clock=clock, metrics=metrics)

        await limiter.allow_request("demo")
        await limiter.increment_attempts("demo", 3)
        await limiter.allow_request("demo")

        assert metrics.get_metric("api_cache_rate_limit_decisions_total") is not None

        sample = metrics.registry.get_sample_value
        name = "api_cache_rate_limit_decisions_total"
        assert sample(name, {"client": "demo", "decision": "allowed"}) == 1.0
        assert sample(name, {"client": "demo", "decision": "denied"}) == 1.0
