"""
Shared fixtures for API cache service tests.
"""

from datetime import datetime, timezone

import pytest
from prometheus_client import CollectorRegistry

from shared.config import ClientConfig, ClientRegistry
from shared.metrics import MetricsCollector
from service_api_cache.app.caching.cache_manager import CacheManager
from service_api_cache.app.caching.models import ApiResponse
from service_api_cache.app.caching.store import InMemoryCacheStore
from service_api_cache.app.ratelimit.limiter import WindowRateLimiter
from service_api_cache.app.ratelimit.store import InMemoryRateLimitStore


class FakeClock:
    """Manually advanced clock usable as an epoch or datetime source."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.current = start

    def __call__(self) -> float:
        return self.current

    def utc(self) -> datetime:
        return datetime.fromtimestamp(self.current, tz=timezone.utc)

    def advance(self, seconds: float) -> None:
        self.current += seconds


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def demo_config():
    return ClientConfig(
        name="demo",
        api_key="demo-api-key",
        base_url="http://demo.test/v1/",
        version="v1",
        max_requests=3,
        decay_seconds=60,
        default_endpoint="predictions",
    )


@pytest.fixture
def compressed_config():
    return ClientConfig(
        name="demo-compressed",
        base_url="http://demo.test/v1",
        version="v1",
        compression_enabled=True,
        cache_ttl=300,
        max_requests=10,
        decay_seconds=60,
    )


@pytest.fixture
def unlimited_config():
    return ClientConfig(
        name="unlimited",
        base_url="http://unlimited.test",
        max_requests=None,
        decay_seconds=60,
    )


@pytest.fixture
def registry(demo_config, compressed_config, unlimited_config):
    return ClientRegistry([demo_config, compressed_config, unlimited_config])


@pytest.fixture
def cache_store(clock):
    return InMemoryCacheStore(clock=clock.utc)


@pytest.fixture
def rate_limit_store():
    return InMemoryRateLimitStore()


@pytest.fixture
def rate_limiter(rate_limit_store, registry, clock):
    return WindowRateLimiter(rate_limit_store, registry, clock=clock)


@pytest.fixture
def metrics():
    return MetricsCollector("api-cache-test", registry=CollectorRegistry())


@pytest.fixture
def cache_manager(registry, cache_store, rate_limiter, clock):
    return CacheManager(registry, cache_store, rate_limiter, clock=clock.utc)


@pytest.fixture
def api_response():
    """A successful upstream response as BaseApiClient would build it."""
    return ApiResponse(
        endpoint="predictions",
        status_code=200,
        body=b'{"predictions": [{"id": 1, "score": 0.93}]}',
        headers={"content-type": "application/json"},
        version="v1",
        base_url="http://demo.test/v1",
        full_url="http://demo.test/v1/predictions?max_results=10&query=weather",
        method="GET",
        request_headers={"accept": "application/json"},
        request_body=None,
        response_time=0.123,
    )
