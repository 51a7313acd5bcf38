"""
API cache admin service.
"""

from datetime import datetime
from typing import Any, Dict, List, Optional

from fastapi import Query
from pydantic import BaseModel

from shared.base_service import BaseService
from shared.config import ApiCacheSettings
from shared.metrics import MetricsCollector
from .caching.cache_manager import CacheManager
from .factory import build_cache_manager

API_PREFIX = "/api/v1/clients"


class ClientSummary(BaseModel):
    """Public view of a client configuration; never includes the API key."""
    name: str
    base_url: str
    version: Optional[str] = None
    cache_ttl: Optional[int] = None
    compression_enabled: bool
    max_requests: Optional[int] = None
    decay_seconds: int


class RateLimitStatus(BaseModel):
    client: str
    unlimited: bool
    max_requests: Optional[int] = None
    decay_seconds: int
    request_count: int
    remaining: int
    available_in: int
    window_start: Optional[float] = None


class CacheStats(BaseModel):
    client: str
    namespace: str
    backend: str
    compression_enabled: bool
    cache_ttl: Optional[int] = None
    total: int
    active: int
    expired: int


class ApiErrorEntry(BaseModel):
    api_client: str
    error_type: str
    log_level: str
    error_message: Optional[str] = None
    api_message: Optional[str] = None
    response_preview: Optional[str] = None
    context: Dict[str, Any] = {}
    created_at: Optional[datetime] = None


class ApiCacheService(BaseService):
    """Admin and observability surface for the cache and rate limit layer."""

    def __init__(
        self,
        settings: Optional[ApiCacheSettings] = None,
        *,
        cache_manager: Optional[CacheManager] = None,
        metrics: Optional[MetricsCollector] = None,
    ):
        super().__init__("api-cache", settings, metrics)
        self.cache_manager = cache_manager or build_cache_manager(self.config, metrics=self.metrics)
        self.registry = self.cache_manager.registry

        self._setup_client_routes()

    async def _shutdown(self) -> None:
        await self.cache_manager.close()

    async def _check_dependencies(self) -> Dict[str, str]:
        """Check storage backends."""
        cache_ok = await self.cache_manager.cache_store.ping()
        rate_limit_ok = await self.cache_manager.rate_limiter.store.ping()
        return {
            "cache_store": "ok" if cache_ok else "error",
            "rate_limit_store": "ok" if rate_limit_ok else "error",
        }

    def _setup_client_routes(self):
        """Set up client administration routes."""

        @self.app.get(API_PREFIX, response_model=List[ClientSummary])
        async def list_clients():
            """List configured clients."""
            return [
                ClientSummary(**self.registry.get(name).model_dump(exclude={"api_key"}))
                for name in self.registry.names()
            ]

        @self.app.post(f"{API_PREFIX}/cache/sweep")
        async def sweep_all_clients() -> Dict[str, Any]:
            """Delete expired cache records for every client."""
            deleted = await self.cache_manager.delete_expired()
            return {"deleted": deleted, "total_deleted": sum(deleted.values())}

        @self.app.get(f"{API_PREFIX}/{{client}}/rate-limit", response_model=RateLimitStatus)
        async def get_rate_limit(client: str):
            """Current rate limit window for a client."""
            return RateLimitStatus(**await self.cache_manager.rate_limiter.status(client))

        @self.app.delete(f"{API_PREFIX}/{{client}}/rate-limit")
        async def reset_rate_limit(client: str) -> Dict[str, Any]:
            """Reset a client's rate limit window."""
            await self.cache_manager.clear_rate_limit(client)
            return {"client": client, "cleared": True}

        @self.app.get(f"{API_PREFIX}/{{client}}/cache/stats", response_model=CacheStats)
        async def get_cache_stats(client: str):
            """Record counts for a client's cache namespace."""
            return CacheStats(**await self.cache_manager.cache_stats(client))

        @self.app.post(f"{API_PREFIX}/{{client}}/cache/sweep")
        async def sweep_client(client: str) -> Dict[str, Any]:
            """Delete a client's expired cache records."""
            deleted = await self.cache_manager.delete_expired(client)
            return {"client": client, "deleted": deleted[client]}

        @self.app.delete(f"{API_PREFIX}/{{client}}/cache")
        async def clear_client_cache(client: str) -> Dict[str, Any]:
            """Delete every cache record for a client."""
            deleted = await self.cache_manager.clear_cache(client)
            return {"client": client, "deleted": deleted}

        @self.app.get(f"{API_PREFIX}/{{client}}/errors", response_model=List[ApiErrorEntry])
        async def list_errors(client: str, limit: int = Query(50, ge=1, le=500)):
            """Most recent logged errors for a client, newest first."""
            self.registry.get(client)
            records = await self.cache_manager.error_logger.recent(client, limit)
            return [
                ApiErrorEntry(context=record.context, **record.to_dict())
                for record in records
            ]


def create_app():
    """Create FastAPI application."""
    service = ApiCacheService()
    return service.app


if __name__ == "__main__":
    service = ApiCacheService()
    service.run()
