"""
Cache manager composing key derivation, compression, storage and rate limiting.
"""

import json
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, TYPE_CHECKING

from shared.config import ClientConfig, ClientRegistry
from shared.errors import DataCorruptionError, ValidationError
from shared.logging import get_logger
from ..errorlog.logger import ApiErrorLogger
from ..ratelimit.limiter import WindowRateLimiter
from . import keys
from .compression import CompressionCodec
from .converter import ConversionStats, NamespaceConverter, ValidationStats
from .models import ApiResponse, CacheRecord
from .store import CacheStore, Clock, utc_now

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class CacheManager:
    """Entry point used by API clients for caching and rate limiting.

    Every storage operation resolves the client through the registry first,
    so an unknown client fails with ConfigurationMissingError before any
    storage is touched. Key derivation stays a pure function.
    """

    def __init__(
        self,
        registry: ClientRegistry,
        cache_store: CacheStore,
        rate_limiter: WindowRateLimiter,
        codec: Optional[CompressionCodec] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        clock: Optional[Clock] = None,
        error_logger: Optional[ApiErrorLogger] = None,
    ):
        self.registry = registry
        self.cache_store = cache_store
        self.rate_limiter = rate_limiter
        self.codec = codec or CompressionCodec()
        self.metrics = metrics
        self.clock = clock or utc_now
        self.error_logger = error_logger or ApiErrorLogger()
        self.logger = get_logger("api_cache.cache_manager")
        self._check_namespaces()

    # Key derivation

    def generate_cache_key(
        self,
        client: str,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        version: Optional[str] = None,
    ) -> str:
        key = keys.generate_cache_key(client, endpoint, params, method, version)
        self.logger.debug(
            "Generated cache key",
            client=client,
            endpoint=endpoint,
            method=method,
            params=keys.summarize_params(params),
            cache_key=key
        )
        return key

    def normalize_params(self, params: Optional[Mapping[str, Any]], method: str = "GET") -> Dict[str, Any]:
        return keys.normalize_params(params, method)

    def namespace(self, client: str) -> str:
        config = self.registry.get(client)
        return keys.cache_namespace(config.name, self.codec.is_enabled(config))

    def _check_namespaces(self) -> None:
        """Fail fast when two configured clients would share storage."""
        owners: Dict[str, str] = {}
        for name in self.registry.names():
            for compressed in (False, True):
                namespace = keys.cache_namespace(name, compressed)
                owner = owners.setdefault(namespace, name)
                if owner != name:
                    raise ValidationError(
                        "Clients would share a cache namespace",
                        {"clients": [owner, name], "namespace": namespace}
                    )

    # Payload encoding

    def _encode_headers(self, headers: Optional[Mapping[str, str]], config: ClientConfig) -> Optional[bytes]:
        if not headers:
            return None
        raw = json.dumps(dict(headers), sort_keys=True).encode("utf-8")
        return self.codec.compress(raw, config)

    def _decode_headers(self, data: Optional[bytes], config: ClientConfig, field: str) -> Dict[str, str]:
        if data is None:
            return {}
        raw = self.codec.decompress(data, config)
        try:
            headers = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            raise DataCorruptionError(
                "Cached headers are not valid JSON",
                {"client": config.name, "field": field, "error": str(e)}
            ) from e
        if not isinstance(headers, dict):
            raise DataCorruptionError(
                "Cached headers are not a mapping",
                {"client": config.name, "field": field}
            )
        return headers

    # Cache operations

    async def get_cached_response(self, client: str, key: str) -> Optional[ApiResponse]:
        """Return the live cached response for ``key`` or None on a miss."""
        config = self.registry.get(client)
        namespace = self.namespace(client)

        record = await self.cache_store.get(namespace, key)
        if self.metrics:
            self.metrics.record_cache_lookup(client, record is not None)

        if record is None:
            self.logger.debug("Cache miss", client=client, cache_key=key)
            return None

        response = ApiResponse(
            endpoint=record.endpoint,
            status_code=record.status_code,
            body=self.codec.decompress(record.response_body, config),
            headers=self._decode_headers(record.response_headers, config, "response_headers"),
            version=record.version,
            base_url=record.base_url,
            full_url=record.full_url,
            method=record.method,
            request_headers=self._decode_headers(record.request_headers, config, "request_headers"),
            request_body=self.codec.decompress(record.request_body, config),
            response_time=record.response_time,
            attributes=record.attributes,
            credits=record.credits,
            cost=record.cost,
            request_params_summary=record.request_params_summary,
            is_cached=True,
            expires_at=record.expires_at,
        )

        self.logger.debug(
            "Cache hit",
            client=client,
            cache_key=key,
            endpoint=record.endpoint,
            expires_in=self._expires_in(record.expires_at)
        )
        return response

    def _expires_in(self, expires_at: Optional[datetime]) -> Optional[float]:
        if expires_at is None:
            return None
        return round((expires_at - self.clock()).total_seconds(), 3)

    async def store_response(
        self,
        client: str,
        key: str,
        response: ApiResponse,
        ttl: Optional[int] = None,
    ) -> CacheRecord:
        """Persist ``response`` under ``key``, replacing any existing record.

        ``ttl`` overrides the client's ``cache_ttl``; with neither set the
        record never expires.
        """
        config = self.registry.get(client)
        if not response.body:
            raise ValidationError("Refusing to cache an empty response body", {"client": client, "cache_key": key})

        namespace = self.namespace(client)
        record = CacheRecord(
            key=key,
            client=client,
            endpoint=response.endpoint,
            base_url=response.base_url or config.base_url,
            full_url=response.full_url or "",
            method=keys.canonical_method(response.method),
            status_code=response.status_code,
            response_body=self.codec.compress(response.body, config),
            version=response.version if response.version is not None else config.version,
            attributes=response.attributes,
            credits=response.credits,
            cost=response.cost,
            request_params_summary=response.request_params_summary,
            request_headers=self._encode_headers(response.request_headers, config),
            request_body=self.codec.compress(response.request_body, config),
            response_headers=self._encode_headers(response.headers, config),
            response_time=response.response_time,
        )

        effective_ttl = ttl if ttl is not None else config.cache_ttl
        stored = await self.cache_store.store(namespace, record, effective_ttl)

        if self.metrics:
            self.metrics.record_cache_store(client)
        self.logger.info(
            "Stored response in cache",
            client=client,
            cache_key=key,
            endpoint=response.endpoint,
            namespace=namespace,
            ttl=effective_ttl,
            response_size=stored.response_size,
            compressed=self.codec.is_enabled(config)
        )
        return stored

    async def delete_expired(self, client: Optional[str] = None) -> Dict[str, int]:
        """Sweep expired records for one client, or every configured client."""
        clients = [client] if client is not None else self.registry.names()
        deleted: Dict[str, int] = {}
        for name in clients:
            deleted[name] = await self.cache_store.delete_expired(self.namespace(name))
        self.logger.info("Deleted expired cache records", deleted=deleted)
        return deleted

    async def cache_stats(self, client: str) -> Dict[str, Any]:
        config = self.registry.get(client)
        namespace = self.namespace(client)
        return {
            "client": client,
            "namespace": namespace,
            "backend": self.cache_store.backend_id,
            "compression_enabled": self.codec.is_enabled(config),
            "cache_ttl": config.cache_ttl,
            "total": await self.cache_store.count_total(namespace),
            "active": await self.cache_store.count_active(namespace),
            "expired": await self.cache_store.count_expired(namespace),
        }

    async def clear_cache(self, client: str) -> int:
        namespace = self.namespace(client)
        deleted = await self.cache_store.clear(namespace)
        self.logger.info("Cleared cache", client=client, namespace=namespace, deleted=deleted)
        return deleted

    # Namespace conversion

    def converter(self, client: str, compress: bool = True, **options: Any) -> NamespaceConverter:
        return NamespaceConverter(self, client, compress=compress, **options)

    async def convert_namespace(self, client: str, compress: bool = True, **options: Any) -> ConversionStats:
        """Copy a client's records into its compressed (or plain) namespace."""
        return await self.converter(client, compress, **options).convert_all()

    async def validate_namespace(self, client: str, compress: bool = True, **options: Any) -> ValidationStats:
        return await self.converter(client, compress, **options).validate_all()

    # Rate limiting

    async def allow_request(self, client: str) -> bool:
        return await self.rate_limiter.allow_request(client)

    async def get_remaining_attempts(self, client: str) -> int:
        return await self.rate_limiter.get_remaining_attempts(client)

    async def get_available_in(self, client: str) -> int:
        return await self.rate_limiter.get_available_in(client)

    async def increment_attempts(self, client: str, amount: int = 1) -> int:
        return await self.rate_limiter.increment_attempts(client, amount)

    async def clear_rate_limit(self, client: str) -> None:
        await self.rate_limiter.clear(client)

    async def close(self) -> None:
        """Release storage connections."""
        await self.cache_store.close()
        await self.rate_limiter.store.close()
        await self.error_logger.close()
