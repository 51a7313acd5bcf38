"""
Orchestrating API client: cache lookup, rate limiting, upstream call and cache store.
"""

from typing import Any, Dict, Mapping, Optional, Protocol, TYPE_CHECKING

from shared.config import ClientConfig
from shared.errors import RateLimitExceededError, UpstreamError
from shared.logging import bind_client_context, get_logger
from ..caching.cache_manager import CacheManager
from ..caching.keys import canonical_method, summarize_params
from ..caching.models import ApiResponse
from ..errorlog.logger import ApiErrorLogger
from .transport import HttpxTransport, Transport, TransportError, TransportResponse

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector

QUERY_METHODS = frozenset({"GET", "HEAD", "DELETE", "OPTIONS"})
SENSITIVE_HEADERS = frozenset({"authorization", "x-api-key", "api-key", "proxy-authorization"})


class ApiClient(Protocol):
    """Capabilities the cache layer needs from a per-API client."""

    def get_base_url(self) -> str: ...

    async def execute_request(self, method: str, url: str, options: Mapping[str, Any]) -> TransportResponse: ...

    def clean_endpoint_path(self, path: str) -> str: ...

    def get_client_specific_fields(self) -> Dict[str, str]: ...


def redact_headers(headers: Mapping[str, str]) -> Dict[str, str]:
    """Copy of ``headers`` with credentials masked, safe to persist."""
    return {
        name: "***" if name.lower() in SENSITIVE_HEADERS else value
        for name, value in headers.items()
    }


class BaseApiClient:
    """Generic client that routes every call through the cache manager.

    Subclasses override the hooks (auth headers, endpoint cleaning,
    ``should_cache``) for a particular upstream API; the request flow in
    :meth:`send_cached_request` stays the same for all of them.
    """

    def __init__(
        self,
        config: ClientConfig,
        cache_manager: CacheManager,
        transport: Optional[Transport] = None,
        *,
        metrics: Optional["MetricsCollector"] = None,
        error_logger: Optional[ApiErrorLogger] = None,
    ):
        self.config = config
        self.client_name = config.name
        self.cache_manager = cache_manager
        self.transport = transport or HttpxTransport(timeout=config.timeout)
        self.metrics = metrics
        self.error_logger = error_logger or cache_manager.error_logger
        self.use_cache = True
        self.logger = get_logger("api_cache.client")

    # Hooks

    def get_base_url(self) -> str:
        return self.config.base_url

    def build_url(self, endpoint: str) -> str:
        return f"{self.get_base_url().rstrip('/')}/{endpoint.lstrip('/')}"

    def clean_endpoint_path(self, path: str) -> str:
        """Endpoint as stored with cached records: no query string, no surrounding slashes."""
        return path.split("?", 1)[0].strip("/")

    def get_client_specific_fields(self) -> Dict[str, str]:
        """Extra per-client request fields and their types."""
        return {}

    def get_auth_headers(self) -> Dict[str, str]:
        headers = {"Accept": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def get_auth_params(self) -> Dict[str, Any]:
        return {}

    def build_request_options(self, params: Optional[Mapping[str, Any]], method: str) -> Dict[str, Any]:
        payload = {**self.get_auth_params(), **(params or {})}
        options: Dict[str, Any] = {
            "headers": self.get_auth_headers(),
            "timeout": self.config.timeout,
        }
        if method in QUERY_METHODS:
            options["params"] = {k: v for k, v in payload.items() if v is not None}
        else:
            options["json"] = payload
        return options

    def should_cache(self, response: ApiResponse) -> bool:
        """Whether a successful response may be stored. Defaults to always."""
        return True

    async def execute_request(self, method: str, url: str, options: Mapping[str, Any]) -> TransportResponse:
        return await self.transport.execute(method, url, options)

    # Error logging

    def get_api_error_message(self, response: ApiResponse) -> Optional[str]:
        """Error message reported by the upstream in a failed response body, if any."""
        try:
            data = response.json()
        except ValueError:
            return None
        if isinstance(data, dict):
            message = data.get("message") or data.get("error")
            if isinstance(message, str):
                return message
        return None

    def get_request_cost(self, result: TransportResponse) -> Optional[float]:
        """Price of a request as reported by the upstream. Unknown by default."""
        return None

    async def log_api_error(
        self,
        error_type: str,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        response_body: Optional[str] = None,
        api_message: Optional[str] = None,
    ) -> None:
        """Record an upstream problem, subject to the error logging settings."""
        await self.error_logger.log(self.client_name, error_type, message, context, response_body, api_message)

    # Requests

    async def send_request(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
    ) -> ApiResponse:
        """Call the upstream API directly, without cache or rate limiting."""
        method = canonical_method(method)
        url = self.build_url(endpoint)

        self.logger.debug(
            "Sending API request",
            client=self.client_name,
            method=method,
            endpoint=endpoint,
            url=url
        )

        try:
            result = await self.execute_request(method, url, self.build_request_options(params, method))
        except TransportError as e:
            if self.metrics:
                self.metrics.record_upstream_request(self.client_name, None, 0.0)
            raise UpstreamError(self.client_name, str(e), {"url": url, "method": method}) from e

        if self.metrics:
            self.metrics.record_upstream_request(self.client_name, result.status_code, result.elapsed)
        self.logger.debug(
            "API request completed",
            client=self.client_name,
            status_code=result.status_code,
            response_time=round(result.elapsed, 3)
        )

        return ApiResponse(
            endpoint=self.clean_endpoint_path(endpoint),
            status_code=result.status_code,
            body=result.body,
            headers=result.headers,
            version=self.config.version,
            base_url=self.get_base_url(),
            full_url=result.request.url,
            method=result.request.method,
            request_headers=redact_headers(result.request.headers),
            request_body=result.request.body,
            response_time=result.elapsed,
            cost=self.get_request_cost(result),
            request_params_summary=summarize_params(params),
            is_cached=False,
        )

    async def send_cached_request(
        self,
        endpoint: str,
        params: Optional[Mapping[str, Any]] = None,
        method: str = "GET",
        amount: int = 1,
        attributes: Optional[str] = None,
    ) -> ApiResponse:
        """Serve from cache when possible, otherwise call upstream within the rate limit.

        Raises RateLimitExceededError when the client's window is exhausted
        and UpstreamError when the transport fails. Non-2xx responses are
        returned to the caller but never cached. ``amount`` is charged against
        the rate limit and stored as the record's credits; ``attributes`` is an
        opaque caller tag stored alongside the record.
        """
        with bind_client_context(self.client_name):
            method = canonical_method(method)
            cm = self.cache_manager

            cache_key = cm.generate_cache_key(self.client_name, endpoint, params, method, self.config.version)

            if not self.use_cache:
                self.logger.debug("Caching disabled for this request", endpoint=endpoint, method=method)
            else:
                cached = await cm.get_cached_response(self.client_name, cache_key)
                if cached is not None:
                    self.logger.debug("Cache used", endpoint=endpoint, method=method, cache_key=cache_key)
                    return cached
                self.logger.debug("Cache not used", endpoint=endpoint, method=method, cache_key=cache_key)

            if not await cm.allow_request(self.client_name):
                available_in = await cm.get_available_in(self.client_name)
                self.logger.warning("Rate limit exceeded", available_in=available_in)
                raise RateLimitExceededError(self.client_name, available_in)

            try:
                response = await self.send_request(endpoint, params, method)
                response.credits = amount
                response.attributes = attributes
            except UpstreamError as e:
                if self.config.count_failed_requests:
                    await cm.increment_attempts(self.client_name, amount)
                await self.log_api_error(
                    "http_error",
                    "Connection error",
                    {
                        "url": self.build_url(endpoint),
                        "method": method,
                        "cache_key": cache_key,
                        "error": e.message,
                    }
                )
                raise

            if response.ok or self.config.count_failed_requests:
                await cm.increment_attempts(self.client_name, amount)

            if not response.ok:
                await self.log_api_error(
                    "http_error",
                    "HTTP error",
                    {
                        "status_code": response.status_code,
                        "url": response.full_url,
                        "method": method,
                        "cache_key": cache_key,
                        "params": summarize_params(params),
                    },
                    response.text,
                    self.get_api_error_message(response)
                )
                return response

            if self.use_cache:
                await self._store(cache_key, response)
            return response

    async def _store(self, cache_key: str, response: ApiResponse) -> None:
        if not response.body:
            await self.log_api_error("cache_rejected", "Empty response body", {"cache_key": cache_key})
            return
        if not self.should_cache(response):
            await self.log_api_error(
                "cache_rejected",
                "Response rejected by cache policy",
                {"cache_key": cache_key, "endpoint": response.endpoint},
                response.text
            )
            return
        await self.cache_manager.store_response(self.client_name, cache_key, response)

    async def close(self) -> None:
        close = getattr(self.transport, "close", None)
        if close is not None:
            await close()
