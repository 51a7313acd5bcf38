"""
HTTP transport used by API clients.
"""

import time
from dataclasses import dataclass, field
from typing import Any, Dict, Mapping, Optional, Protocol

import httpx

from shared.logging import get_logger

DEFAULT_TIMEOUT = 30.0


class TransportError(Exception):
    """The request failed before any HTTP response was received."""


@dataclass
class TransportRequest:
    """The request as actually sent."""
    method: str
    url: str
    headers: Dict[str, str] = field(default_factory=dict)
    body: Optional[bytes] = None


@dataclass
class TransportResponse:
    status_code: int
    headers: Dict[str, str]
    body: bytes
    elapsed: float
    request: TransportRequest


class Transport(Protocol):
    """Executes one HTTP request.

    ``options`` may carry ``params``, ``json``, ``data``, ``headers`` and
    ``timeout``. Non-2xx statuses are returned, not raised; failures without
    a response raise :class:`TransportError`.
    """

    async def execute(self, method: str, url: str, options: Mapping[str, Any]) -> TransportResponse: ...


class HttpxTransport:
    """Transport backed by a shared ``httpx.AsyncClient``."""

    def __init__(self, client: Optional[httpx.AsyncClient] = None, timeout: float = DEFAULT_TIMEOUT):
        self.timeout = timeout
        self.logger = get_logger("api_cache.transport")
        self._client = client

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
        return self._client

    async def execute(self, method: str, url: str, options: Mapping[str, Any]) -> TransportResponse:
        client = self._get_client()
        start_time = time.perf_counter()

        try:
            response = await client.request(
                method,
                url,
                params=options.get("params"),
                json=options.get("json"),
                data=options.get("data"),
                headers=options.get("headers"),
                timeout=options.get("timeout", self.timeout),
            )
        except httpx.HTTPError as e:
            self.logger.error("HTTP transport error", method=method, url=url, error=str(e))
            raise TransportError(f"{type(e).__name__}: {e}") from e

        elapsed = time.perf_counter() - start_time
        request = response.request
        return TransportResponse(
            status_code=response.status_code,
            headers=dict(response.headers),
            body=response.content,
            elapsed=elapsed,
            request=TransportRequest(
                method=request.method,
                url=str(request.url),
                headers=dict(request.headers),
                body=request.content or None,
            ),
        )

    async def close(self) -> None:
        if self._client is not None:
            await self._client.aclose()
            self._client = None
