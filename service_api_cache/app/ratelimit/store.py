"""
Rate limit store protocol and the in-process backend.
"""

import asyncio
from dataclasses import replace
from typing import Dict, Optional, Protocol

from .window import RateLimitWindow, opens_new_window


class RateLimitStore(Protocol):
    """Shared window counters keyed by client.

    :meth:`increment` must be a single atomic step: open a fresh window when
    none exists or the current one has expired, add ``amount`` and return the
    resulting window.
    """

    backend_id: str

    async def get_window(self, client: str) -> Optional[RateLimitWindow]: ...

    async def increment(
        self,
        client: str,
        amount: int,
        *,
        max_requests: Optional[int],
        decay_seconds: int,
        now: float,
    ) -> RateLimitWindow: ...

    async def clear(self, client: str) -> None: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryRateLimitStore:
    """Process-local window counters for development and tests."""

    backend_id = "memory"

    def __init__(self):
        self._windows: Dict[str, RateLimitWindow] = {}
        self._lock = asyncio.Lock()

    async def get_window(self, client: str) -> Optional[RateLimitWindow]:
        async with self._lock:
            return self._windows.get(client)

    async def increment(
        self,
        client: str,
        amount: int,
        *,
        max_requests: Optional[int],
        decay_seconds: int,
        now: float,
    ) -> RateLimitWindow:
        async with self._lock:
            window = self._windows.get(client)
            if opens_new_window(window, now):
                window = RateLimitWindow(
                    client=client,
                    window_start=now,
                    request_count=0,
                    max_requests=max_requests,
                    decay_seconds=decay_seconds,
                )
            window = replace(window, request_count=window.request_count + amount)
            self._windows[client] = window
            return window

    async def clear(self, client: str) -> None:
        async with self._lock:
            self._windows.pop(client, None)

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """Nothing to release; present for parity with the shared backends."""
