"""
Fixed-window rate limiter.
"""

import math
import sys
import time
from typing import Any, Callable, Dict, Optional, TYPE_CHECKING

from shared.config import ClientConfig, ClientRegistry
from shared.errors import ValidationError
from shared.logging import get_logger
from .store import RateLimitStore
from .window import RateLimitWindow

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from shared.metrics import MetricsCollector


class WindowRateLimiter:
    """Per-client fixed-window limiter on top of a shared RateLimitStore.

    Windows open lazily on the first call for a client and are replaced once
    ``now >= window_start + decay_seconds``. ``allow_request`` followed by
    ``increment_attempts`` is not atomic as a pair: concurrent callers can
    overshoot the limit by the number of in-flight requests.
    """

    def __init__(
        self,
        store: RateLimitStore,
        registry: ClientRegistry,
        clock: Callable[[], float] = time.time,
        *,
        metrics: Optional["MetricsCollector"] = None,
    ):
        self.store = store
        self.registry = registry
        self.clock = clock
        self.metrics = metrics
        self.logger = get_logger("api_cache.rate_limiter")

    async def _increment(self, config: ClientConfig, amount: int) -> RateLimitWindow:
        return await self.store.increment(
            config.name,
            amount,
            max_requests=None if config.is_unlimited else config.max_requests,
            decay_seconds=config.decay_seconds,
            now=self.clock(),
        )

    async def _current_window(self, client: str) -> Optional[RateLimitWindow]:
        """The live window for ``client``, or None when absent or expired."""
        window = await self.store.get_window(client)
        if window is None or window.is_expired(self.clock()):
            return None
        return window

    async def allow_request(self, client: str) -> bool:
        """Whether ``client`` still has quota in its current window."""
        config = self.registry.get(client)

        if config.is_unlimited:
            allowed = True
        else:
            window = await self._increment(config, 0)
            allowed = window.request_count < config.max_requests
            if not allowed:
                self.logger.warning(
                    "Rate limit reached",
                    client=client,
                    request_count=window.request_count,
                    max_requests=config.max_requests,
                    available_in=self._seconds_until(window)
                )

        if self.metrics:
            self.metrics.record_rate_limit_decision(client, allowed)
        return allowed

    async def get_remaining_attempts(self, client: str) -> int:
        """``max_requests - request_count``; negative once the window is overdrawn."""
        config = self.registry.get(client)
        if config.is_unlimited:
            return sys.maxsize

        window = await self._current_window(client)
        used = window.request_count if window else 0
        return config.max_requests - used

    def _seconds_until(self, window: RateLimitWindow) -> int:
        return max(0, math.ceil(window.expires_at - self.clock()))

    async def get_available_in(self, client: str) -> int:
        """Whole seconds until the current window expires; 0 without a live window."""
        self.registry.get(client)
        window = await self._current_window(client)
        if window is None:
            return 0
        return self._seconds_until(window)

    async def increment_attempts(self, client: str, amount: int = 1) -> int:
        """Atomically add ``amount`` to the current window and return the new count."""
        if isinstance(amount, bool) or not isinstance(amount, int) or amount < 0:
            raise ValidationError("Increment amount must be a non-negative integer", {"amount": amount})

        config = self.registry.get(client)
        window = await self._increment(config, amount)
        self.logger.debug(
            "Incremented request count",
            client=client,
            amount=amount,
            request_count=window.request_count
        )
        return window.request_count

    async def clear(self, client: str) -> None:
        """Reset the window for ``client``."""
        self.registry.get(client)
        await self.store.clear(client)
        self.logger.info("Rate limit cleared", client=client)

    async def status(self, client: str) -> Dict[str, Any]:
        """Snapshot of the client's quota for the admin surface."""
        config = self.registry.get(client)
        window = await self._current_window(client)

        return {
            "client": client,
            "unlimited": config.is_unlimited,
            "max_requests": None if config.is_unlimited else config.max_requests,
            "decay_seconds": config.decay_seconds,
            "request_count": window.request_count if window else 0,
            "remaining": await self.get_remaining_attempts(client),
            "available_in": self._seconds_until(window) if window else 0,
            "window_start": window.window_start if window else None,
        }
