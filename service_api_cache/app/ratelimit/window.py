"""
Fixed-window counter model.
"""

from dataclasses import dataclass
from typing import Optional


@dataclass(frozen=True)
class RateLimitWindow:
    """Request counter for one client over ``[window_start, window_start + decay_seconds)``.

    A window is only meaningful while ``now < expires_at``; an expired window
    is replaced wholesale by the next increment, never repaired.
    """
    client: str
    window_start: float
    request_count: int
    max_requests: Optional[int]
    decay_seconds: int

    @property
    def expires_at(self) -> float:
        return self.window_start + self.decay_seconds

    def is_expired(self, now: float) -> bool:
        return now >= self.expires_at

    @property
    def is_unlimited(self) -> bool:
        return self.max_requests is None or self.max_requests < 0


def opens_new_window(window: Optional[RateLimitWindow], now: float) -> bool:
    """True when an increment at ``now`` must start a fresh window."""
    return window is None or window.is_expired(now)
