"""
Cache data models.
"""

import json
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any, Dict, Optional


@dataclass
class CacheRecord:
    """One stored request/response pair.

    Payload fields hold the bytes exactly as persisted: headers are JSON
    encoded and, like bodies, compressed when the client enables it.
    ``response_size`` is the length of the stored response body.
    ``credits`` is the rate limit amount charged for the request, ``cost``
    whatever the upstream reports as its price.
    """
    key: str
    client: str
    endpoint: str
    base_url: str
    full_url: str
    method: str
    status_code: int
    response_body: bytes
    version: Optional[str] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    request_headers: Optional[bytes] = None
    request_body: Optional[bytes] = None
    response_headers: Optional[bytes] = None
    response_size: int = 0
    response_time: Optional[float] = None
    expires_at: Optional[datetime] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    def is_expired(self, now: datetime) -> bool:
        return self.expires_at is not None and self.expires_at <= now

    def stamped(self, now: datetime, expires_at: Optional[datetime]) -> "CacheRecord":
        """Copy with fresh timestamps, as written by a store."""
        return replace(
            self,
            response_size=len(self.response_body),
            expires_at=expires_at,
            created_at=now,
            updated_at=now,
        )


@dataclass
class ApiResponse:
    """Decoded, caller-facing response, fresh from upstream or from the cache."""
    endpoint: str
    status_code: int
    body: bytes
    headers: Dict[str, str] = field(default_factory=dict)
    version: Optional[str] = None
    base_url: Optional[str] = None
    full_url: Optional[str] = None
    method: str = "GET"
    request_headers: Dict[str, str] = field(default_factory=dict)
    request_body: Optional[bytes] = None
    response_time: Optional[float] = None
    attributes: Optional[str] = None
    credits: Optional[int] = None
    cost: Optional[float] = None
    request_params_summary: Optional[str] = None
    is_cached: bool = False
    expires_at: Optional[datetime] = None

    @property
    def response_size(self) -> int:
        return len(self.body)

    @property
    def ok(self) -> bool:
        return 200 <= self.status_code < 300

    @property
    def text(self) -> str:
        return self.body.decode("utf-8", errors="replace")

    def json(self) -> Any:
        return json.loads(self.body)
