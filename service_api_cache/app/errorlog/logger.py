"""
Error logging policy for API clients.
"""

import json
from datetime import datetime, timezone
from typing import Any, Callable, Dict, Mapping, Optional

from shared.config import ApiCacheSettings
from shared.errors import StorageError
from shared.logging import get_logger
from .models import ErrorRecord
from .store import ErrorStore

RESPONSE_PREVIEW_LENGTH = 2000
DEFAULT_LEVEL = "error"


class ApiErrorLogger:
    """Decides whether an error event is logged, at which level, and persists it.

    Every enabled event produces a structured log line at its configured
    level. When a store is attached the event is also written there; a
    failing store is logged and never breaks the request that triggered it.
    """

    def __init__(
        self,
        store: Optional[ErrorStore] = None,
        *,
        enabled: bool = True,
        events: Optional[Mapping[str, bool]] = None,
        levels: Optional[Mapping[str, str]] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.enabled = enabled
        self.events = dict(events or {})
        self.levels = {event: level.lower() for event, level in (levels or {}).items()}
        self.clock = clock or (lambda: datetime.now(timezone.utc))
        self.logger = get_logger("api_cache.errorlog")

    @classmethod
    def from_settings(cls, settings: ApiCacheSettings, store: Optional[ErrorStore] = None) -> "ApiErrorLogger":
        return cls(
            store,
            enabled=settings.error_logging_enabled,
            events=settings.error_log_events,
            levels=settings.error_log_levels,
        )

    def is_enabled(self, error_type: str) -> bool:
        return self.enabled and self.events.get(error_type, True)

    def level_for(self, error_type: str) -> str:
        return self.levels.get(error_type, DEFAULT_LEVEL)

    async def log(
        self,
        client: str,
        error_type: str,
        message: Optional[str],
        context: Optional[Dict[str, Any]] = None,
        response_body: Optional[str] = None,
        api_message: Optional[str] = None,
    ) -> Optional[ErrorRecord]:
        """Log and persist one error event; returns the record, or None when disabled."""
        if not self.is_enabled(error_type):
            return None

        level = self.level_for(error_type)
        record = ErrorRecord(
            api_client=client,
            error_type=error_type,
            log_level=level,
            error_message=message,
            api_message=api_message,
            response_preview=response_body[:RESPONSE_PREVIEW_LENGTH] if response_body is not None else None,
            context_data=json.dumps(context, sort_keys=True, default=str) if context else None,
            created_at=self.clock(),
        )

        getattr(self.logger, level)(
            message or error_type,
            error_type=error_type,
            client=client,
            api_message=api_message,
            context=context or {},
            response_preview=record.response_preview
        )

        if self.store is not None:
            try:
                await self.store.add(record)
            except StorageError as e:
                self.logger.error("Failed to persist API error", client=client, error_type=error_type, error=str(e))
        return record

    async def recent(self, client: str, limit: int = 50):
        if self.store is None:
            return []
        return await self.store.recent(client, limit)

    async def close(self) -> None:
        if self.store is not None:
            await self.store.close()
