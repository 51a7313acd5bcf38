"""
Error store protocol and the in-process backend.
"""

import asyncio
from typing import Dict, List, Protocol

from .models import ErrorRecord


class ErrorStore(Protocol):
    """Append-only, per-client table of error records, newest first on read."""

    backend_id: str

    async def add(self, record: ErrorRecord) -> ErrorRecord: ...

    async def recent(self, client: str, limit: int = 50) -> List[ErrorRecord]: ...

    async def count(self, client: str) -> int: ...

    async def clear(self, client: str) -> int: ...

    async def ping(self) -> bool: ...

    async def close(self) -> None: ...


class InMemoryErrorStore:
    """Process-local error store for development and tests."""

    backend_id = "memory"

    def __init__(self, max_entries: int = 10000):
        self.max_entries = max_entries
        self._records: Dict[str, List[ErrorRecord]] = {}
        self._lock = asyncio.Lock()

    async def add(self, record: ErrorRecord) -> ErrorRecord:
        async with self._lock:
            records = self._records.setdefault(record.api_client, [])
            records.append(record)
            del records[:-self.max_entries]
        return record

    async def recent(self, client: str, limit: int = 50) -> List[ErrorRecord]:
        async with self._lock:
            return list(reversed(self._records.get(client, [])))[:limit]

    async def count(self, client: str) -> int:
        async with self._lock:
            return len(self._records.get(client, []))

    async def clear(self, client: str) -> int:
        async with self._lock:
            return len(self._records.pop(client, []))

    async def ping(self) -> bool:
        return True

    async def close(self) -> None:
        """Nothing to release."""
