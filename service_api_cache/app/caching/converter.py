"""
Moves a client's cached records between its plain and compressed namespaces.

Turning ``compression_enabled`` on or off changes which namespace a client
reads from. The converter re-encodes the existing records into the other
namespace in batches so the cache stays warm across the switch.
"""

from dataclasses import asdict, dataclass, fields, replace
from typing import TYPE_CHECKING, Any, Dict, Optional

from shared.errors import DataCorruptionError, ValidationError
from shared.logging import get_logger
from . import keys
from .models import CacheRecord

if TYPE_CHECKING:  # pragma: no cover - imported for typing only
    from .cache_manager import CacheManager

DEFAULT_BATCH_SIZE = 100

PAYLOAD_FIELDS = ("request_headers", "request_body", "response_headers", "response_body")
# Re-encoding changes the stored size
_DERIVED_FIELDS = ("response_size",)


@dataclass
class ConversionStats:
    total_count: int = 0
    processed_count: int = 0
    skipped_count: int = 0
    error_count: int = 0

    def add(self, other: "ConversionStats") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)


@dataclass
class ValidationStats:
    validated_count: int = 0
    mismatch_count: int = 0
    missing_count: int = 0
    error_count: int = 0

    def add(self, other: "ValidationStats") -> None:
        for name, value in asdict(other).items():
            setattr(self, name, getattr(self, name) + value)


class NamespaceConverter:
    """Copies one client's records into the namespace of the other encoding.

    With ``compress=True`` records move from the plain namespace into the
    compressed one; with ``compress=False`` they move back. Expired records
    are skipped, as are keys already present in the target unless
    ``overwrite`` is set. Every converted record is decoded again and
    compared with its source before it is written.
    """

    def __init__(
        self,
        cache_manager: "CacheManager",
        client: str,
        *,
        compress: bool = True,
        batch_size: int = DEFAULT_BATCH_SIZE,
        overwrite: bool = False,
    ):
        if batch_size <= 0:
            raise ValidationError("Batch size must be positive", {"batch_size": batch_size})

        config = cache_manager.registry.get(client)
        self.cache_manager = cache_manager
        self.store = cache_manager.cache_store
        self.codec = cache_manager.codec
        self.client = config.name
        self.compress = compress
        self.batch_size = batch_size
        self.overwrite = overwrite

        self.source_config = config.model_copy(update={"compression_enabled": not compress})
        self.target_config = config.model_copy(update={"compression_enabled": compress})
        self.source_namespace = keys.cache_namespace(self.client, not compress)
        self.target_namespace = keys.cache_namespace(self.client, compress)
        self.logger = get_logger("api_cache.converter")

    def convert_record(self, record: CacheRecord) -> CacheRecord:
        """Re-encode the payload fields of ``record`` for the target namespace."""
        payload = {
            name: self.codec.compress(
                self.codec.decompress(getattr(record, name), self.source_config),
                self.target_config
            )
            for name in PAYLOAD_FIELDS
        }
        return replace(record, response_size=len(payload["response_body"]), **payload)

    def validate_record(self, source: CacheRecord, converted: CacheRecord) -> bool:
        """True when ``converted`` decodes to exactly what ``source`` holds."""
        for f in fields(CacheRecord):
            if f.name in PAYLOAD_FIELDS or f.name in _DERIVED_FIELDS:
                continue
            if getattr(source, f.name) != getattr(converted, f.name):
                self.logger.debug("Field mismatch during validation", client=self.client, field=f.name, cache_key=source.key)
                return False

        for name in PAYLOAD_FIELDS:
            original = self.codec.decompress(getattr(source, name), self.source_config)
            decoded = self.codec.decompress(getattr(converted, name), self.target_config)
            if original != decoded:
                self.logger.debug("Payload mismatch during validation", client=self.client, field=name, cache_key=source.key)
                return False
        return True

    async def convert_batch(self, offset: int = 0, batch_size: Optional[int] = None) -> ConversionStats:
        batch_size = batch_size or self.batch_size
        stats = ConversionStats()
        now = self.cache_manager.clock()

        records = await self.store.list_records(self.source_namespace, offset, batch_size)
        for record in records:
            stats.total_count += 1
            if record.is_expired(now):
                stats.skipped_count += 1
                continue
            if not self.overwrite and await self.store.get(self.target_namespace, record.key) is not None:
                stats.skipped_count += 1
                continue

            try:
                converted = self.convert_record(record)
                if not self.validate_record(record, converted):
                    raise DataCorruptionError("Converted record does not round trip", {"cache_key": record.key})
            except DataCorruptionError as e:
                self.logger.error(
                    "Error converting record",
                    client=self.client,
                    cache_key=record.key,
                    error=e.message
                )
                stats.error_count += 1
                continue

            await self.store.put(self.target_namespace, converted)
            stats.processed_count += 1

        self.logger.debug(
            "Batch conversion completed",
            client=self.client,
            source=self.source_namespace,
            target=self.target_namespace,
            offset=offset,
            stats=asdict(stats)
        )
        return stats

    async def convert_all(self) -> ConversionStats:
        """Convert every record of the source namespace."""
        total = ConversionStats()
        offset = 0
        self.logger.info(
            "Starting namespace conversion",
            client=self.client,
            source=self.source_namespace,
            target=self.target_namespace,
            batch_size=self.batch_size
        )

        while True:
            stats = await self.convert_batch(offset)
            if stats.total_count == 0:
                break
            total.add(stats)
            offset += self.batch_size

        self.logger.info("Namespace conversion completed", client=self.client, stats=asdict(total))
        return total

    async def validate_batch(self, offset: int = 0, batch_size: Optional[int] = None) -> ValidationStats:
        """Check converted records in the target namespace against their sources."""
        batch_size = batch_size or self.batch_size
        stats = ValidationStats()

        records = await self.store.list_records(self.target_namespace, offset, batch_size)
        for converted in records:
            source = await self.store.get(self.source_namespace, converted.key)
            if source is None:
                self.logger.warning("Converted record has no source", client=self.client, cache_key=converted.key)
                stats.missing_count += 1
                continue
            try:
                valid = self.validate_record(source, converted)
            except DataCorruptionError as e:
                self.logger.error("Error validating record", client=self.client, cache_key=converted.key, error=e.message)
                stats.error_count += 1
                continue
            if valid:
                stats.validated_count += 1
            else:
                stats.mismatch_count += 1
        return stats

    async def validate_all(self) -> ValidationStats:
        total = ValidationStats()
        offset = 0
        while True:
            stats = await self.validate_batch(offset)
            # Every listed record lands in exactly one counter
            if not any(asdict(stats).values()):
                break
            total.add(stats)
            offset += self.batch_size

        self.logger.info("Namespace validation completed", client=self.client, stats=asdict(total))
        return total

    def summary(self, stats: Any) -> Dict[str, Any]:
        return {
            "client": self.client,
            "source": self.source_namespace,
            "target": self.target_namespace,
            **asdict(stats),
        }
