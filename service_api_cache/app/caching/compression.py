"""
At-rest compression for cached payloads.
"""

import zlib
from typing import Optional

from shared.config import ClientConfig
from shared.errors import DataCorruptionError, ValidationError
from shared.logging import get_logger

DEFAULT_COMPRESSION_LEVEL = 6


class CompressionCodec:
    """zlib codec toggled per client by ``compression_enabled``."""

    def __init__(self, level: int = DEFAULT_COMPRESSION_LEVEL):
        if not -1 <= level <= 9:
            raise ValidationError("Compression level must be between -1 and 9", {"level": level})
        self.level = level
        self.logger = get_logger("api_cache.compression")

    def is_enabled(self, config: ClientConfig) -> bool:
        return config.compression_enabled

    def compress(self, data: Optional[bytes], config: ClientConfig) -> Optional[bytes]:
        """Compress ``data`` when the client has compression enabled."""
        if data is None or not self.is_enabled(config):
            return data

        compressed = zlib.compress(data, self.level)
        self.logger.debug(
            "Compressed payload",
            client=config.name,
            original_size=len(data),
            compressed_size=len(compressed),
            ratio=round(len(compressed) / len(data), 4) if data else None
        )
        return compressed

    def decompress(self, data: Optional[bytes], config: ClientConfig) -> Optional[bytes]:
        """Reverse :meth:`compress`; corrupted input raises DataCorruptionError."""
        if data is None or not self.is_enabled(config):
            return data

        try:
            decompressor = zlib.decompressobj()
            decompressed = decompressor.decompress(data)
            decompressed += decompressor.flush()
        except zlib.error as e:
            self.logger.error("Failed to decompress payload", client=config.name, error=str(e))
            raise DataCorruptionError(
                "Failed to decompress cached payload",
                {"client": config.name, "error": str(e)}
            ) from e

        if not decompressor.eof:
            self.logger.error("Truncated compressed payload", client=config.name, size=len(data))
            raise DataCorruptionError(
                "Compressed payload is truncated",
                {"client": config.name, "size": len(data)}
            )

        if decompressor.unused_data:
            self.logger.error(
                "Trailing bytes after compressed payload",
                client=config.name,
                trailing=len(decompressor.unused_data)
            )
            raise DataCorruptionError(
                "Compressed payload has trailing data",
                {"client": config.name, "trailing": len(decompressor.unused_data)}
            )

        self.logger.debug(
            "Decompressed payload",
            client=config.name,
            compressed_size=len(data),
            decompressed_size=len(decompressed)
        )
        return decompressed
