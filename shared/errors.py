"""
Shared error handling for the API cache layer.
"""

from typing import Dict, Any, Optional
from pydantic import BaseModel


class ErrorResponse(BaseModel):
    """Standard error response format."""

    code: str
    message: str
    details: Dict[str, Any] = {}


class ApiCacheException(Exception):
    """Base exception for the API cache layer."""

    status_code = 400

    def __init__(self, code: str, message: str, details: Optional[Dict[str, Any]] = None):
        self.code = code
        self.message = message
        self.details = details or {}
        super().__init__(message)

    def to_response(self) -> ErrorResponse:
        """Convert to error response."""
        return ErrorResponse(
            code=self.code,
            message=self.message,
            details=self.details
        )


class ValidationError(ApiCacheException):
    """Validation-related errors."""

    def __init__(self, message: str = "Validation failed", details: Optional[Dict[str, Any]] = None):
        super().__init__("VALIDATION_ERROR", message, details)


class ConfigurationMissingError(ApiCacheException):
    """Raised when a client name has no resolved configuration."""

    status_code = 404

    def __init__(self, client: str, details: Optional[Dict[str, Any]] = None):
        self.client = client
        super().__init__(
            "CONFIGURATION_MISSING",
            f"No configuration found for client '{client}'",
            {"client": client, **(details or {})}
        )


class DataCorruptionError(ApiCacheException):
    """Stored payload could not be decompressed or decoded."""

    status_code = 500

    def __init__(self, message: str = "Stored payload is corrupted", details: Optional[Dict[str, Any]] = None):
        super().__init__("DATA_CORRUPTION", message, details)


class RateLimitExceededError(ApiCacheException):
    """Rate limiting errors. Callers must not retry before ``available_in`` seconds."""

    status_code = 429

    def __init__(self, client: str, available_in: int, message: Optional[str] = None):
        self.client = client
        self.available_in = available_in
        super().__init__(
            "RATE_LIMIT_EXCEEDED",
            message or f"Rate limit exceeded for client '{client}'. Available in {available_in} seconds.",
            {"client": client, "available_in": available_in}
        )


class StorageError(ApiCacheException):
    """Storage backend errors."""

    status_code = 500

    def __init__(self, backend: str, message: str = "Storage error", details: Optional[Dict[str, Any]] = None):
        self.backend = backend
        super().__init__("STORAGE_ERROR", f"{backend}: {message}", details)


class StorageUnavailableError(StorageError):
    """Storage backend is unreachable."""

    status_code = 503

    def __init__(self, backend: str, message: str = "Storage unavailable", details: Optional[Dict[str, Any]] = None):
        super().__init__(backend, message, details)
        self.code = "STORAGE_UNAVAILABLE"


class UpstreamError(ApiCacheException):
    """Upstream API call failed before a response was received."""

    status_code = 502

    def __init__(self, client: str, message: str = "Upstream request failed", details: Optional[Dict[str, Any]] = None):
        self.client = client
        super().__init__("UPSTREAM_ERROR", f"{client}: {message}", details)
