"""
Shared configuration management for the API cache layer.
"""

import os
import re
from functools import lru_cache
from pathlib import Path
from typing import Any, Dict, Iterable, List, Literal, Mapping, Optional, Union

import yaml
from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from shared.errors import ConfigurationMissingError, ValidationError
from shared.logging import get_logger

IDENTIFIER_PATTERN = re.compile(r"^[A-Za-z0-9_-]+$")

Backend = Literal["memory", "redis", "postgres"]

LOG_LEVELS = ("debug", "info", "warning", "error", "critical")


def validate_identifier(value: str) -> str:
    """Reject client names that are unsafe as storage identifiers."""
    if not isinstance(value, str) or not IDENTIFIER_PATTERN.match(value):
        raise ValidationError(
            "Identifier may only contain letters, digits, hyphens and underscores",
            {"identifier": value}
        )
    return value


class ApiCacheSettings(BaseSettings):
    """Process-level settings loaded from the environment."""

    model_config = SettingsConfigDict(
        env_prefix="API_CACHE_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore"
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Storage backends
    cache_backend: Backend = "redis"
    rate_limit_backend: Backend = "redis"
    redis_url: str = "redis://localhost:6379/0"
    postgres_dsn: str = "postgresql://localhost:5432/api_cache"
    key_prefix: str = "api_cache"

    # Clients
    clients_file: Optional[str] = None

    # Error logging for failed upstream calls and rejected caches. Events
    # missing from error_log_events are logged; missing levels default to error.
    error_logging_enabled: bool = True
    error_log_events: Dict[str, bool] = Field(default_factory=dict)
    error_log_levels: Dict[str, str] = Field(default_factory=dict)
    error_log_max_entries: int = Field(default=10000, gt=0)

    @field_validator("error_log_levels")
    @classmethod
    def check_error_log_levels(cls, v: Dict[str, str]) -> Dict[str, str]:
        levels = {event: level.lower() for event, level in v.items()}
        unknown = sorted(set(levels.values()) - set(LOG_LEVELS))
        if unknown:
            raise ValueError(f"unknown log levels: {', '.join(unknown)}")
        return levels

    # Admin service
    host: str = "0.0.0.0"
    port: int = 8020


class ClientConfig(BaseModel):
    """Resolved, immutable configuration for one upstream API client."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    name: str
    api_key: Optional[str] = None
    base_url: str
    version: Optional[str] = None
    cache_ttl: Optional[int] = Field(default=None, description="Seconds; None caches forever")
    compression_enabled: bool = False
    max_requests: Optional[int] = Field(default=1000, description="Requests per window; None or negative is unlimited")
    decay_seconds: int = Field(default=60, gt=0)
    default_endpoint: Optional[str] = None
    count_failed_requests: bool = True
    timeout: float = Field(default=30.0, gt=0)

    @field_validator("name")
    @classmethod
    def check_name(cls, v: str) -> str:
        if not IDENTIFIER_PATTERN.match(v):
            raise ValueError("client name may only contain letters, digits, hyphens and underscores")
        return v

    @field_validator("cache_ttl")
    @classmethod
    def check_ttl(cls, v: Optional[int]) -> Optional[int]:
        # Zero means "no expiry", same as leaving it unset
        if v is not None and v <= 0:
            return None
        return v

    @field_validator("base_url")
    @classmethod
    def strip_base_url(cls, v: str) -> str:
        return v.rstrip("/")

    @property
    def is_unlimited(self) -> bool:
        return self.max_requests is None or self.max_requests < 0


class ClientRegistry:
    """Read-only lookup of client configurations by name."""

    def __init__(self, clients: Iterable[ClientConfig] = ()):
        self._clients: Dict[str, ClientConfig] = {}
        for config in clients:
            self._clients[config.name] = config

    def get(self, name: str) -> ClientConfig:
        """Return the configuration for ``name`` or fail fast."""
        try:
            return self._clients[name]
        except KeyError:
            raise ConfigurationMissingError(name) from None

    def names(self) -> List[str]:
        return sorted(self._clients)

    def __contains__(self, name: object) -> bool:
        return name in self._clients

    def __len__(self) -> int:
        return len(self._clients)

    @classmethod
    def from_mapping(cls, data: Mapping[str, Mapping[str, Any]]) -> "ClientRegistry":
        """Build a registry from ``{name: {field: value}}``."""
        clients = []
        for name, raw in data.items():
            values = dict(raw or {})
            values.setdefault("name", name)
            if values.get("api_key") is None:
                env_key = f"{name.upper().replace('-', '_')}_API_KEY"
                values["api_key"] = os.getenv(env_key)
            clients.append(ClientConfig(**values))
        return cls(clients)


def load_client_registry(path: Union[str, Path]) -> ClientRegistry:
    """Load client configurations from a YAML file with a top-level ``clients`` mapping."""
    logger = get_logger("api_cache.config")
    path = Path(path)

    with path.open("r", encoding="utf-8") as fh:
        document = yaml.safe_load(fh) or {}

    clients = document.get("clients")
    if not isinstance(clients, dict):
        raise ValidationError("Clients file must define a 'clients' mapping", {"path": str(path)})

    registry = ClientRegistry.from_mapping(clients)
    logger.info("Loaded client configurations", path=str(path), clients=registry.names())
    return registry


@lru_cache
def get_settings() -> ApiCacheSettings:
    """Get cached settings instance."""
    return ApiCacheSettings()
