"""
Shared configuration management for the User Access service.

Every setting is read from an ``ACCESS_``-prefixed environment variable
(``ACCESS_REDIS_URL``, ``ACCESS_CACHE_TTL_SECONDS`` ...) or from a local
``.env`` file.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="ACCESS_",
        env_file=".env",
        case_sensitive=False,
        extra="ignore",
    )

    # Environment
    env: str = "local"
    log_level: str = "info"

    # Durable store
    postgres_dsn: str = "postgresql://localhost:5432/access"
    postgres_min_pool_size: int = Field(default=2, ge=1)
    postgres_max_pool_size: int = Field(default=10, ge=1)
    postgres_command_timeout: float = Field(default=30.0, gt=0)

    # Cache
    redis_url: str = "redis://localhost:6379/0"
    redis_password: Optional[str] = None
    redis_db: Optional[int] = Field(default=None, ge=0)
    cache_ttl_seconds: int = Field(default=300, ge=0)

    # Coordination policy
    backend_timeout_seconds: float = Field(default=5.0, gt=0)
    strict_cache_writes: bool = True

    # Observability
    enable_tracing: bool = False
    otel_exporter: str = "http://localhost:4317"
    enable_console_tracing: bool = False


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


def get_config(service_name: str, port: int, **overrides) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port, **overrides)
