"""
Shared configuration management for the Site Index services.
"""

from typing import Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class BaseConfig(BaseSettings):
    """Base configuration class with common settings."""

    model_config = SettingsConfigDict(
        env_prefix="SITEINDEX_",
        env_file=".env",
        case_sensitive=False,
        extra="allow",
    )

    # Environment
    env: str = Field(default="local")
    log_level: str = Field(default="info")

    # External services
    redis_url: str = Field(default="redis://localhost:6379/0")
    postgres_dsn: str = Field(default="postgres://localhost:5432/siteindex")


class ServiceConfig(BaseConfig):
    """Service-specific configuration."""

    service_name: str
    port: int
    host: str = "0.0.0.0"

    def __init__(self, service_name: str, port: int, **kwargs):
        super().__init__(service_name=service_name, port=port, **kwargs)


class DirectoryConfig(ServiceConfig):
    """Settings for the directory listing service and its cache tiers."""

    cache_namespace: str = Field(default="api:v2:index")
    count_namespace: str = Field(default="api:v2:count")
    stats_prefix: str = Field(default="cache:stats")

    # Memory tier
    memory_capacity: int = Field(default=500, ge=1)
    memory_sweep_interval_seconds: float = Field(default=300.0)

    # TTL tiers (memory in milliseconds, remote in seconds)
    hot_memory_ttl_ms: int = Field(default=30 * 60 * 1000)
    warm_memory_ttl_ms: int = Field(default=10 * 60 * 1000)
    cold_memory_ttl_ms: int = Field(default=5 * 60 * 1000)
    hot_remote_ttl_seconds: int = Field(default=8 * 60 * 60)
    warm_remote_ttl_seconds: int = Field(default=4 * 60 * 60)
    cold_remote_ttl_seconds: int = Field(default=1 * 60 * 60)

    # Search terms outside these bounds are never cached
    search_min_length: int = Field(default=3)
    search_max_length: int = Field(default=50)

    # Remote tier protection
    remote_timeout_seconds: float = Field(default=0.5)
    remote_failure_threshold: int = Field(default=3)
    remote_recovery_seconds: float = Field(default=15.0)

    coalesce_fills: bool = Field(default=False)

    # Cache warming
    warm_concurrency: int = Field(default=10)
    warm_plan_file: Optional[str] = Field(default=None)


def get_config(service_name: str, port: int) -> ServiceConfig:
    """Get configuration for a specific service."""
    return ServiceConfig(service_name=service_name, port=port)


def get_directory_config(port: int = 8020, **overrides) -> DirectoryConfig:
    """Get configuration for the directory service."""
    return DirectoryConfig(service_name="directory", port=port, **overrides)
