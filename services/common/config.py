from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "inventory-service"


class ServiceSettings(BaseSettings):
    """Settings for the inventory service and its collaborators.

    Every field can be overridden with a ``SERVICE_``-prefixed environment variable.
    """

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )

    # Runtime
    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=3005)

    # Observability
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    # Storage
    database_url: str | None = Field(default=None)
    database_echo: bool = Field(default=False)
    redis_url: str | None = Field(default=None)
    inventory_cache_ttl_seconds: int = Field(default=3600, ge=0)

    # Collaborators
    product_service_url: str | None = Field(default=None)
    notification_service_url: str | None = Field(default=None)
    http_timeout_seconds: float = Field(default=5.0, gt=0.0)

    # Reservations and stock policy
    reservation_expiry_minutes: int = Field(default=30, ge=1)
    low_stock_threshold: int = Field(default=10, ge=0)

    # Background sweeps
    enable_sweeper: bool = Field(default=True)
    reservation_sweep_interval_seconds: float = Field(default=300.0, gt=0.0)
    reservation_sweep_batch_size: int = Field(default=500, ge=1)
    low_stock_sweep_interval_seconds: float = Field(default=3600.0, gt=0.0)

    @field_validator(
        "tracing_endpoint",
        "database_url",
        "redis_url",
        "product_service_url",
        "notification_service_url",
    )
    @classmethod
    def _blank_as_unset(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
