from functools import lru_cache
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


DEFAULT_APP_NAME = "checkout-core"


class ServiceSettings(BaseSettings):
    """Settings for the checkout service, read from ``SERVICE_*`` variables and .env files."""

    # Process and HTTP surface
    app_name: str = Field(default=DEFAULT_APP_NAME)
    environment: Literal["local", "dev", "staging", "prod"] = Field(default="local")
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"] = Field(default="INFO")
    service_host: str = Field(default="0.0.0.0")
    service_port: int = Field(default=8000, ge=1, le=65535)

    # Observability
    enable_metrics: bool = Field(default=True)
    enable_tracing: bool = Field(default=False)
    tracing_endpoint: str | None = Field(default=None)
    tracing_protocol: Literal["http/protobuf", "grpc"] = Field(default="http/protobuf")
    tracing_insecure: bool = Field(default=True)
    tracing_sample_rate: float = Field(default=1.0, ge=0.0, le=1.0)

    # Storage
    database_url: str | None = Field(
        default=None,
        description="SQLAlchemy async URL, e.g. postgresql+asyncpg://... or sqlite+aiosqlite:///file.db",
    )
    database_echo: bool = Field(default=False)
    sqlite_busy_timeout_seconds: float = Field(
        default=30.0,
        gt=0.0,
        description="How long a SQLite writer waits for the database lock before failing.",
    )

    # Checkout rules
    max_idempotency_key_bytes: int = Field(default=255, ge=1, le=255)
    order_page_limit_default: int = Field(default=50, ge=1, le=100)

    model_config = SettingsConfigDict(
        env_file=(".env", ".env.local"), env_prefix="SERVICE_", extra="ignore"
    )

    @field_validator("database_url", "tracing_endpoint")
    @classmethod
    def _blank_as_unset(cls, value: str | None) -> str | None:
        if value is None:
            return None
        cleaned = value.strip()
        return cleaned or None


@lru_cache
def get_settings() -> ServiceSettings:
    """Return cached service settings."""

    return ServiceSettings()
