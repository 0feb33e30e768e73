"""Settings for the ambient stack: database engine, logging and tracing.

Repositories never read these; they receive a session factory built from
them (see repokit.core.database).
"""
from typing import Literal

from pydantic import Field, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Settings loaded from environment variables and an optional .env file."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    environment: str = "development"

    # Database
    database_url: str = "sqlite+aiosqlite:///./repokit.db"
    database_pool_size: int = Field(default=20, description="Ignored for SQLite")
    database_max_overflow: int = Field(default=10, description="Ignored for SQLite")
    database_echo: bool = False

    # Logging
    log_level: str = "INFO"
    log_format: Literal["json", "console"] = "json"

    # OpenTelemetry
    otel_enabled: bool = True
    otel_exporter_otlp_endpoint: str = "http://localhost:4317"
    otel_service_name: str = "repokit"

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, value: str) -> str:
        return value.upper()

    @property
    def is_production(self) -> bool:
        """Check if running in production environment."""
        return self.environment.lower() == "production"

    @property
    def database_system(self) -> str:
        """Backend name used for span attributes (e.g. "postgresql", "sqlite")."""
        return self.database_url.split(":", 1)[0].split("+", 1)[0]


# Global settings instance
settings = Settings()
