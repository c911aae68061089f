"""Application configuration using pydantic-settings."""

from functools import lru_cache
from typing import Literal

from dotenv import load_dotenv
from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict

# Load .env file and override existing env vars
load_dotenv(override=True)


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        case_sensitive=False,
        extra="ignore",
    )

    # Application
    app_env: Literal["development", "staging", "production"] = "development"
    app_debug: bool = True

    # API Server
    api_host: str = "0.0.0.0"
    api_port: int = 8000

    # Optional: Redis (in-memory stores are used when unset)
    redis_url: str | None = None
    redis_key_prefix: str = "deploywatch:"

    # Docker Engine API
    docker_socket_path: str = "/var/run/docker.sock"
    docker_api_version: str = "v1.43"
    docker_timeout_seconds: float = 10.0

    # Container naming scheme owned by this system
    resource_label_key: str = "deploywatch.resource.type"
    resource_id_label_key: str = "deploywatch.resource.id"
    resource_type: str = "x402"
    resource_image_prefix: str = "deploywatch-resource-"

    # Progress streaming
    progress_poll_interval_ms: int = Field(default=300, ge=10)
    progress_error_backoff_factor: int = Field(default=3, ge=1)
    progress_session_budget_seconds: float = Field(default=120.0, gt=0)
    progress_ttl_seconds: int = Field(default=300, gt=0)

    # Raw log streaming
    log_stream_default_tail: int = Field(default=50, ge=0)
    log_stream_session_budget_seconds: float = Field(default=1800.0, gt=0)

    # Reconciliation
    reconcile_enabled: bool = True
    reconcile_initial_delay_seconds: float = 5.0
    reconcile_interval_seconds: float = 300.0
    reconcile_stale_after_hours: float = 48.0
    reconcile_orphan_grace_seconds: float = 600.0

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    log_format: Literal["console", "json"] = "console"
    # Relative to the working directory; unset to log to stdout only
    log_directory: str | None = "logs"
    log_file_name: str = "deploywatch.log"

    @property
    def is_development(self) -> bool:
        """Check if running in development mode."""
        return self.app_env == "development"

    @property
    def is_production(self) -> bool:
        """Check if running in production mode."""
        return self.app_env == "production"

    @property
    def progress_poll_interval(self) -> float:
        """Polling interval of the progress tailer in seconds."""
        return self.progress_poll_interval_ms / 1000


@lru_cache
def get_settings() -> Settings:
    """Get cached settings instance."""
    return Settings()


# Global settings instance
settings = get_settings()
