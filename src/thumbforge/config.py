"""Environment-based configuration for Thumbforge."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from THUMBFORGE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="THUMBFORGE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8083
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Authentication (None = disabled)
    api_key: str | None = None

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)

    # Input limits
    max_file_size: int = Field(default=209_715_200, ge=1)
    max_resize_pixels: int = Field(default=100_000_000, ge=1)

    # Allow /pipelines to read and write local paths
    local_files_enabled: bool = False


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
