"""Environment-based configuration for PlantSense."""

from __future__ import annotations

from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from PLANTSENSE_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="PLANTSENSE_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 8090
    cors_origins: list[str] = ["*"]
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # Classifier provider (None = requests will be rejected by the provider)
    gemini_api_key: str | None = None
    gemini_model: str = "gemini-2.5-flash"
    gemini_base_url: str = "https://generativelanguage.googleapis.com"
    request_timeout: float = Field(default=60.0, gt=0)

    # Live mode
    live_feed_url: str = "https://picsum.photos/seed/plant/600/400"
    connect_delay: float = Field(default=2.5, ge=0)
    live_interval: float = Field(default=10.0, gt=0)
    live_skip_when_busy: bool = False

    # Input limits
    max_file_size: int = Field(default=10_485_760, ge=1)

    # History persistence (None = in-memory only)
    history_path: str | None = None


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
