"""Application configuration."""

import os
from pathlib import Path

from pydantic_settings import BaseSettings, SettingsConfigDict

_ENVIRONMENT = os.getenv("ENVIRONMENT", "local")


class Settings(BaseSettings):
    """Application settings loaded from environment variables."""

    admin_token: str
    tona_api_base_url: str = "https://api.tona.app"
    tona_api_prefix: str = "/api/v1"
    request_timeout_seconds: float = 30.0
    staged_upload_timeout_seconds: float = 300.0
    staged_upload_threshold_mb: int = 10
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int | None = None
    jpeg_quality: int = 80
    max_images_per_group: int = 10
    max_image_size_mb: int = 10
    results_dir: Path = Path("results")
    log_level: str = "INFO"
    environment: str = _ENVIRONMENT

    model_config = SettingsConfigDict(
        env_file=(f".env.{_ENVIRONMENT}", ".env"),
        extra="ignore",
    )

    @property
    def api_url(self) -> str:
        """Base URL of the processing service including the version prefix."""
        prefix = self.tona_api_prefix.strip("/")
        base = self.tona_api_base_url.rstrip("/")
        return f"{base}/{prefix}" if prefix else base
