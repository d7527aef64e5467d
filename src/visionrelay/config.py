"""Environment-based configuration for VisionRelay."""

from __future__ import annotations

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from VISIONRELAY_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="VISIONRELAY_",
        case_sensitive=False,
    )

    # Server
    host: str = "0.0.0.0"  # noqa: S104
    port: int = 3002
    cors_origins: list[str] = ["http://localhost:5173"]

    # Storage
    upload_dir: str = "uploads"
    unique_storage_names: bool = False

    # External classifier (None = not configured, every prediction fails)
    classifier_endpoint: str | None = None
    classifier_prediction_key: str | None = None
    classifier_timeout: float = Field(default=30.0, gt=0)

    # Classifier calls in flight per predict request (1 = sequential)
    max_concurrent: int = Field(default=1, ge=1)

    # Logging
    log_level: str = "INFO"
    log_file: str | None = None


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
