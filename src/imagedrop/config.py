"""Environment-based configuration for imagedrop."""

from __future__ import annotations

from pathlib import Path
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Application settings loaded from IMAGEDROP_* environment variables."""

    model_config = SettingsConfigDict(
        env_prefix="IMAGEDROP_",
        case_sensitive=False,
    )

    # Storage
    storage_root: Path = Path("uploads")
    public_url_prefix: str = "/uploads"
    serve_uploads: bool = True

    # Input limits
    max_file_size: int = Field(default=2_097_152, ge=1)
    max_image_pixels: int = Field(default=50_000_000, ge=1)
    allowed_extensions: tuple[str, ...] = ("jpg", "jpeg", "png", "webp")
    allowed_mime_types: tuple[str, ...] = ("image/jpeg", "image/jpg", "image/png", "image/webp")

    # Derivatives
    large_max_width: int = Field(default=1600, ge=1)
    thumb_size: int = Field(default=300, ge=1)
    target_format: Literal["webp", "jpeg", "png"] = "webp"

    # Concurrency
    max_concurrent: int = Field(default=2, ge=1)
    queue_timeout: float = Field(default=5.0, gt=0)
    max_queued: int = Field(default=16, ge=0)

    # CORS
    cors_allow_origins: list[str] = ["*"]


def get_settings() -> Settings:
    """Create and return application settings."""
    return Settings()
