"""
Configuration and settings for the treasure hunt service.
"""

from __future__ import annotations

from functools import lru_cache
from typing import Literal, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    """Environment-backed settings for the FastAPI service."""

    model_config = SettingsConfigDict(
        env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    api_prefix: str = Field(default="/api")

    # Origin used when building the deep links encoded into QR codes.
    public_base_url: str = Field(
        default="http://localhost:5173", env="PUBLIC_BASE_URL"
    )

    # Document store (Firestore)
    firebase_project_id: Optional[str] = Field(
        default=None, env="FIREBASE_PROJECT_ID"
    )

    # S3-compatible storage (Tencent COS or any S3 endpoint)
    cos_endpoint: Optional[str] = Field(default=None, env="COS_ENDPOINT")
    cos_region: Optional[str] = Field(default=None, env="COS_REGION")
    cos_bucket: Optional[str] = Field(default=None, env="COS_BUCKET")
    aws_access_key_id: Optional[str] = Field(
        default=None, env="AWS_ACCESS_KEY_ID"
    )
    aws_secret_access_key: Optional[str] = Field(
        default=None, env="AWS_SECRET_ACCESS_KEY"
    )

    # Media cache (SQLAlchemy URL; SQLite file by default)
    media_cache_url: str = Field(
        default="sqlite+pysqlite:///media-cache.db", env="MEDIA_CACHE_URL"
    )
    prefetch_batch_size: int = Field(default=3, ge=1)
    background_workers: int = Field(default=4, ge=1)

    # Known-hunt index
    known_hunts_backend: Literal["memory", "file", "redis"] = Field(
        default="memory", env="KNOWN_HUNTS_BACKEND"
    )
    known_hunts_dir: str = Field(
        default="data/known_hunts", env="KNOWN_HUNTS_DIR"
    )
    known_hunts_key: str = Field(default="qr-treasure-hunt-known-hunts")
    redis_url: Optional[str] = Field(default=None, env="REDIS_URL")

    # Uploads
    max_upload_bytes: int = Field(default=50 * 1024 * 1024)

    # Development toggles
    use_in_memory_backends: bool = Field(
        default=False, env="USE_IN_MEMORY_BACKENDS"
    )


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return cached settings instance."""
    return Settings()
