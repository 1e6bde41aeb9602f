from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path

from pydantic import Field, computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_csv(value: str) -> list[str]:
    return [item.strip() for item in value.split(",") if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_file=".env",
        env_file_encoding="utf-8",
        extra="ignore",
    )

    environment: str = Field(default="development", validation_alias="ENVIRONMENT")

    attachment_staging_dir: str = Field(
        default="attachkit/storage/staging",
        validation_alias="ATTACHMENT_STAGING_DIR",
    )
    attachment_transcode_dir: str = Field(
        default="attachkit-transcodes",
        validation_alias="ATTACHMENT_TRANSCODE_DIR",
    )

    attachment_max_size_bytes: int = Field(
        default=50 * 1024 * 1024,
        validation_alias="ATTACHMENT_MAX_SIZE_BYTES",
    )

    ffmpeg_bin: str = Field(default="ffmpeg", validation_alias="FFMPEG_BIN")
    transcode_timeout_seconds: int = Field(default=300, validation_alias="TRANSCODE_TIMEOUT_SECONDS")
    jpeg_quality: int = Field(default=100, ge=1, le=100, validation_alias="JPEG_QUALITY")

    upload_service_url: str = Field(
        default="http://localhost:8080/api/files",
        validation_alias="UPLOAD_SERVICE_URL",
    )
    upload_timeout_seconds: float = Field(default=60.0, validation_alias="UPLOAD_TIMEOUT_SECONDS")
    upload_context: str = Field(default="comment", validation_alias="UPLOAD_CONTEXT")
    max_concurrent_uploads: int = Field(default=0, ge=0, validation_alias="MAX_CONCURRENT_UPLOADS")

    frontend_origins: str = Field(default="http://localhost:3000", validation_alias="FRONTEND_ORIGINS")

    @computed_field
    @property
    def frontend_origin_list(self) -> list[str]:
        return _split_csv(self.frontend_origins)

    @computed_field
    @property
    def transcode_root(self) -> str:
        root = Path(self.attachment_transcode_dir)
        if not root.is_absolute():
            root = Path(tempfile.gettempdir()) / root
        return str(root)


@lru_cache
def get_settings() -> Settings:
    return Settings()
