from __future__ import annotations

import tempfile
from functools import lru_cache
from pathlib import Path
from typing import Any, Optional

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _default_temp_root() -> Path:
    return Path(tempfile.gettempdir()) / "ppt-to-video"


class Settings(BaseSettings):
    """Application configuration loaded from environment variables."""

    model_config = SettingsConfigDict(env_prefix="pdf2video_", case_sensitive=False)

    app_name: str = "pdf2video"
    version: str = "0.1.0"
    api_prefix: str = "/api"
    timezone: str = "UTC"

    temp_root: Path = Field(default_factory=_default_temp_root)
    max_upload_bytes: int = 50 * 1024 * 1024

    rasterize_timeout_seconds: float = 120.0
    worker_start_method: str = "spawn"
    cleanup_delay_seconds: float = 10 * 60

    access_key_id: Optional[str] = None
    secret_access_key: Optional[str] = None

    storage_bucket: Optional[str] = None
    storage_region: Optional[str] = None
    storage_endpoint: Optional[str] = None
    storage_key_prefix: str = "ppt-to-video"
    storage_presign_expires_seconds: int = 3600

    composition_base_url: str = "https://vod.volcengineapi.com"
    edit_api_version: str = "2018-01-01"
    vod_api_version: str = "2020-08-01"
    vod_space: Optional[str] = None
    uploader_name: str = "pdf2video"
    output_fps: int = 30
    output_format: str = "mp4"
    output_quality: str = "medium"
    poll_interval_seconds: float = 2.0
    poll_max_attempts: int = 60

    request_timeout_seconds: float = 10.0

    log_level: str = "INFO"
    log_json: bool = True
    access_log_excluded_paths: tuple[str, ...] = ("/healthz", "/api/ppt-to-video/status")

    cli_default_host: str = "0.0.0.0"
    cli_default_port: int = 8000
    cli_reload: bool = False


@lru_cache
def get_settings() -> Settings:
    """Return cached settings instance."""

    return Settings()  # type: ignore[call-arg]


def settings_from_overrides(**overrides: Any) -> Settings:
    """Utility used in tests to build a settings object from overrides."""

    return Settings(**overrides)
