from functools import lru_cache
from typing import Literal

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class Settings(BaseSettings):
    model_config = SettingsConfigDict(
        env_prefix="KMLOVERLAY_", env_file=".env", env_file_encoding="utf-8", extra="ignore"
    )

    # Logging
    log_level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Job scheduling
    max_concurrent_jobs: int = Field(default=3, ge=1)
    # Terminal jobs stay queryable for this long before eviction
    job_retention_seconds: float = 30.0
    cancelled_job_retention_seconds: float = 5.0

    # Overlay rendering
    default_speed_unit: Literal["kmh", "ms"] = "kmh"
    gauge_max_speed_kmh: float = Field(default=60.0, gt=0)
    overlay_fps: int = Field(default=5, ge=1, le=60)
    overlay_margin_px: int = 10
    font_path: str | None = None
    display_timezone: str = "UTC"

    # Output encode
    output_video_codec: str = "libx264"
    output_crf: int = 23
    output_preset: str = "medium"
    output_audio_codec: str = "aac"
    output_audio_bitrate: str = "128k"

    # Work directories (None = system temp)
    temp_dir: str | None = None


@lru_cache
def get_settings() -> Settings:
    return Settings()
