import json
from functools import lru_cache
from typing import Literal

from pydantic import computed_field
from pydantic_settings import BaseSettings, SettingsConfigDict


def _split_list(value: str) -> list[str]:
    """Parse a JSON array, pipe-separated or comma-separated string."""
    if value.startswith("["):
        try:
            return json.loads(value)
        except json.JSONDecodeError:
            pass
    separator = "|" if "|" in value else ","
    return [item.strip() for item in value.split(separator) if item.strip()]


class Settings(BaseSettings):
    model_config = SettingsConfigDict(env_file=".env", env_file_encoding="utf-8", extra="ignore")

    # Application
    app_name: str = "Storyreel Render API"
    app_version: str = "0.1.0"
    git_hash: str = "unknown"  # Set via GIT_HASH env var at build time
    environment: Literal["development", "staging", "production"] = "development"
    debug: bool = True
    log_level: str = "INFO"

    # CORS - stored as string, parsed via computed property
    cors_origins_raw: str = "http://localhost:5173,http://localhost:5000,http://localhost:3000"

    @computed_field
    @property
    def cors_origins(self) -> list[str]:
        """Parse CORS origins from pipe/comma-separated string or JSON array."""
        return _split_list(self.cors_origins_raw)

    # Outbound fetch policy (stock photo/video CDNs, audio samples, speech synthesis)
    allowed_media_domains_raw: str = (
        "images.pexels.com,videos.pexels.com,pixabay.com,freesound.org,murf.ai,cdn.murf.ai"
    )
    fetch_timeout_s: float = 30.0

    @computed_field
    @property
    def allowed_media_domains(self) -> list[str]:
        """Hostnames the render host may download from."""
        return [domain.lower() for domain in _split_list(self.allowed_media_domains_raw)]

    # FFmpeg
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"

    # Render output profile (H.264/AAC MP4)
    render_landscape_width: int = 1920
    render_landscape_height: int = 1080
    render_fps: int = 30
    render_gop_size: int = 60
    render_video_crf: int = 23
    render_video_preset: str = "fast"
    render_audio_bitrate: str = "192k"

    # Render filesystem layout
    render_work_dir: str = "/tmp/storyreel-render"
    render_output_dir: str = "./output"
    # Public URL prefix under which render_output_dir is served
    render_output_url_prefix: str = "/output"
    # Locally generated images are addressed as /output/ai-images/<name>
    local_media_url_prefix: str = "/output/ai-images/"
    local_media_dir: str = "./output/ai-images"

    # Render scheduling
    render_download_concurrency: int = 4
    render_normalize_concurrency: int = 1
    render_verify_clips: bool = True
    # Wall-clock deadline for a whole job in seconds. 0 disables the deadline.
    render_job_timeout_s: float = 0.0

    # Media timing
    media_fallback_duration_s: float = 3.0
    media_min_duration_s: float = 0.5

    # Audio mix defaults when the request carries no musicMixing block
    default_music_volume: float = 0.2
    default_voice_volume: float = 1.0

    # Job store
    job_store_backend: Literal["memory", "sql"] = "memory"
    database_url: str = "sqlite:///./storyreel.db"
    database_echo: bool = False
    job_retention_seconds: int = 86400


@lru_cache
def get_settings() -> Settings:
    return Settings()
