from __future__ import annotations

from functools import lru_cache

from pydantic_settings import BaseSettings


class Settings(BaseSettings):
    """Application settings validated via Pydantic.

    Values are loaded from environment variables and/or a .env file.
    """

    # API Keys
    openai_api_key: str = ""

    # Speech-to-text
    transcription_model: str = "whisper-1"
    transcription_language: str = "en"
    transcription_timeout_seconds: float = 600.0

    # Supabase
    supabase_url: str = ""
    supabase_key: str = ""

    # Blob storage
    aws_region: str = "us-east-1"
    aws_access_key_id: str = ""
    aws_secret_access_key: str = ""
    s3_bucket_name: str = ""

    # Local tooling
    scratch_dir: str = ""  # empty -> system temp dir
    ffmpeg_binary: str = "ffmpeg"
    ffprobe_binary: str = "ffprobe"

    # Size gates (bytes)
    service_max_file_bytes: int = 25 * 1024 * 1024
    max_streaming_bytes: int = 450 * 1024 * 1024
    max_processable_bytes: int = 500 * 1024 * 1024
    full_extraction_max_bytes: int = 200 * 1024 * 1024

    # Subprocess deadlines (seconds)
    extraction_timeout_seconds: float = 600.0
    chunking_timeout_seconds: float = 900.0
    probe_timeout_seconds: float = 60.0

    # Fallback shaping
    portion_duration_seconds: int = 600
    chunk_duration_seconds: int = 600
    large_file_chunk_duration_seconds: int = 300
    max_chunks: int = 10

    # Job housekeeping
    stale_processing_minutes: int = 30
    stale_pending_minutes: int = 5

    model_config = {"env_file": ".env", "env_file_encoding": "utf-8"}


@lru_cache(maxsize=1)
def get_settings() -> Settings:
    """Return a cached Settings instance.

    Gracefully handles missing .env files (e.g. in CI/testing) by falling
    back to environment variables and defaults.
    """
    try:
        return Settings()
    except Exception:
        # If .env is missing or unreadable, build settings from env vars only.
        return Settings(_env_file=None)  # type: ignore[call-arg]


settings = get_settings()
