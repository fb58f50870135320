"""Pipeline configuration: strategy enums and the PipelineLimits dataclass."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from media_transcriber.config import Settings, settings

MIB = 1024 * 1024


class Strategy(str, Enum):
    """Ordered fallback approaches for getting media under the service limit."""

    DIRECT = "direct"
    EXTRACT_FULL = "extract_full"
    EXTRACT_PORTION = "extract_portion"
    CHUNKED = "chunked"


class PipelineState(str, Enum):
    """States a single processing invocation moves through."""

    RECEIVED = "received"
    SIZE_CHECKED = "size_checked"
    DIRECT = "direct"
    EXTRACT_FULL = "extract_full"
    EXTRACT_PORTION = "extract_portion"
    CHUNKED = "chunked"
    TRANSCRIBED = "transcribed"
    STITCHED = "stitched"
    PERSISTED = "persisted"
    FAILED = "failed"


# Human-readable descriptions used in terminal error messages.
STRATEGY_DESCRIPTIONS: dict[Strategy, str] = {
    Strategy.DIRECT: "Direct upload of the original file",
    Strategy.EXTRACT_FULL: "Aggressive audio extraction (32kbps mono MP3)",
    Strategy.EXTRACT_PORTION: "Audio extraction from the opening portion only",
    Strategy.CHUNKED: "Media chunking",
}


@dataclass(frozen=True)
class PipelineLimits:
    """Immutable size, time and shape limits for one pipeline run.

    Defaults mirror the speech-to-text service's 25MB request cap and the
    fallback thresholds the pipeline was tuned for.
    """

    service_max_bytes: int = 25 * MIB
    max_streaming_bytes: int = 450 * MIB
    max_processable_bytes: int = 500 * MIB
    full_extraction_max_bytes: int = 200 * MIB

    extraction_timeout: float = 600.0
    chunking_timeout: float = 900.0
    probe_timeout: float = 60.0

    portion_duration: int = 600
    chunk_duration: int = 600
    large_file_chunk_duration: int = 300
    max_chunks: int = 10

    audio_codec: str = "libmp3lame"
    audio_bitrate: str = "32k"
    audio_sample_rate: int = 16000
    audio_channels: int = 1

    @classmethod
    def from_settings(cls, cfg: Settings | None = None) -> PipelineLimits:
        """Build limits from application settings."""
        cfg = cfg or settings
        return cls(
            service_max_bytes=cfg.service_max_file_bytes,
            max_streaming_bytes=cfg.max_streaming_bytes,
            max_processable_bytes=cfg.max_processable_bytes,
            full_extraction_max_bytes=cfg.full_extraction_max_bytes,
            extraction_timeout=cfg.extraction_timeout_seconds,
            chunking_timeout=cfg.chunking_timeout_seconds,
            probe_timeout=cfg.probe_timeout_seconds,
            portion_duration=cfg.portion_duration_seconds,
            chunk_duration=cfg.chunk_duration_seconds,
            large_file_chunk_duration=cfg.large_file_chunk_duration_seconds,
            max_chunks=cfg.max_chunks,
        )

    def chunk_duration_for(self, size_bytes: int) -> int:
        """Shorter chunks for very large inputs."""
        if size_bytes > self.full_extraction_max_bytes:
            return self.large_file_chunk_duration
        return self.chunk_duration
