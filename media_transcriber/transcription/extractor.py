"""Audio extraction: strip video and re-encode to compact mono speech audio."""

from __future__ import annotations

import logging
import threading
from pathlib import Path
from typing import Any

import ffmpeg

from media_transcriber.pipeline_config import PipelineLimits
from media_transcriber.transcription.errors import Cancelled, ExtractionFailed
from media_transcriber.transcription.ffmpeg_runner import run_ffmpeg
from media_transcriber.transcription.scratch import ScratchSpace

logger = logging.getLogger(__name__)


def build_extraction_stream(
    source: Path,
    output: Path,
    limits: PipelineLimits,
    max_duration: float | None = None,
) -> Any:
    """ffmpeg-python graph for ``-vn`` low-bitrate mono MP3 output.

    With *max_duration* only the first N seconds of the input are read.
    """
    input_kwargs: dict[str, Any] = {}
    if max_duration:
        input_kwargs["t"] = max_duration
    return (
        ffmpeg.input(str(source), **input_kwargs)
        .output(
            str(output),
            vn=None,  # drop video
            acodec=limits.audio_codec,
            audio_bitrate=limits.audio_bitrate,
            ac=limits.audio_channels,
            ar=limits.audio_sample_rate,
        )
        .global_args("-hide_banner", "-nostdin")
        .overwrite_output()
    )


class AudioExtractor:
    """Runs the transcoder to produce a small audio file from any media input."""

    def __init__(
        self,
        limits: PipelineLimits | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.limits = limits or PipelineLimits()
        self.cancel_event = cancel_event

    def extract(
        self,
        source: Path,
        scratch: ScratchSpace,
        *,
        max_duration: float | None = None,
        role: str = "audio",
    ) -> Path:
        """Extract audio from *source* into a new scratch file and return its path.

        The output belongs to *scratch*; on any failure the partial output is
        deleted before the error propagates.

        Raises:
            ExtractionFailed: ffmpeg failed, timed out or wrote nothing.
            Cancelled: the run was cancelled mid-extraction.
        """
        output = scratch.path(role, "mp3")
        label = "extract-portion" if max_duration else "extract"
        stream = build_extraction_stream(source, output, self.limits, max_duration)
        try:
            run_ffmpeg(
                stream,
                timeout=self.limits.extraction_timeout,
                label=label,
                cancel_event=self.cancel_event,
            )
            if not output.exists() or output.stat().st_size == 0:
                raise ExtractionFailed(f"{label} produced no audio output")
        except (ExtractionFailed, Cancelled):
            scratch.release(output)
            raise

        out_size = output.stat().st_size
        in_size = source.stat().st_size
        reduction = round((1 - out_size / in_size) * 100) if in_size else 0
        logger.info(
            "[%s] %s -> %dKB (%d%% size reduction)",
            label,
            source.name,
            out_size // 1024,
            reduction,
        )
        return output
