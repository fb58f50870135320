"""Split media into bounded-duration pieces with ffmpeg's segment muxer."""

from __future__ import annotations

import logging
import math
import threading
from pathlib import Path
from typing import Any

import ffmpeg

from media_transcriber.pipeline_config import PipelineLimits
from media_transcriber.transcription.errors import ExtractionFailed
from media_transcriber.transcription.ffmpeg_runner import probe_duration, run_ffmpeg
from media_transcriber.transcription.models import Chunk
from media_transcriber.transcription.scratch import ScratchSpace

logger = logging.getLogger(__name__)


def build_segment_stream(source: Path, pattern: str, chunk_duration: int) -> Any:
    """Stream-copy (no re-encode) split into ``chunk_duration``-second files."""
    return (
        ffmpeg.input(str(source))
        .output(
            pattern,
            f="segment",
            segment_time=chunk_duration,
            c="copy",
            reset_timestamps=1,
            avoid_negative_ts="make_zero",
        )
        .global_args("-hide_banner", "-nostdin")
        .overwrite_output()
    )


class Chunker:
    """Produces an ordered list of chunk files for one input."""

    def __init__(
        self,
        limits: PipelineLimits | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.limits = limits or PipelineLimits()
        self.cancel_event = cancel_event

    def split(self, source: Path, chunk_duration: int, scratch: ScratchSpace) -> list[Chunk]:
        """Split *source* and return the chunks that exist, in index order.

        If the probed duration fits in one chunk the source itself is returned
        as chunk 0 and nothing is written.

        Raises:
            ExtractionFailed: probing or splitting failed, or no chunk was written.
        """
        duration = probe_duration(
            source, timeout=self.limits.probe_timeout, cancel_event=self.cancel_event
        )
        logger.info("[chunk] %s duration: %ds", source.name, round(duration))

        if duration <= chunk_duration:
            logger.info("[chunk] short enough, no chunking needed")
            return [Chunk(path=source, index=0, duration=duration)]

        expected = math.ceil(duration / chunk_duration)
        ext = source.suffix.lstrip(".") or "mp4"
        logger.info("[chunk] splitting into %d chunks of %ds", expected, chunk_duration)

        stream = build_segment_stream(source, scratch.pattern("chunk", ext), chunk_duration)
        run_ffmpeg(
            stream,
            timeout=self.limits.chunking_timeout,
            label="chunk",
            cancel_event=self.cancel_event,
        )

        chunks: list[Chunk] = []
        for index in range(expected):
            path = scratch.indexed_path("chunk", index, ext)
            if not path.exists():
                # the final segment may be absent when the split lands on the end
                logger.info("[chunk] chunk %d/%d not written", index + 1, expected)
                continue
            nominal = min(chunk_duration, duration - index * chunk_duration)
            chunks.append(Chunk(path=path, index=index, duration=nominal))

        if not chunks:
            raise ExtractionFailed("chunking produced no output files")
        logger.info("[chunk] created %d chunk(s)", len(chunks))
        return chunks
