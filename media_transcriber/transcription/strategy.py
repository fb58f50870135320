"""Strategy selection: ordered fallbacks for fitting media under the service limit.

The plan is a list of :class:`Strategy` values derived from the input size.
Each strategy is tried in turn; extraction failures and rejected uploads are
recorded as :class:`StrategyAttempt` entries and the next strategy runs.
Service outages are not a reason to try another strategy and propagate as-is.
"""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from dataclasses import dataclass, field
from pathlib import Path, PurePath

from media_transcriber.pipeline_config import MIB, PipelineLimits, Strategy
from media_transcriber.transcription.chunker import Chunker
from media_transcriber.transcription.client import TranscriptionClient
from media_transcriber.transcription.errors import (
    Cancelled,
    ChunkingFailed,
    ExtractionFailed,
    SizeExceeded,
    StrategiesExhausted,
    StrategyAttempt,
    TranscriptionInputError,
)
from media_transcriber.transcription.extractor import AudioExtractor
from media_transcriber.transcription.models import Chunk, Segment
from media_transcriber.transcription.scratch import ScratchSpace
from media_transcriber.transcription.source import guess_mime_type
from media_transcriber.transcription.stitcher import stitch

logger = logging.getLogger(__name__)


@dataclass
class StrategyOutcome:
    """Segments produced by the strategy that succeeded."""

    strategy: Strategy
    segments: list[Segment]
    covered_until: float | None = None
    chunk_count: int = 0
    attempts: list[StrategyAttempt] = field(default_factory=list)


def plan_strategies(
    size_bytes: int,
    limits: PipelineLimits,
    *,
    portion_only: bool = False,
    is_audio: bool = False,
) -> list[Strategy]:
    """Order in which strategies are attempted for an input of *size_bytes*.

    Audio inputs past the service limit skip portion extraction and go from
    re-encoding straight to chunking.

    Raises:
        SizeExceeded: Input is over the absolute processable ceiling.
    """
    if size_bytes > limits.max_processable_bytes:
        raise SizeExceeded(size_bytes, limits.max_processable_bytes)
    if portion_only:
        return [Strategy.EXTRACT_PORTION]
    if size_bytes <= limits.service_max_bytes:
        # a small file the service rejects may still transcribe once re-encoded
        return [Strategy.DIRECT, Strategy.EXTRACT_FULL]

    plan: list[Strategy] = []
    if size_bytes <= limits.full_extraction_max_bytes:
        plan.append(Strategy.EXTRACT_FULL)
    if not is_audio:
        plan.append(Strategy.EXTRACT_PORTION)
    plan.append(Strategy.CHUNKED)
    return plan


def is_audio_input(file_type: str, file_name: str) -> bool:
    """Whether the input is audio-only, by declared MIME type or else by extension."""
    mime = file_type or guess_mime_type(file_name)
    return mime.startswith("audio/")


def _with_suffix(name: str, suffix: str) -> str:
    return f"{PurePath(name).stem or 'media'}{suffix}"


class StrategySelector:
    """Runs the strategy plan for one local input file."""

    def __init__(
        self,
        client: TranscriptionClient,
        limits: PipelineLimits | None = None,
        extractor: AudioExtractor | None = None,
        chunker: Chunker | None = None,
        cancel_event: threading.Event | None = None,
    ) -> None:
        self.limits = limits or PipelineLimits()
        self.client = client
        self.cancel_event = cancel_event
        self.extractor = extractor or AudioExtractor(self.limits, cancel_event)
        self.chunker = chunker or Chunker(self.limits, cancel_event)

    def _check_cancelled(self) -> None:
        if self.cancel_event is not None and self.cancel_event.is_set():
            raise Cancelled("Transcription cancelled")

    def run(
        self,
        source: Path,
        size_bytes: int,
        scratch: ScratchSpace,
        *,
        upload_name: str,
        file_type: str = "",
        portion_only: bool = False,
    ) -> StrategyOutcome:
        """Try each planned strategy until one yields segments.

        Raises:
            SizeExceeded: Before any work if the input is too large.
            ChunkingFailed: Chunking was the last resort and failed.
            StrategiesExhausted: A plan without chunking ran out of options.
            TranscriptionServiceError: The service itself is failing.
            Cancelled: The run was cancelled.
        """
        audio = is_audio_input(file_type, upload_name)
        plan = plan_strategies(size_bytes, self.limits, portion_only=portion_only, is_audio=audio)
        logger.info(
            "Input %s is %dMB %s; strategy plan: %s",
            upload_name,
            round(size_bytes / MIB),
            "audio" if audio else "video",
            ", ".join(s.value for s in plan),
        )

        attempts: list[StrategyAttempt] = []
        if (
            Strategy.EXTRACT_FULL not in plan
            and not portion_only
            and size_bytes > self.limits.full_extraction_max_bytes
        ):
            attempts.append(
                StrategyAttempt(
                    Strategy.EXTRACT_FULL,
                    f"skipped, input larger than {self.limits.full_extraction_max_bytes // MIB}MB",
                )
            )

        handlers: dict[Strategy, Callable[[Path, int, ScratchSpace, str], StrategyOutcome]] = {
            Strategy.DIRECT: self._direct,
            Strategy.EXTRACT_FULL: self._extract_full,
            Strategy.EXTRACT_PORTION: self._extract_portion,
            Strategy.CHUNKED: self._chunked_audio if audio else self._chunked,
        }
        for strategy in plan:
            self._check_cancelled()
            logger.info("Trying strategy %s", strategy.value)
            try:
                outcome = handlers[strategy](source, size_bytes, scratch, upload_name)
            except (ExtractionFailed, TranscriptionInputError) as exc:
                logger.warning("Strategy %s failed: %s", strategy.value, exc)
                attempts.append(StrategyAttempt(strategy, str(exc)))
                continue
            outcome.attempts = attempts
            return outcome

        if Strategy.CHUNKED in plan:
            raise ChunkingFailed(size_bytes, attempts, audio=audio)
        raise StrategiesExhausted(size_bytes, attempts, audio=audio)

    # -- strategies ---------------------------------------------------------

    def _direct(
        self, source: Path, size_bytes: int, scratch: ScratchSpace, upload_name: str
    ) -> StrategyOutcome:
        segments = self.client.transcribe(source, upload_name=upload_name)
        return StrategyOutcome(Strategy.DIRECT, segments)

    def _fit(self, audio: Path, scratch: ScratchSpace, what: str) -> None:
        size = audio.stat().st_size
        if size > self.limits.service_max_bytes:
            scratch.release(audio)
            raise ExtractionFailed(
                f"{what} is {size / MIB:.1f}MB, still over the "
                f"{self.limits.service_max_bytes // MIB}MB service limit"
            )

    def _extract_full(
        self, source: Path, size_bytes: int, scratch: ScratchSpace, upload_name: str
    ) -> StrategyOutcome:
        audio = self.extractor.extract(source, scratch, role="audio")
        self._fit(audio, scratch, "extracted audio")
        try:
            segments = self.client.transcribe(audio, upload_name=_with_suffix(upload_name, ".mp3"))
        finally:
            scratch.release(audio)
        return StrategyOutcome(Strategy.EXTRACT_FULL, segments)

    def _extract_portion(
        self, source: Path, size_bytes: int, scratch: ScratchSpace, upload_name: str
    ) -> StrategyOutcome:
        limit = float(self.limits.portion_duration)
        audio = self.extractor.extract(source, scratch, max_duration=limit, role="portion")
        self._fit(audio, scratch, "extracted portion")
        try:
            raw = self.client.transcribe(
                audio, upload_name=_with_suffix(upload_name, "_portion.mp3")
            )
        finally:
            scratch.release(audio)
        segments = [
            Segment(text=s.text, start=s.start, end=min(s.end, limit), speaker=s.speaker)
            for s in raw
            if s.start < limit
        ]
        logger.warning(
            "Transcript for %s covers only the first %ds (degraded result)",
            upload_name,
            int(limit),
        )
        return StrategyOutcome(Strategy.EXTRACT_PORTION, segments, covered_until=limit)

    def _chunked(
        self,
        source: Path,
        size_bytes: int,
        scratch: ScratchSpace,
        upload_name: str,
        duration: int | None = None,
    ) -> StrategyOutcome:
        duration = duration or self.limits.chunk_duration_for(size_bytes)
        logger.info("Using %d-second chunks", duration)
        chunks = self.chunker.split(source, duration, scratch)

        covered_until: float | None = None
        if len(chunks) > self.limits.max_chunks:
            kept, dropped = chunks[: self.limits.max_chunks], chunks[self.limits.max_chunks :]
            logger.warning(
                "Limiting processing to the first %d of %d chunks; %d discarded",
                len(kept),
                len(chunks),
                len(dropped),
            )
            for chunk in dropped:
                scratch.release(chunk.path)
            chunks = kept
            covered_until = chunks[-1].index * duration + chunks[-1].duration

        stem = PurePath(upload_name).stem or "media"
        results: list[tuple[int, list[Segment]]] = []
        for n, chunk in enumerate(chunks, start=1):
            self._check_cancelled()
            logger.info("Processing chunk %d/%d", n, len(chunks))
            results.append((chunk.index, self._transcribe_chunk(chunk, source, scratch, stem)))

        segments = stitch(results, duration)
        logger.info("All chunks processed. Total segments: %d", len(segments))
        return StrategyOutcome(
            Strategy.CHUNKED, segments, covered_until=covered_until, chunk_count=len(chunks)
        )

    def _chunked_audio(
        self, source: Path, size_bytes: int, scratch: ScratchSpace, upload_name: str
    ) -> StrategyOutcome:
        return self._chunked(source, size_bytes, scratch, upload_name, self.limits.chunk_duration)

    def _transcribe_chunk(
        self, chunk: Chunk, source: Path, scratch: ScratchSpace, stem: str
    ) -> list[Segment]:
        upload = chunk.path
        name = f"{stem}_chunk_{chunk.index + 1}{chunk.path.suffix}"
        try:
            if chunk.path.stat().st_size > self.limits.service_max_bytes:
                # stream-copied chunks keep the source codec and any video track
                upload = self.extractor.extract(
                    chunk.path, scratch, role=f"chunk-audio-{chunk.index:03d}"
                )
                self._fit(upload, scratch, f"audio for chunk {chunk.index + 1}")
                name = f"{stem}_chunk_{chunk.index + 1}.mp3"
            return self.client.transcribe(upload, upload_name=name)
        finally:
            if upload != chunk.path:
                scratch.release(upload)
            if chunk.path != source:
                scratch.release(chunk.path)
