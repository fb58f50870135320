"""End-to-end transcription pipeline: stream -> select strategy -> transcribe -> store."""

from __future__ import annotations

import logging
import threading
from collections.abc import Callable
from pathlib import Path

from supabase import Client

from media_transcriber.pipeline_config import PipelineLimits, PipelineState, Strategy
from media_transcriber.transcription.client import TranscriptionClient
from media_transcriber.transcription.errors import EmptyTranscript
from media_transcriber.transcription.models import PipelineResult, TranscriptSegment
from media_transcriber.transcription.scratch import ScratchSpace
from media_transcriber.transcription.source import (
    SourceStreamer,
    guess_mime_type,
    media_extension,
)
from media_transcriber.transcription.storage import (
    count_segments,
    fetch_segments,
    get_supabase_client,
    replace_segments,
)
from media_transcriber.transcription.strategy import StrategySelector

logger = logging.getLogger(__name__)


class TranscriptionPipeline:
    """Wires the streamer, strategy selector and persistence for one asset at a time.

    Collaborators are created lazily from settings unless injected.
    """

    def __init__(
        self,
        db: Client | None = None,
        streamer: SourceStreamer | None = None,
        client: TranscriptionClient | None = None,
        limits: PipelineLimits | None = None,
        scratch_root: Path | None = None,
        cancel_event: threading.Event | None = None,
        selector: StrategySelector | None = None,
        on_progress: Callable[[int], None] | None = None,
    ) -> None:
        self._db = db
        self._streamer = streamer
        self._client = client
        self.limits = limits or PipelineLimits.from_settings()
        self.scratch_root = scratch_root
        self._selector = selector
        self._cancel_event = cancel_event
        self.on_progress = on_progress

    @property
    def cancel_event(self) -> threading.Event | None:
        return self._cancel_event

    @cancel_event.setter
    def cancel_event(self, event: threading.Event | None) -> None:
        self._cancel_event = event
        if self._selector is not None:
            self._selector.cancel_event = event
            self._selector.extractor.cancel_event = event
            self._selector.chunker.cancel_event = event

    @property
    def db(self) -> Client:
        if self._db is None:
            self._db = get_supabase_client()
        return self._db

    @property
    def streamer(self) -> SourceStreamer:
        if self._streamer is None:
            self._streamer = SourceStreamer(max_bytes=self.limits.max_streaming_bytes)
        return self._streamer

    @property
    def selector(self) -> StrategySelector:
        if self._selector is None:
            client = self._client or TranscriptionClient(max_bytes=self.limits.service_max_bytes)
            self._selector = StrategySelector(
                client, self.limits, cancel_event=self.cancel_event
            )
        return self._selector

    def _enter(self, asset_id: str, state: PipelineState) -> None:
        logger.debug("Asset %s -> %s", asset_id, state.value)

    def _existing_transcript(self, asset_id: str, reprocess: bool) -> PipelineResult | None:
        """Skip result when segments are already stored and *reprocess* is off."""
        if reprocess:
            return None
        existing = count_segments(self.db, asset_id)
        if existing == 0:
            return None
        logger.info(
            "Segments already exist for asset %s (%d segments). Skipping processing.",
            asset_id,
            existing,
        )
        return PipelineResult(asset_id=asset_id, segment_count=existing, skipped=True)

    def _progress(self, percent: int) -> None:
        if self.on_progress is not None:
            self.on_progress(percent)

    def process_media(
        self,
        asset_id: str,
        remote_ref: str,
        file_name: str,
        file_type: str,
        *,
        reprocess: bool = False,
        portion_only: bool = False,
    ) -> PipelineResult:
        """Download, transcribe and store the transcript for one asset.

        Args:
            asset_id: Asset whose transcript rows are replaced.
            remote_ref: S3 URL or object key of the uploaded media.
            file_name: Original filename (extension drives container detection).
            file_type: Declared MIME type.
            reprocess: Replace an existing transcript instead of skipping.
            portion_only: Only transcribe the opening portion of the media.

        Returns:
            A :class:`PipelineResult`; ``skipped`` is set when a transcript
            already existed and *reprocess* was not requested.
        """
        self._enter(asset_id, PipelineState.RECEIVED)
        skipped = self._existing_transcript(asset_id, reprocess)
        if skipped is not None:
            return skipped

        logger.info("Starting transcription for asset %s: %s (%s)", asset_id, file_name, file_type)
        with ScratchSpace(self.scratch_root) as scratch:
            try:
                self._progress(20)
                local_path, size = self.streamer.download(
                    remote_ref, scratch, media_extension(file_name, file_type)
                )
                return self._transcribe_and_store(
                    asset_id, local_path, size, file_name, file_type, scratch, portion_only
                )
            except Exception:
                self._enter(asset_id, PipelineState.FAILED)
                logger.exception("Transcription failed for asset %s", asset_id)
                raise

    def process_local_file(
        self,
        asset_id: str,
        path: Path,
        file_name: str | None = None,
        *,
        file_type: str | None = None,
        reprocess: bool = False,
        portion_only: bool = False,
    ) -> PipelineResult:
        """Same as :meth:`process_media` for a file already on local disk.

        The MIME type is guessed from the name when *file_type* is not given.
        The input file is never deleted; only intermediates are cleaned up.
        """
        self._enter(asset_id, PipelineState.RECEIVED)
        skipped = self._existing_transcript(asset_id, reprocess)
        if skipped is not None:
            return skipped

        name = file_name or path.name
        with ScratchSpace(self.scratch_root) as scratch:
            return self._transcribe_and_store(
                asset_id,
                path,
                path.stat().st_size,
                name,
                file_type or guess_mime_type(name),
                scratch,
                portion_only,
            )

    def _transcribe_and_store(
        self,
        asset_id: str,
        local_path: Path,
        size: int,
        file_name: str,
        file_type: str,
        scratch: ScratchSpace,
        portion_only: bool,
    ) -> PipelineResult:
        self._enter(asset_id, PipelineState.SIZE_CHECKED)
        self._progress(50)
        outcome = self.selector.run(
            local_path,
            size,
            scratch,
            upload_name=file_name,
            file_type=file_type,
            portion_only=portion_only,
        )
        self._enter(asset_id, PipelineState(outcome.strategy.value))
        self._enter(asset_id, PipelineState.TRANSCRIBED)
        if outcome.strategy is Strategy.CHUNKED:
            self._enter(asset_id, PipelineState.STITCHED)

        if not outcome.segments:
            raise EmptyTranscript(
                f"No speech segments were returned for asset {asset_id} "
                f"(strategy: {outcome.strategy.value})"
            )

        self._progress(90)
        rows = [TranscriptSegment.from_segment(asset_id, s) for s in outcome.segments]
        written = replace_segments(self.db, asset_id, rows)
        self._enter(asset_id, PipelineState.PERSISTED)
        logger.info(
            "Saved %d transcript segments for asset %s via %s",
            written,
            asset_id,
            outcome.strategy.value,
        )
        return PipelineResult(
            asset_id=asset_id,
            strategy=outcome.strategy,
            segment_count=written,
            covered_until=outcome.covered_until,
            attempts=outcome.attempts,
        )

    def get_segments(self, asset_id: str) -> list[TranscriptSegment]:
        """Stored transcript for an asset, ordered by start time."""
        return fetch_segments(self.db, asset_id)


def process_media(
    asset_id: str,
    remote_ref: str,
    file_name: str,
    file_type: str,
    *,
    reprocess: bool = False,
    portion_only: bool = False,
) -> PipelineResult:
    """Module-level convenience wrapper around :class:`TranscriptionPipeline`."""
    return TranscriptionPipeline().process_media(
        asset_id,
        remote_ref,
        file_name,
        file_type,
        reprocess=reprocess,
        portion_only=portion_only,
    )


def get_segments(asset_id: str) -> list[TranscriptSegment]:
    """Stored transcript segments for an asset, ordered by start time."""
    return TranscriptionPipeline().get_segments(asset_id)
