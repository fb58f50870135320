"""Background job runner and per-asset cancellation registry."""

from __future__ import annotations

import logging
import threading

from supabase import Client

from media_transcriber.transcription.errors import PersistenceError
from media_transcriber.transcription.models import AssetRef, JobStatus
from media_transcriber.transcription.pipeline import TranscriptionPipeline
from media_transcriber.transcription.storage import get_supabase_client, update_job

logger = logging.getLogger(__name__)

_cancel_events: dict[str, threading.Event] = {}
_cancel_lock = threading.Lock()


def register_cancel_event(asset_id: str) -> threading.Event:
    """Fresh cancellation flag for an asset's run."""
    event = threading.Event()
    with _cancel_lock:
        _cancel_events[asset_id] = event
    return event


def request_cancel(asset_id: str) -> bool:
    """Signal a running job to stop. Returns False when nothing is running."""
    with _cancel_lock:
        event = _cancel_events.get(asset_id)
    if event is None:
        return False
    event.set()
    return True


def clear_cancel_event(asset_id: str, event: threading.Event | None = None) -> None:
    with _cancel_lock:
        if event is None or _cancel_events.get(asset_id) is event:
            _cancel_events.pop(asset_id, None)


def run_transcription_job(
    job_id: str,
    asset: AssetRef,
    *,
    portion_only: bool = False,
    reprocess: bool = False,
    db: Client | None = None,
    pipeline: TranscriptionPipeline | None = None,
) -> None:
    """Run the pipeline for *asset* and record the outcome on the job row.

    Every failure is recorded as FAILED with its message rather than raised:
    this runs detached from any request.
    """
    db = db or get_supabase_client()
    event = register_cancel_event(asset.id)
    if pipeline is None:
        pipeline = TranscriptionPipeline(db=db, cancel_event=event)
    else:
        pipeline.cancel_event = event

    def report_progress(percent: int) -> None:
        try:
            update_job(db, job_id, progress=percent)
        except PersistenceError:
            logger.warning(
                "Could not record progress %d%% for job %s", percent, job_id, exc_info=True
            )

    pipeline.on_progress = report_progress

    try:
        update_job(db, job_id, status=JobStatus.PROCESSING, progress=10)
        logger.info(
            "Starting background processing for asset %s%s",
            asset.id,
            " (opening portion only)" if portion_only else "",
        )
        result = pipeline.process_media(
            asset.id,
            asset.url,
            asset.file_name,
            asset.file_type,
            reprocess=reprocess,
            portion_only=portion_only,
        )
        update_job(db, job_id, status=JobStatus.COMPLETED, progress=100, completed=True)

        if result.partial:
            logger.warning(
                "Asset %s completed with a partial transcript covering [0, %ss)",
                asset.id,
                result.covered_until,
            )
        logger.info(
            "Successfully processed asset %s: %d segments", asset.id, result.segment_count
        )
    except Exception as exc:
        logger.exception("Processing failed for asset %s", asset.id)
        try:
            update_job(db, job_id, status=JobStatus.FAILED, progress=0, error=str(exc) or repr(exc))
        except PersistenceError:
            logger.exception("Failed to update job %s status to FAILED", job_id)
    finally:
        clear_cancel_event(asset.id, event)
