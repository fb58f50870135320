"""Transcript endpoints: start processing, poll status, read segments, cancel."""

from __future__ import annotations

import logging

from fastapi import APIRouter, BackgroundTasks, HTTPException

from media_transcriber.api.models import (
    CancelResponse,
    GenerateTranscriptRequest,
    GenerateTranscriptResponse,
    JobOut,
    SegmentOut,
    TranscriptResponse,
    TranscriptStatusResponse,
)
from media_transcriber.transcription.jobs import request_cancel, run_transcription_job
from media_transcriber.transcription.models import JobStatus
from media_transcriber.transcription.storage import (
    count_segments,
    fetch_segments,
    get_asset,
    get_job,
    get_supabase_client,
    upsert_pending_job,
)

logger = logging.getLogger(__name__)

router = APIRouter()

SUPPORTED_MEDIA_PREFIXES = ("video/", "audio/")


@router.post(
    "/api/assets/{asset_id}/generate-transcript",
    response_model=GenerateTranscriptResponse,
)
async def generate_transcript(
    asset_id: str,
    background_tasks: BackgroundTasks,
    body: GenerateTranscriptRequest | None = None,
) -> GenerateTranscriptResponse:
    """Queue transcription of an asset and return immediately.

    The pipeline runs as a background task in this process; poll
    ``transcript-status`` for progress. If a transcript already exists and
    ``reprocess`` is not set, nothing is queued.
    """
    body = body or GenerateTranscriptRequest()
    client = get_supabase_client()

    asset = get_asset(client, asset_id)
    if asset is None:
        raise HTTPException(status_code=404, detail="Asset not found")
    if not asset.file_type.startswith(SUPPORTED_MEDIA_PREFIXES):
        raise HTTPException(status_code=400, detail="Asset is not a video or audio file")

    if not body.reprocess:
        existing = count_segments(client, asset_id)
        if existing > 0:
            logger.info("Segments already exist for asset %s (%d segments)", asset_id, existing)
            return GenerateTranscriptResponse(
                message=f"Transcript segments already exist ({existing} segments)",
                segments_count=existing,
                method="existing",
            )

    job = upsert_pending_job(client, asset_id)
    background_tasks.add_task(
        run_transcription_job,
        job.id,
        asset,
        portion_only=body.process_first_10_minutes_only,
        reprocess=body.reprocess,
    )
    return GenerateTranscriptResponse(
        message="Media processing started in background",
        job_id=job.id,
        status=JobStatus.PENDING,
    )


@router.get(
    "/api/assets/{asset_id}/transcript-status",
    response_model=TranscriptStatusResponse,
)
async def transcript_status(asset_id: str) -> TranscriptStatusResponse:
    """Current job state; the segment count is included once COMPLETED."""
    client = get_supabase_client()
    job = get_job(client, asset_id)
    if job is None:
        return TranscriptStatusResponse(job=None, segments_count=0)

    segments_count = 0
    if job.status is JobStatus.COMPLETED:
        segments_count = count_segments(client, asset_id)

    return TranscriptStatusResponse(
        job=JobOut(
            id=job.id,
            status=job.status,
            progress=job.progress,
            error=job.error,
            created_at=job.created_at,
            completed_at=job.completed_at,
        ),
        segments_count=segments_count,
    )


@router.get("/api/assets/{asset_id}/transcript", response_model=TranscriptResponse)
async def get_transcript(asset_id: str) -> TranscriptResponse:
    """Stored segments ordered by start time."""
    client = get_supabase_client()
    segments = fetch_segments(client, asset_id)
    return TranscriptResponse(
        segments=[
            SegmentOut(
                id=s.id,
                text=s.text,
                start_time=s.start_time,
                end_time=s.end_time,
                speaker=s.speaker,
                created_at=s.created_at,
            )
            for s in segments
        ]
    )


@router.post("/api/assets/{asset_id}/cancel-transcript", response_model=CancelResponse)
async def cancel_transcript(asset_id: str) -> CancelResponse:
    """Ask a running job for this asset to stop."""
    logger.info("Cancel transcript processing requested for asset %s", asset_id)
    if request_cancel(asset_id):
        return CancelResponse(
            success=True,
            message="Cancellation requested. The job will stop at its next checkpoint.",
        )
    return CancelResponse(success=False, message="No transcription is running for this asset.")
