"""Pydantic request/response schemas for the transcription API."""

from __future__ import annotations

from pydantic import BaseModel

from media_transcriber.transcription.models import JobStatus


class GenerateTranscriptRequest(BaseModel):
    """Optional body for the generate-transcript endpoint."""

    process_first_10_minutes_only: bool = False
    reprocess: bool = False


class GenerateTranscriptResponse(BaseModel):
    """Either an accepted background job or a report of existing segments."""

    success: bool = True
    message: str
    job_id: str | None = None
    status: JobStatus | None = None
    segments_count: int | None = None
    method: str | None = None


class SegmentOut(BaseModel):
    """A single transcript segment."""

    id: str | None = None
    text: str
    start_time: float
    end_time: float
    speaker: str | None = None
    created_at: str | None = None


class TranscriptResponse(BaseModel):
    """Response body for the transcript endpoint."""

    segments: list[SegmentOut]


class JobOut(BaseModel):
    """Public view of a transcription job."""

    id: str
    status: JobStatus
    progress: int | None = None
    error: str | None = None
    created_at: str | None = None
    completed_at: str | None = None


class TranscriptStatusResponse(BaseModel):
    """Response body for the transcript-status endpoint."""

    job: JobOut | None = None
    segments_count: int = 0


class CancelResponse(BaseModel):
    """Response body for the cancel-transcript endpoint."""

    success: bool
    message: str
