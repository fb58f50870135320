"""Supabase storage helpers for transcript segments, jobs and asset lookups."""

from __future__ import annotations

from datetime import UTC, datetime, timedelta
from typing import Any, cast

import httpx
from postgrest import CountMethod
from postgrest.exceptions import APIError
from supabase import Client, create_client

from media_transcriber.config import settings
from media_transcriber.transcription.errors import PersistenceError
from media_transcriber.transcription.models import (
    AssetRef,
    JobStatus,
    TranscriptionJob,
    TranscriptSegment,
)

SEGMENTS_TABLE = "transcript_segments"
JOBS_TABLE = "transcription_jobs"
ASSETS_TABLE = "assets"

# Delete-then-insert inside one database transaction (see supabase/migrations).
REPLACE_SEGMENTS_RPC = "replace_transcript_segments"

MAX_ERROR_CHARS = 1000


def get_supabase_client() -> Client:
    """Create and return a Supabase client from settings."""
    return create_client(settings.supabase_url, settings.supabase_key)


def _execute(query: Any, action: str) -> Any:
    """Run a PostgREST query, surfacing failures as PersistenceError."""
    try:
        return query.execute()
    except (APIError, httpx.HTTPError) as exc:
        raise PersistenceError(f"Failed to {action}: {exc}") from exc


def _now() -> str:
    return datetime.now(UTC).isoformat()


def truncate_error(message: str) -> str:
    """Keep job error text within the column budget."""
    if len(message) > MAX_ERROR_CHARS:
        return message[:MAX_ERROR_CHARS] + "..."
    return message


# ---------------------------------------------------------------------------
# Transcript segments
# ---------------------------------------------------------------------------


def count_segments(client: Client, asset_id: str) -> int:
    """Number of stored segments for an asset."""
    result = _execute(
        client.table(SEGMENTS_TABLE)
        .select("id", count=CountMethod.exact)
        .eq("asset_id", asset_id),
        f"count segments for asset {asset_id}",
    )
    return result.count or 0


def replace_segments(client: Client, asset_id: str, segments: list[TranscriptSegment]) -> int:
    """Atomically replace every stored segment of *asset_id* with *segments*.

    Returns:
        The number of rows written.
    """
    rows = [s.to_row() for s in segments]
    _execute(
        client.rpc(REPLACE_SEGMENTS_RPC, {"p_asset_id": asset_id, "p_segments": rows}),
        f"replace segments for asset {asset_id}",
    )
    return len(rows)


def fetch_segments(client: Client, asset_id: str) -> list[TranscriptSegment]:
    """Stored segments for an asset ordered by start time."""
    result = _execute(
        client.table(SEGMENTS_TABLE)
        .select("*")
        .eq("asset_id", asset_id)
        .order("start_time"),
        f"fetch segments for asset {asset_id}",
    )
    rows = cast(list[dict[str, Any]], result.data)
    return [TranscriptSegment.from_row(r) for r in rows]


# ---------------------------------------------------------------------------
# Assets (read-only)
# ---------------------------------------------------------------------------


def get_asset(client: Client, asset_id: str) -> AssetRef | None:
    """Location and declared type of an asset, or None if it does not exist."""
    result = _execute(
        client.table(ASSETS_TABLE).select("id,url,file_name,file_type").eq("id", asset_id),
        f"look up asset {asset_id}",
    )
    rows = cast(list[dict[str, Any]], result.data)
    if not rows:
        return None
    row = rows[0]
    return AssetRef(
        id=str(row["id"]),
        url=row["url"],
        file_name=row.get("file_name") or "",
        file_type=row.get("file_type") or "",
    )


# ---------------------------------------------------------------------------
# Transcription jobs
# ---------------------------------------------------------------------------


def upsert_pending_job(client: Client, asset_id: str) -> TranscriptionJob:
    """Create the asset's job, or reset an existing one, to PENDING."""
    result = _execute(
        client.table(JOBS_TABLE).upsert(
            {
                "asset_id": asset_id,
                "status": JobStatus.PENDING.value,
                "progress": 0,
                "error": None,
                "completed_at": None,
                "updated_at": _now(),
            },
            on_conflict="asset_id",
        ),
        f"upsert job for asset {asset_id}",
    )
    return TranscriptionJob.from_row(cast(list[dict[str, Any]], result.data)[0])


def update_job(
    client: Client,
    job_id: str,
    *,
    status: JobStatus | None = None,
    progress: int | None = None,
    error: str | None = None,
    completed: bool = False,
) -> None:
    """Patch a job row. Only the given fields change."""
    data: dict[str, Any] = {"updated_at": _now()}
    if status is not None:
        data["status"] = status.value
    if progress is not None:
        data["progress"] = progress
    if error is not None:
        data["error"] = truncate_error(error)
    if completed:
        data["completed_at"] = _now()
    _execute(client.table(JOBS_TABLE).update(data).eq("id", job_id), f"update job {job_id}")


def get_job(client: Client, asset_id: str) -> TranscriptionJob | None:
    """The asset's job record, if one was ever created."""
    result = _execute(
        client.table(JOBS_TABLE).select("*").eq("asset_id", asset_id),
        f"fetch job for asset {asset_id}",
    )
    rows = cast(list[dict[str, Any]], result.data)
    return TranscriptionJob.from_row(rows[0]) if rows else None


def fail_stale_jobs(
    client: Client,
    processing_minutes: int = 30,
    pending_minutes: int = 5,
) -> int:
    """Mark jobs orphaned by a restart as FAILED.

    PROCESSING jobs not updated for *processing_minutes* and PENDING jobs
    created more than *pending_minutes* ago are considered dead.

    Returns:
        Number of jobs marked failed.
    """
    now = datetime.now(UTC)
    processing_cutoff = (now - timedelta(minutes=processing_minutes)).isoformat()
    pending_cutoff = (now - timedelta(minutes=pending_minutes)).isoformat()

    stuck_processing = _execute(
        client.table(JOBS_TABLE)
        .update(
            {
                "status": JobStatus.FAILED.value,
                "error": "Server restarted during processing. The job was interrupted. "
                "Please try again.",
                "progress": 0,
            }
        )
        .eq("status", JobStatus.PROCESSING.value)
        .lt("updated_at", processing_cutoff),
        "fail stale processing jobs",
    )
    stuck_pending = _execute(
        client.table(JOBS_TABLE)
        .update(
            {
                "status": JobStatus.FAILED.value,
                "error": "Job was created but never started. Server may have restarted. "
                "Please try again.",
                "progress": 0,
            }
        )
        .eq("status", JobStatus.PENDING.value)
        .lt("created_at", pending_cutoff),
        "fail stale pending jobs",
    )
    return len(stuck_processing.data or []) + len(stuck_pending.data or [])
