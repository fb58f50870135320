"""Tests for Supabase storage helpers (client mocked, no database)."""

from __future__ import annotations

from unittest.mock import MagicMock

import httpx
import pytest
from postgrest import CountMethod
from postgrest.exceptions import APIError

from media_transcriber.transcription.errors import PersistenceError
from media_transcriber.transcription.models import AssetRef, JobStatus, TranscriptSegment
from media_transcriber.transcription.storage import (
    MAX_ERROR_CHARS,
    REPLACE_SEGMENTS_RPC,
    count_segments,
    fail_stale_jobs,
    fetch_segments,
    get_asset,
    get_job,
    replace_segments,
    truncate_error,
    update_job,
    upsert_pending_job,
)

JOB_ROW = {
    "id": "job-1",
    "asset_id": "asset-1",
    "status": "PENDING",
    "progress": 0,
    "error": None,
    "created_at": "2026-01-01T00:00:00+00:00",
}


class TestSegments:
    def test_count_segments(self) -> None:
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value
        query.execute.return_value.count = 7

        assert count_segments(client, "asset-1") == 7
        client.table.assert_called_once_with("transcript_segments")
        client.table.return_value.select.assert_called_once_with("id", count=CountMethod.exact)

    def test_count_segments_none_is_zero(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.count = (
            None
        )
        assert count_segments(client, "asset-1") == 0

    def test_replace_segments_uses_transactional_rpc(self) -> None:
        client = MagicMock()
        rows = [
            TranscriptSegment("asset-1", "hello", 0.0, 1.0),
            TranscriptSegment("asset-1", "world", 1.0, 2.0, speaker="A"),
        ]
        assert replace_segments(client, "asset-1", rows) == 2

        name, params = client.rpc.call_args.args
        assert name == REPLACE_SEGMENTS_RPC
        assert params["p_asset_id"] == "asset-1"
        assert params["p_segments"] == [
            {"asset_id": "asset-1", "text": "hello", "start_time": 0.0, "end_time": 1.0,
             "speaker": None},
            {"asset_id": "asset-1", "text": "world", "start_time": 1.0, "end_time": 2.0,
             "speaker": "A"},
        ]
        client.rpc.return_value.execute.assert_called_once()

    def test_replace_segments_api_error(self) -> None:
        client = MagicMock()
        client.rpc.return_value.execute.side_effect = APIError(
            {"message": "deadlock detected", "code": "40P01", "hint": None, "details": None}
        )
        with pytest.raises(PersistenceError, match="replace segments"):
            replace_segments(client, "asset-1", [TranscriptSegment("asset-1", "x", 0.0, 1.0)])

    def test_network_error_becomes_persistence_error(self) -> None:
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value
        query.execute.side_effect = httpx.ConnectError("connection refused")
        with pytest.raises(PersistenceError):
            count_segments(client, "asset-1")

    def test_fetch_segments_ordered(self) -> None:
        client = MagicMock()
        query = client.table.return_value.select.return_value.eq.return_value.order.return_value
        query.execute.return_value.data = [
            {"id": 1, "asset_id": "asset-1", "text": "a", "start_time": 0, "end_time": 2.5,
             "speaker": None, "created_at": "2026-01-01T00:00:00+00:00"},
        ]
        segments = fetch_segments(client, "asset-1")
        client.table.return_value.select.return_value.eq.return_value.order.assert_called_once_with(
            "start_time"
        )
        assert segments == [
            TranscriptSegment(
                "asset-1", "a", 0.0, 2.5, None, "2026-01-01T00:00:00+00:00", "1"
            )
        ]


class TestAssets:
    def test_missing_asset(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []
        assert get_asset(client, "nope") is None

    def test_asset_ref(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [
            {"id": "asset-1", "url": "s3://b/k.mp4", "file_name": None, "file_type": "video/mp4"}
        ]
        assert get_asset(client, "asset-1") == AssetRef(
            id="asset-1", url="s3://b/k.mp4", file_name="", file_type="video/mp4"
        )
        client.table.assert_called_once_with("assets")


class TestJobs:
    def test_upsert_pending_job(self) -> None:
        client = MagicMock()
        client.table.return_value.upsert.return_value.execute.return_value.data = [JOB_ROW]

        job = upsert_pending_job(client, "asset-1")

        assert job.id == "job-1"
        assert job.status is JobStatus.PENDING
        payload = client.table.return_value.upsert.call_args.args[0]
        assert payload["status"] == "PENDING"
        assert payload["progress"] == 0
        assert client.table.return_value.upsert.call_args.kwargs["on_conflict"] == "asset_id"

    def test_update_job_only_sends_given_fields(self) -> None:
        client = MagicMock()
        update_job(client, "job-1", progress=50)
        data = client.table.return_value.update.call_args.args[0]
        assert data["progress"] == 50
        assert "status" not in data
        assert "completed_at" not in data
        client.table.return_value.update.return_value.eq.assert_called_once_with("id", "job-1")

    def test_update_job_completed(self) -> None:
        client = MagicMock()
        update_job(client, "job-1", status=JobStatus.COMPLETED, progress=100, completed=True)
        data = client.table.return_value.update.call_args.args[0]
        assert data["status"] == "COMPLETED"
        assert "completed_at" in data

    def test_update_job_truncates_error(self) -> None:
        client = MagicMock()
        update_job(client, "job-1", status=JobStatus.FAILED, error="x" * 5000)
        data = client.table.return_value.update.call_args.args[0]
        assert len(data["error"]) == MAX_ERROR_CHARS + 3

    def test_get_job(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = [
            {**JOB_ROW, "status": "PROCESSING", "progress": 50}
        ]
        job = get_job(client, "asset-1")
        assert job is not None
        assert job.status is JobStatus.PROCESSING
        assert job.progress == 50

    def test_get_job_missing(self) -> None:
        client = MagicMock()
        client.table.return_value.select.return_value.eq.return_value.execute.return_value.data = []
        assert get_job(client, "asset-1") is None

    def test_fail_stale_jobs(self) -> None:
        client = MagicMock()
        stale = client.table.return_value.update.return_value.eq.return_value.lt.return_value
        stale.execute.return_value.data = [{"id": "job-1"}]

        assert fail_stale_jobs(client, processing_minutes=30, pending_minutes=5) == 2

        updates = [c.args[0] for c in client.table.return_value.update.call_args_list]
        assert all(u["status"] == "FAILED" for u in updates)
        statuses = [c.args for c in client.table.return_value.update.return_value.eq.call_args_list]
        assert statuses == [("status", "PROCESSING"), ("status", "PENDING")]
        columns = [
            c.args[0]
            for c in client.table.return_value.update.return_value.eq.return_value.lt.call_args_list
        ]
        assert columns == ["updated_at", "created_at"]


def test_truncate_error_short_message_unchanged() -> None:
    assert truncate_error("boom") == "boom"
