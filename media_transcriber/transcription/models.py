"""Data models for the transcription pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from enum import Enum
from pathlib import Path
from typing import Any

from media_transcriber.pipeline_config import Strategy
from media_transcriber.transcription.errors import StrategyAttempt


@dataclass(frozen=True)
class Segment:
    """One timestamped unit as returned by the speech-to-text service (seconds)."""

    text: str
    start: float
    end: float
    speaker: str | None = None

    def shifted(self, offset: float) -> Segment:
        return replace(self, start=self.start + offset, end=self.end + offset)


@dataclass
class TranscriptSegment:
    """A persisted transcript row for an asset."""

    asset_id: str
    text: str
    start_time: float
    end_time: float
    speaker: str | None = None
    created_at: str | None = None
    id: str | None = None

    @classmethod
    def from_segment(cls, asset_id: str, segment: Segment) -> TranscriptSegment:
        return cls(
            asset_id=asset_id,
            text=segment.text,
            start_time=segment.start,
            end_time=segment.end,
            speaker=segment.speaker,
        )

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TranscriptSegment:
        return cls(
            asset_id=str(row["asset_id"]),
            text=row["text"],
            start_time=float(row["start_time"]),
            end_time=float(row["end_time"]),
            speaker=row.get("speaker"),
            created_at=row.get("created_at"),
            id=str(row["id"]) if row.get("id") is not None else None,
        )

    def to_row(self) -> dict[str, Any]:
        """Insert payload (ids and timestamps are assigned by the database)."""
        return {
            "asset_id": self.asset_id,
            "text": self.text,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "speaker": self.speaker,
        }


@dataclass(frozen=True)
class Chunk:
    """A bounded-duration slice of the source on local disk. Never persisted."""

    path: Path
    index: int
    duration: float


class JobStatus(str, Enum):
    """Lifecycle states of a transcription job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


@dataclass
class TranscriptionJob:
    """Status record for one asset's transcription request."""

    id: str
    asset_id: str
    status: JobStatus
    error: str | None = None
    progress: int | None = None
    created_at: str | None = None
    updated_at: str | None = None
    completed_at: str | None = None

    @classmethod
    def from_row(cls, row: dict[str, Any]) -> TranscriptionJob:
        return cls(
            id=str(row["id"]),
            asset_id=str(row["asset_id"]),
            status=JobStatus(row["status"]),
            error=row.get("error"),
            progress=row.get("progress"),
            created_at=row.get("created_at"),
            updated_at=row.get("updated_at"),
            completed_at=row.get("completed_at"),
        )


@dataclass(frozen=True)
class AssetRef:
    """The few fields of an externally owned asset that the pipeline reads."""

    id: str
    url: str
    file_name: str
    file_type: str


@dataclass
class PipelineResult:
    """Outcome of one ``process_media`` invocation.

    ``covered_until`` is ``None`` when the transcript spans the whole input and
    holds the end of the covered range (seconds) for degraded runs.
    """

    asset_id: str
    strategy: Strategy | None = None
    segment_count: int = 0
    covered_until: float | None = None
    skipped: bool = False
    attempts: list[StrategyAttempt] = field(default_factory=list)

    @property
    def partial(self) -> bool:
        return self.covered_until is not None
