"""Speech-to-text client: one file in, timestamped segments out."""

from __future__ import annotations

import logging
from pathlib import Path
from typing import Any

import openai
from openai import OpenAI

from media_transcriber.config import settings
from media_transcriber.transcription.errors import (
    TranscriptionInputError,
    TranscriptionServiceError,
)
from media_transcriber.transcription.models import Segment
from media_transcriber.transcription.source import guess_mime_type

logger = logging.getLogger(__name__)

# Status codes meaning "this file was rejected" rather than "the service is unhappy"
INPUT_ERROR_STATUSES = frozenset({400, 413, 415, 422})

# Floor applied when the service reports a zero-length segment
MIN_SEGMENT_SECONDS = 0.01


def get_openai_client(timeout: float | None = None) -> OpenAI:
    """OpenAI client with an explicit deadline and retries disabled."""
    return OpenAI(
        api_key=settings.openai_api_key or None,
        timeout=timeout if timeout is not None else settings.transcription_timeout_seconds,
        max_retries=0,
    )


def _parse_segments(response: Any) -> list[Segment]:
    """Normalise verbose_json segments; blank text is dropped."""
    segments: list[Segment] = []
    for raw in getattr(response, "segments", None) or []:
        text = (getattr(raw, "text", "") or "").strip()
        if not text:
            continue
        start = float(getattr(raw, "start", 0.0) or 0.0)
        end = float(getattr(raw, "end", start) or start)
        if end <= start:
            end = start + MIN_SEGMENT_SECONDS
        segments.append(
            Segment(text=text, start=start, end=end, speaker=getattr(raw, "speaker", None) or None)
        )
    return segments


class TranscriptionClient:
    """Thin wrapper over the audio transcription endpoint.

    No retries are attempted here; the caller decides whether a different
    upstream strategy is warranted from the exception type.
    """

    def __init__(
        self,
        client: OpenAI | None = None,
        model: str | None = None,
        language: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.client = client if client is not None else get_openai_client()
        self.model = model or settings.transcription_model
        self.language = language if language is not None else settings.transcription_language
        self.max_bytes = max_bytes if max_bytes is not None else settings.service_max_file_bytes

    def transcribe(
        self,
        path: Path,
        *,
        upload_name: str | None = None,
        language: str | None = None,
    ) -> list[Segment]:
        """Transcribe one local file under the service size limit.

        Args:
            path: File to upload.
            upload_name: Filename reported to the service (drives format detection).
            language: Optional ISO-639-1 hint; defaults to the configured language.

        Returns:
            Segments in the order the service reported them.

        Raises:
            TranscriptionInputError: The file is over the limit or was rejected.
            TranscriptionServiceError: Network, auth, quota, timeout or 5xx.
        """
        size = path.stat().st_size
        if size > self.max_bytes:
            raise TranscriptionInputError(
                f"{path.name} is {size / 1e6:.1f}MB, over the "
                f"{self.max_bytes // (1024 * 1024)}MB service limit",
                status_code=413,
            )

        name = upload_name or path.name
        kwargs: dict[str, Any] = {
            "model": self.model,
            "response_format": "verbose_json",
            "timestamp_granularities": ["segment"],
        }
        lang = language if language is not None else self.language
        if lang:
            kwargs["language"] = lang

        mime = guess_mime_type(name)
        logger.info("Sending %s (%dKB, %s) for transcription", name, size // 1024, mime)
        try:
            with path.open("rb") as fh:
                response = self.client.audio.transcriptions.create(
                    file=(name, fh, mime), **kwargs
                )
        except openai.APIStatusError as exc:
            if exc.status_code in INPUT_ERROR_STATUSES:
                raise TranscriptionInputError(
                    f"Transcription rejected {name}: {exc.message}", status_code=exc.status_code
                ) from exc
            raise TranscriptionServiceError(
                f"Transcription service error ({exc.status_code}): {exc.message}",
                status_code=exc.status_code,
            ) from exc
        except openai.APIConnectionError as exc:
            # also covers APITimeoutError
            raise TranscriptionServiceError(f"Transcription service unreachable: {exc}") from exc

        segments = _parse_segments(response)
        logger.info("Transcription of %s returned %d segments", name, len(segments))
        return segments
