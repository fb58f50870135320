"""Blob-store access: size probe and streaming download to scratch disk."""

from __future__ import annotations

import logging
import mimetypes
from pathlib import Path
from typing import Any
from urllib.parse import parse_qs, unquote, urlparse

import boto3
from botocore.exceptions import BotoCoreError, ClientError

from media_transcriber.config import settings
from media_transcriber.transcription.errors import ResourceExceeded, SourceUnavailable
from media_transcriber.transcription.scratch import ScratchSpace

logger = logging.getLogger(__name__)

# 1 MiB reads keep memory flat regardless of object size
STREAM_CHUNK_BYTES = 1024 * 1024

MIME_TYPES: dict[str, str] = {
    "mp4": "video/mp4",
    "mp3": "audio/mpeg",
    "m4a": "audio/mp4",
    "wav": "audio/wav",
    "webm": "video/webm",
    "mov": "video/quicktime",
    "avi": "video/x-msvideo",
    "mpeg": "video/mpeg",
    "mpg": "video/mpeg",
    "ogg": "audio/ogg",
    "flac": "audio/flac",
}

_EXTENSIONS_BY_MIME = {mime: ext for ext, mime in reversed(MIME_TYPES.items())}


def guess_mime_type(file_name: str) -> str:
    """MIME type from the file extension, ``application/octet-stream`` if unknown."""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    return MIME_TYPES.get(ext, "application/octet-stream")


def media_extension(file_name: str, file_type: str = "", default: str = "mp4") -> str:
    """Extension to give scratch copies so ffmpeg and the service detect the container."""
    ext = file_name.rsplit(".", 1)[-1].lower() if "." in file_name else ""
    if ext in MIME_TYPES:
        return ext
    if file_type in _EXTENSIONS_BY_MIME:
        return _EXTENSIONS_BY_MIME[file_type]
    guessed = mimetypes.guess_extension(file_type) if file_type else None
    return guessed.lstrip(".") if guessed else default


def extract_key_from_url(ref: str) -> str:
    """Turn an S3 URL (virtual-hosted, ``s3://`` or presigned) into an object key.

    A value that is not a URL is assumed to already be a key.
    """
    parsed = urlparse(ref)
    if not parsed.scheme or not parsed.netloc:
        return ref
    key = unquote(parsed.path.lstrip("/"))
    if key:
        return key
    query_key = parse_qs(parsed.query).get("key")
    if query_key and query_key[0]:
        return query_key[0]
    raise SourceUnavailable(f"Could not extract an object key from {ref!r}")


def get_s3_client() -> Any:
    """Create an S3 client from settings (falls back to the default credential chain)."""
    return boto3.client(
        "s3",
        region_name=settings.aws_region,
        aws_access_key_id=settings.aws_access_key_id or None,
        aws_secret_access_key=settings.aws_secret_access_key or None,
    )


class SourceStreamer:
    """Pulls one object from the bucket straight to a scratch file."""

    def __init__(
        self,
        client: Any | None = None,
        bucket: str | None = None,
        max_bytes: int | None = None,
    ) -> None:
        self.client = client if client is not None else get_s3_client()
        self.bucket = bucket or settings.s3_bucket_name
        self.max_bytes = max_bytes if max_bytes is not None else settings.max_streaming_bytes

    def probe_size(self, key: str) -> int:
        """Declared byte length of the object (HEAD request)."""
        try:
            head = self.client.head_object(Bucket=self.bucket, Key=key)
        except (ClientError, BotoCoreError) as exc:
            raise SourceUnavailable(f"Could not stat s3://{self.bucket}/{key}: {exc}") from exc
        return int(head.get("ContentLength") or 0)

    def download(self, ref: str, scratch: ScratchSpace, suffix: str = "mp4") -> tuple[Path, int]:
        """Stream the object behind *ref* into a new scratch file.

        Returns:
            ``(local_path, size_on_disk)``.

        Raises:
            ResourceExceeded: Declared size is over the streaming ceiling. No
                bytes are transferred in that case.
            SourceUnavailable: The object is missing or the body is empty.
        """
        key = extract_key_from_url(ref)
        size = self.probe_size(key)
        if size > self.max_bytes:
            raise ResourceExceeded(size, self.max_bytes)

        dest = scratch.path("input", suffix)
        logger.info("Streaming %.1fMB object %s to %s", size / 1e6, key, dest)
        try:
            response = self.client.get_object(Bucket=self.bucket, Key=key)
            body = response.get("Body")
            if body is None:
                raise SourceUnavailable(f"Empty body for s3://{self.bucket}/{key}")
            with dest.open("wb") as fh:
                for block in body.iter_chunks(chunk_size=STREAM_CHUNK_BYTES):
                    fh.write(block)
        except (ClientError, BotoCoreError) as exc:
            raise SourceUnavailable(f"Download of s3://{self.bucket}/{key} failed: {exc}") from exc

        on_disk = dest.stat().st_size
        if on_disk == 0:
            raise SourceUnavailable(f"Downloaded object s3://{self.bucket}/{key} is empty")
        logger.info("Download complete: %s (%d bytes)", dest, on_disk)
        return dest, on_disk
