"""Bounded ffmpeg/ffprobe subprocesses.

Commands are built with ffmpeg-python and executed under a wall-clock deadline.
A process that overruns its deadline, or whose run is cancelled, is killed and
reported as a failure.
"""

from __future__ import annotations

import json
import logging
import subprocess
import threading
import time
from pathlib import Path
from typing import Any

from media_transcriber.config import settings
from media_transcriber.transcription.errors import Cancelled, ExtractionFailed

logger = logging.getLogger(__name__)

# How often a waiting run checks its cancellation flag
POLL_SECONDS = 1.0
STDERR_TAIL_CHARS = 2000


def _tail(data: bytes | None) -> str:
    if not data:
        return ""
    return data.decode("utf-8", errors="replace")[-STDERR_TAIL_CHARS:]


def _kill(process: subprocess.Popen[bytes]) -> None:
    process.kill()
    try:
        process.communicate(timeout=5)
    except subprocess.TimeoutExpired:
        logger.warning("Process %s did not exit after kill", process.pid)


def run_bounded(
    args: list[str],
    *,
    timeout: float,
    label: str,
    cancel_event: threading.Event | None = None,
) -> bytes:
    """Run *args* to completion within *timeout* seconds and return stdout.

    Raises:
        ExtractionFailed: Non-zero exit, failure to start, or deadline hit
            (``timed_out=True``).
        Cancelled: *cancel_event* was set while waiting.
    """
    logger.debug("[%s] command: %s", label, " ".join(args))
    try:
        process = subprocess.Popen(
            args,
            stdin=subprocess.DEVNULL,
            stdout=subprocess.PIPE,
            stderr=subprocess.PIPE,
        )
    except OSError as exc:
        raise ExtractionFailed(f"{label}: could not start {args[0]}: {exc}") from exc

    deadline = time.monotonic() + timeout
    while True:
        if cancel_event is not None and cancel_event.is_set():
            _kill(process)
            raise Cancelled(f"{label}: cancelled")
        remaining = deadline - time.monotonic()
        if remaining <= 0:
            _kill(process)
            raise ExtractionFailed(
                f"{label} timed out after {timeout / 60:g} minutes", timed_out=True
            )
        try:
            stdout, stderr = process.communicate(timeout=min(remaining, POLL_SECONDS))
            break
        except subprocess.TimeoutExpired:
            continue

    if process.returncode != 0:
        tail = _tail(stderr)
        logger.error("[%s] exited with code %s: %s", label, process.returncode, tail)
        raise ExtractionFailed(
            f"{label} failed (exit code {process.returncode}): {tail.strip()[-300:]}",
            stderr=tail,
        )
    return stdout or b""


def run_ffmpeg(
    stream: Any,
    *,
    timeout: float,
    label: str,
    cancel_event: threading.Event | None = None,
) -> None:
    """Compile an ffmpeg-python output stream and run it under a deadline."""
    args = stream.compile(cmd=settings.ffmpeg_binary)
    logger.info("[%s] starting ffmpeg (timeout %gs)", label, timeout)
    run_bounded(args, timeout=timeout, label=label, cancel_event=cancel_event)
    logger.info("[%s] ffmpeg finished", label)


def probe_duration(
    path: Path,
    *,
    timeout: float,
    cancel_event: threading.Event | None = None,
) -> float:
    """Container duration in seconds as reported by ffprobe."""
    args = [
        settings.ffprobe_binary,
        "-v",
        "error",
        "-show_format",
        "-of",
        "json",
        str(path),
    ]
    out = run_bounded(args, timeout=timeout, label="probe", cancel_event=cancel_event)
    try:
        info = json.loads(out)
        return float(info.get("format", {}).get("duration") or 0.0)
    except (ValueError, TypeError) as exc:
        raise ExtractionFailed(f"probe returned unreadable metadata for {path.name}") from exc
