"""Exception taxonomy for the transcription pipeline."""

from __future__ import annotations

from dataclasses import dataclass

from media_transcriber.pipeline_config import MIB, STRATEGY_DESCRIPTIONS, Strategy

# Suggested when every automatic strategy has been exhausted.
REMEDIATION_COMMAND = (
    "ffmpeg -i input.mp4 -t 600 -vn -acodec libmp3lame -ab 32k -ac 1 -ar 16000 first_10min.mp3"
)
AUDIO_COMPRESSION_COMMAND = "ffmpeg -i input.wav -acodec libmp3lame -ab 64k output.mp3"
COMPRESSION_COMMAND = (
    "ffmpeg -i input.mp4 -vf scale=1280:-1 -c:v libx264 -crf 28 -c:a aac -b:a 128k output.mp4"
)


def _mb(size_bytes: int) -> int:
    return round(size_bytes / MIB)


class TranscriptionPipelineError(Exception):
    """Base class for every failure raised by the pipeline."""


class SizeExceeded(TranscriptionPipelineError):
    """Input is larger than anything the pipeline will attempt. Permanent."""

    def __init__(self, size_bytes: int, limit_bytes: int, message: str | None = None) -> None:
        self.size_bytes = size_bytes
        self.limit_bytes = limit_bytes
        super().__init__(
            message
            or (
                f"File too large ({_mb(size_bytes)}MB). "
                f"Maximum processable size is {_mb(limit_bytes)}MB. "
                "Please compress the video first, e.g.:\n"
                f"{COMPRESSION_COMMAND}"
            )
        )


class ResourceExceeded(SizeExceeded):
    """Declared object size exceeds the streaming ceiling; nothing was downloaded."""

    def __init__(self, size_bytes: int, limit_bytes: int) -> None:
        super().__init__(
            size_bytes,
            limit_bytes,
            f"File too large ({_mb(size_bytes)}MB) to stream to local disk. "
            f"Maximum size is {_mb(limit_bytes)}MB. Please compress the video first, e.g.:\n"
            f"{COMPRESSION_COMMAND}",
        )


class SourceUnavailable(TranscriptionPipelineError):
    """The remote object could not be located or read."""


class ExtractionFailed(TranscriptionPipelineError):
    """The transcoding tool failed, timed out, or produced unusable output."""

    def __init__(self, message: str, *, stderr: str = "", timed_out: bool = False) -> None:
        self.stderr = stderr
        self.timed_out = timed_out
        super().__init__(message)


class Cancelled(TranscriptionPipelineError):
    """The caller asked for the run to stop."""


class TranscriptionError(TranscriptionPipelineError):
    """Base for failures reported by the speech-to-text service."""

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class TranscriptionServiceError(TranscriptionError):
    """Network, auth, quota or upstream outage. Not the input's fault."""


class TranscriptionInputError(TranscriptionError):
    """The service rejected the uploaded file itself."""


class EmptyTranscript(TranscriptionPipelineError):
    """The service returned no usable segments."""


class PersistenceError(TranscriptionPipelineError):
    """Writing or reading transcript rows failed."""


@dataclass(frozen=True)
class StrategyAttempt:
    """One strategy tried during a run and why it did not produce a transcript."""

    strategy: Strategy
    reason: str


class StrategiesExhausted(TranscriptionPipelineError):
    """Every planned strategy failed.

    The message lists the detected input size, each attempted strategy with
    its failure reason, and a command the operator can run manually.
    """

    headline = "All automatic strategies failed."

    def __init__(
        self, size_bytes: int, attempts: list[StrategyAttempt], *, audio: bool = False
    ) -> None:
        self.size_bytes = size_bytes
        self.attempts = list(attempts)
        self.audio = audio
        self.remediation_command = AUDIO_COMPRESSION_COMMAND if audio else REMEDIATION_COMMAND
        super().__init__(self._render())

    def _render(self) -> str:
        kind = "audio" if self.audio else "media"
        lines = [
            f"Unable to process large {kind} ({_mb(self.size_bytes)}MB). {self.headline}",
            "",
            "The app tried:",
        ]
        for i, attempt in enumerate(self.attempts, start=1):
            lines.append(f"{i}. {STRATEGY_DESCRIPTIONS[attempt.strategy]}: {attempt.reason}")
        if self.audio:
            lines += [
                "",
                "RECOMMENDED FIX - Compress the audio to a 64k MP3:",
                self.remediation_command,
                "Target: under 25MB for instant processing",
            ]
            return "\n".join(lines)
        lines += [
            "",
            "RECOMMENDED FIX - Extract first 10 minutes as audio:",
            self.remediation_command,
            "",
            "OR compress the full video:",
            COMPRESSION_COMMAND,
            "Target: under 25MB for instant processing",
        ]
        return "\n".join(lines)


class ChunkingFailed(StrategiesExhausted):
    """Chunking, the last fallback, failed. Terminal."""

    headline = "All automatic strategies failed, including chunking."
