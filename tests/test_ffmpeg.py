"""Tests for bounded subprocess execution, audio extraction and chunking.

ffmpeg itself is never invoked: the runner is exercised against a mocked
Popen, and the extractor/chunker have run_ffmpeg patched with a fake that
writes the files ffmpeg would have produced.
"""

from __future__ import annotations

import itertools
import subprocess
import threading
from pathlib import Path
from unittest.mock import MagicMock, patch

import pytest

from media_transcriber.pipeline_config import PipelineLimits
from media_transcriber.transcription.chunker import Chunker, build_segment_stream
from media_transcriber.transcription.errors import Cancelled, ExtractionFailed
from media_transcriber.transcription.extractor import AudioExtractor, build_extraction_stream
from media_transcriber.transcription.ffmpeg_runner import probe_duration, run_bounded
from media_transcriber.transcription.scratch import ScratchSpace

RUNNER = "media_transcriber.transcription.ffmpeg_runner"


def _process(returncode: int = 0, stdout: bytes = b"", stderr: bytes = b"") -> MagicMock:
    process = MagicMock()
    process.returncode = returncode
    process.communicate.return_value = (stdout, stderr)
    return process


# ---------------------------------------------------------------------------
# run_bounded
# ---------------------------------------------------------------------------


class TestRunBounded:
    def test_returns_stdout(self) -> None:
        with patch(f"{RUNNER}.subprocess.Popen", return_value=_process(stdout=b"ok")):
            assert run_bounded(["ffmpeg"], timeout=10, label="t") == b"ok"

    def test_nonzero_exit_raises_with_stderr(self) -> None:
        process = _process(returncode=1, stderr=b"moov atom not found")
        with (
            patch(f"{RUNNER}.subprocess.Popen", return_value=process),
            pytest.raises(ExtractionFailed) as exc_info,
        ):
            run_bounded(["ffmpeg"], timeout=10, label="extract")
        assert "moov atom not found" in exc_info.value.stderr
        assert not exc_info.value.timed_out

    def test_missing_binary_raises(self) -> None:
        with (
            patch(f"{RUNNER}.subprocess.Popen", side_effect=FileNotFoundError("ffmpeg")),
            pytest.raises(ExtractionFailed),
        ):
            run_bounded(["ffmpeg"], timeout=10, label="extract")

    def test_keeps_waiting_until_process_exits(self) -> None:
        process = _process()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired("ffmpeg", 1),
            subprocess.TimeoutExpired("ffmpeg", 1),
            (b"done", b""),
        ]
        with patch(f"{RUNNER}.subprocess.Popen", return_value=process):
            assert run_bounded(["ffmpeg"], timeout=60, label="t") == b"done"
        process.kill.assert_not_called()

    def test_deadline_kills_process(self) -> None:
        process = _process()
        process.communicate.side_effect = [
            subprocess.TimeoutExpired("ffmpeg", 1),
            (b"", b""),
        ]
        with (
            patch(f"{RUNNER}.subprocess.Popen", return_value=process),
            patch(
                f"{RUNNER}.time.monotonic",
                side_effect=itertools.chain([0.0, 0.0], itertools.repeat(100.0)),
            ),
            pytest.raises(ExtractionFailed) as exc_info,
        ):
            run_bounded(["ffmpeg"], timeout=60, label="extract")
        assert exc_info.value.timed_out
        process.kill.assert_called_once()

    def test_cancel_kills_process(self) -> None:
        process = _process()
        event = threading.Event()
        event.set()
        with (
            patch(f"{RUNNER}.subprocess.Popen", return_value=process),
            pytest.raises(Cancelled),
        ):
            run_bounded(["ffmpeg"], timeout=60, label="chunk", cancel_event=event)
        process.kill.assert_called_once()


class TestProbeDuration:
    def test_parses_format_duration(self, tmp_path: Path) -> None:
        with patch(f"{RUNNER}.run_bounded", return_value=b'{"format": {"duration": "1234.5"}}'):
            assert probe_duration(tmp_path / "a.mp4", timeout=5) == 1234.5

    def test_unreadable_output_raises(self, tmp_path: Path) -> None:
        with (
            patch(f"{RUNNER}.run_bounded", return_value=b"not json"),
            pytest.raises(ExtractionFailed),
        ):
            probe_duration(tmp_path / "a.mp4", timeout=5)


# ---------------------------------------------------------------------------
# Command construction
# ---------------------------------------------------------------------------


def _has_pair(args: list[str], flag: str, value: str) -> bool:
    return any(a == flag and b == value for a, b in zip(args, args[1:]))


class TestCommands:
    def test_extraction_command(self) -> None:
        args = build_extraction_stream(
            Path("in.mp4"), Path("out.mp3"), PipelineLimits()
        ).compile()
        assert "-vn" in args
        assert _has_pair(args, "-acodec", "libmp3lame")
        assert _has_pair(args, "-b:a", "32k")
        assert _has_pair(args, "-ac", "1")
        assert _has_pair(args, "-ar", "16000")
        assert "-t" not in args
        assert "-y" in args

    def test_portion_command_limits_input_duration(self) -> None:
        args = build_extraction_stream(
            Path("in.mp4"), Path("out.mp3"), PipelineLimits(), max_duration=600
        ).compile()
        assert _has_pair(args, "-t", "600")
        assert args.index("-t") < args.index("-i")

    def test_segment_command(self) -> None:
        args = build_segment_stream(Path("in.mp4"), "chunk-%03d.mp4", 300).compile()
        assert _has_pair(args, "-f", "segment")
        assert _has_pair(args, "-segment_time", "300")
        assert _has_pair(args, "-c", "copy")
        assert _has_pair(args, "-reset_timestamps", "1")
        assert _has_pair(args, "-avoid_negative_ts", "make_zero")
        assert "chunk-%03d.mp4" in args


# ---------------------------------------------------------------------------
# AudioExtractor
# ---------------------------------------------------------------------------


@pytest.fixture()
def source(tmp_path: Path) -> Path:
    path = tmp_path / "source" / "talk.mp4"
    path.parent.mkdir()
    path.write_bytes(b"v" * 10_000)
    return path


class TestAudioExtractor:
    def test_extract_writes_scratch_audio(self, tmp_path: Path, source: Path) -> None:
        root = tmp_path / "scratch"
        with ScratchSpace(root) as scratch:

            def fake_ffmpeg(stream: object, **kwargs: object) -> None:
                (root / f"{scratch.run_id}-audio.mp3").write_bytes(b"a" * 1000)

            with patch(
                "media_transcriber.transcription.extractor.run_ffmpeg", side_effect=fake_ffmpeg
            ):
                audio = AudioExtractor().extract(source, scratch)
            assert audio.exists()
            assert audio.suffix == ".mp3"
        assert not audio.exists()
        assert source.exists()

    def test_failure_removes_partial_output(self, tmp_path: Path, source: Path) -> None:
        root = tmp_path / "scratch"
        with ScratchSpace(root) as scratch:

            def fake_ffmpeg(stream: object, **kwargs: object) -> None:
                (root / f"{scratch.run_id}-audio.mp3").write_bytes(b"partial")
                raise ExtractionFailed("extract failed (exit code 1)")

            with (
                patch(
                    "media_transcriber.transcription.extractor.run_ffmpeg",
                    side_effect=fake_ffmpeg,
                ),
                pytest.raises(ExtractionFailed),
            ):
                AudioExtractor().extract(source, scratch)
            assert scratch.owned_files() == []

    def test_empty_output_raises(self, tmp_path: Path, source: Path) -> None:
        with (
            ScratchSpace(tmp_path / "scratch") as scratch,
            patch("media_transcriber.transcription.extractor.run_ffmpeg"),
            pytest.raises(ExtractionFailed),
        ):
            AudioExtractor().extract(source, scratch)

    def test_uses_extraction_timeout(self, tmp_path: Path, source: Path) -> None:
        root = tmp_path / "scratch"
        limits = PipelineLimits(extraction_timeout=42.0)
        with ScratchSpace(root) as scratch:

            def fake_ffmpeg(stream: object, **kwargs: object) -> None:
                (root / f"{scratch.run_id}-portion.mp3").write_bytes(b"a")

            with patch(
                "media_transcriber.transcription.extractor.run_ffmpeg", side_effect=fake_ffmpeg
            ) as run:
                AudioExtractor(limits).extract(source, scratch, max_duration=600, role="portion")
        assert run.call_args.kwargs["timeout"] == 42.0
        assert run.call_args.kwargs["label"] == "extract-portion"


# ---------------------------------------------------------------------------
# Chunker
# ---------------------------------------------------------------------------

CHUNKER = "media_transcriber.transcription.chunker"


class TestChunker:
    def _split(
        self, source: Path, root: Path, duration: float, written: list[int], chunk: int = 600
    ) -> tuple[list, ScratchSpace, MagicMock]:
        scratch = ScratchSpace(root)
        scratch.__enter__()

        def fake_ffmpeg(stream: object, **kwargs: object) -> None:
            for i in written:
                Path(scratch.pattern("chunk", "mp4") % i).write_bytes(b"c")

        with (
            patch(f"{CHUNKER}.probe_duration", return_value=duration),
            patch(f"{CHUNKER}.run_ffmpeg", side_effect=fake_ffmpeg) as run,
        ):
            chunks = Chunker().split(source, chunk, scratch)
        return chunks, scratch, run

    def test_splits_into_ordered_chunks(self, tmp_path: Path, source: Path) -> None:
        chunks, scratch, _ = self._split(source, tmp_path / "s", 1500.0, [0, 1, 2])
        assert [c.index for c in chunks] == [0, 1, 2]
        assert [c.duration for c in chunks] == [600, 600, 300]
        assert all(c.path.exists() for c in chunks)
        scratch.cleanup()
        assert not any(c.path.exists() for c in chunks)

    def test_short_media_is_single_chunk(self, tmp_path: Path, source: Path) -> None:
        chunks, _, run = self._split(source, tmp_path / "s", 400.0, [])
        assert len(chunks) == 1
        assert chunks[0].path == source
        assert chunks[0].index == 0
        run.assert_not_called()

    def test_missing_tail_chunk_is_tolerated(self, tmp_path: Path, source: Path) -> None:
        chunks, _, _ = self._split(source, tmp_path / "s", 1201.0, [0, 1])
        assert [c.index for c in chunks] == [0, 1]

    def test_no_output_raises(self, tmp_path: Path, source: Path) -> None:
        with pytest.raises(ExtractionFailed):
            self._split(source, tmp_path / "s", 1500.0, [])

    def test_uses_chunking_timeout(self, tmp_path: Path, source: Path) -> None:
        _, _, run = self._split(source, tmp_path / "s", 700.0, [0, 1], chunk=600)
        assert run.call_args.kwargs["timeout"] == PipelineLimits().chunking_timeout
