"""Command-line entry point for running the transcription pipeline by hand.

Entry point
-----------
Run as a module::

    python -m media_transcriber.cli process ASSET_ID s3://bucket/key.mp4 talk.mp4 video/mp4
    python -m media_transcriber.cli process ASSET_ID --local ./talk.mp4
    python -m media_transcriber.cli segments ASSET_ID --json

Use ``--help`` for full argument documentation.
"""

from __future__ import annotations

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path

from media_transcriber.transcription.errors import TranscriptionPipelineError
from media_transcriber.transcription.models import PipelineResult
from media_transcriber.transcription.pipeline import TranscriptionPipeline
from media_transcriber.transcription.source import guess_mime_type

logger = logging.getLogger(__name__)


def _build_arg_parser() -> argparse.ArgumentParser:
    """Build the CLI argument parser."""
    parser = argparse.ArgumentParser(
        prog="python -m media_transcriber.cli",
        description=(
            "Media Transcriber\n\n"
            "Downloads an uploaded media file, fits it under the transcription\n"
            "service's upload limit (audio extraction, opening portion, or chunking)\n"
            "and stores timestamped transcript segments for the asset."
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    parser.add_argument("--verbose", "-v", action="store_true", help="Enable debug logging.")
    sub = parser.add_subparsers(dest="command", required=True)

    process = sub.add_parser("process", help="Transcribe one asset and store its segments.")
    process.add_argument("asset_id", metavar="ASSET_ID")
    process.add_argument(
        "remote_ref",
        metavar="REF",
        nargs="?",
        default=None,
        help="S3 URL or object key of the uploaded media (omit with --local).",
    )
    process.add_argument("file_name", metavar="FILE_NAME", nargs="?", default=None)
    process.add_argument("file_type", metavar="FILE_TYPE", nargs="?", default=None)
    process.add_argument(
        "--local",
        metavar="PATH",
        default=None,
        help="Transcribe a file already on disk instead of downloading one.",
    )
    process.add_argument(
        "--reprocess",
        action="store_true",
        default=False,
        help="Replace an existing transcript instead of skipping the asset.",
    )
    process.add_argument(
        "--portion-only",
        action="store_true",
        default=False,
        help="Only transcribe the opening portion (first 10 minutes by default).",
    )

    segments = sub.add_parser("segments", help="Print the stored transcript for an asset.")
    segments.add_argument("asset_id", metavar="ASSET_ID")
    segments.add_argument("--json", action="store_true", default=False, help="Emit JSON rows.")
    return parser


def _format_timestamp(seconds: float) -> str:
    minutes, secs = divmod(seconds, 60)
    hours, minutes = divmod(int(minutes), 60)
    return f"{hours:02d}:{minutes:02d}:{secs:06.3f}"


def _print_result(result: PipelineResult) -> None:
    if result.skipped:
        print(f"Transcript already exists for {result.asset_id} ({result.segment_count} segments)")
        return
    print(
        f"Stored {result.segment_count} segments for {result.asset_id} "
        f"via {result.strategy.value if result.strategy else 'unknown'}"
    )
    if result.partial:
        print(f"Partial transcript: covers [0, {result.covered_until:.0f}s)")
    for attempt in result.attempts:
        print(f"  earlier attempt {attempt.strategy.value}: {attempt.reason}")


def _run_process(args: argparse.Namespace, pipeline: TranscriptionPipeline) -> PipelineResult:
    if args.local:
        path = Path(args.local)
        if not path.is_file():
            raise FileNotFoundError(f"No such file: {path}")
        return pipeline.process_local_file(
            args.asset_id,
            path,
            args.file_name,
            file_type=args.file_type,
            reprocess=args.reprocess,
            portion_only=args.portion_only,
        )
    if not args.remote_ref or not args.file_name:
        raise ValueError("REF and FILE_NAME are required unless --local is given")
    return pipeline.process_media(
        args.asset_id,
        args.remote_ref,
        args.file_name,
        args.file_type or guess_mime_type(args.file_name),
        reprocess=args.reprocess,
        portion_only=args.portion_only,
    )


def main(argv: list[str] | None = None, pipeline: TranscriptionPipeline | None = None) -> int:
    """Run the CLI and return a process exit code."""
    args = _build_arg_parser().parse_args(argv)
    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    pipeline = pipeline or TranscriptionPipeline()

    try:
        if args.command == "process":
            _print_result(_run_process(args, pipeline))
        else:
            segments = pipeline.get_segments(args.asset_id)
            if args.json:
                print(json.dumps([asdict(s) for s in segments], indent=2, default=str))
            else:
                for s in segments:
                    speaker = f"{s.speaker}: " if s.speaker else ""
                    print(f"[{_format_timestamp(s.start_time)}] {speaker}{s.text}")
    except (TranscriptionPipelineError, FileNotFoundError, ValueError) as exc:
        print(f"Error: {exc}", file=sys.stderr)
        return 1
    return 0


if __name__ == "__main__":
    sys.exit(main())
