"""Merge per-chunk segment lists into one transcript timeline."""

from __future__ import annotations

from collections.abc import Iterable

from media_transcriber.transcription.models import Segment


def stitch(
    chunk_segments: Iterable[tuple[int, list[Segment]]],
    chunk_duration: float,
) -> list[Segment]:
    """Shift each chunk's segments by ``chunk_index * chunk_duration``.

    Chunks are ordered by their index, not by the order they arrive in, so a
    caller that transcribes chunks concurrently can pass results as they
    complete. Segments inside a chunk keep their order; nothing is merged or
    dropped, so the output length is the sum of the input lengths.

    Args:
        chunk_segments: ``(chunk_index, segments)`` pairs.
        chunk_duration: Nominal chunk length in seconds.

    Returns:
        A flat list of segments on the source's timeline.

    Raises:
        ValueError: A chunk index appears twice or is negative.
    """
    ordered = sorted(chunk_segments, key=lambda pair: pair[0])
    seen: set[int] = set()
    stitched: list[Segment] = []
    for index, segments in ordered:
        if index < 0 or index in seen:
            msg = f"Invalid or duplicate chunk index: {index}"
            raise ValueError(msg)
        seen.add(index)
        offset = index * chunk_duration
        stitched.extend(seg.shifted(offset) for seg in segments)
    return stitched
