"""Tests for merging per-chunk segments onto one timeline."""

from __future__ import annotations

import pytest

from media_transcriber.transcription.models import Segment
from media_transcriber.transcription.stitcher import stitch


def _seg(text: str, start: float, end: float) -> Segment:
    return Segment(text=text, start=start, end=end)


class TestStitch:
    def test_offsets_by_chunk_index(self) -> None:
        result = stitch(
            [
                (0, [_seg("a", 0.0, 5.0)]),
                (1, [_seg("b", 2.0, 4.0)]),
                (2, [_seg("c", 1.0, 3.0)]),
            ],
            600,
        )
        assert [(s.text, s.start, s.end) for s in result] == [
            ("a", 0.0, 5.0),
            ("b", 602.0, 604.0),
            ("c", 1201.0, 1203.0),
        ]

    def test_orders_by_index_not_arrival(self) -> None:
        result = stitch(
            [(1, [_seg("second", 0.0, 1.0)]), (0, [_seg("first", 0.0, 1.0)])],
            300,
        )
        assert [s.text for s in result] == ["first", "second"]
        assert result[1].start == 300.0

    def test_preserves_count_and_inner_order(self) -> None:
        chunk0 = [_seg("x", 0.0, 1.0), _seg("y", 1.0, 2.0)]
        chunk1 = [_seg("z", 0.5, 1.5)]
        result = stitch([(0, chunk0), (1, chunk1)], 10)
        assert len(result) == len(chunk0) + len(chunk1)
        assert [s.text for s in result] == ["x", "y", "z"]

    def test_empty_chunk_is_skipped(self) -> None:
        result = stitch([(0, []), (1, [_seg("late", 1.0, 2.0)])], 600)
        assert len(result) == 1
        assert result[0].start == 601.0

    def test_chunk_duration_drives_offset(self) -> None:
        """300-second chunks shift by 300s, not a fixed 600s."""
        result = stitch([(3, [_seg("d", 0.0, 1.0)])], 300)
        assert result[0].start == 900.0

    def test_speaker_preserved(self) -> None:
        seg = Segment(text="hi", start=0.0, end=1.0, speaker="A")
        result = stitch([(1, [seg])], 60)
        assert result[0].speaker == "A"

    def test_duplicate_index_raises(self) -> None:
        with pytest.raises(ValueError):
            stitch([(0, []), (0, [])], 600)

    def test_negative_index_raises(self) -> None:
        with pytest.raises(ValueError):
            stitch([(-1, [])], 600)
