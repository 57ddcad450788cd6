"""
Tests for absolute/chunk-relative timeline conversion.
"""

import random

import pytest
from pydantic import ValidationError

from subtitles import (
    TranscriptSegment,
    merge_transcripts,
    redistribute_words,
    shift_segments,
    to_absolute,
    to_chunk_relative,
)


def seg(start, end, text="x", id=0):
    return TranscriptSegment(id=id, start=start, end=end, text=text)


class TestTimeline:
    def test_relative_conversion_subtracts_minimum_start(self):
        relative, offset = to_chunk_relative([seg(22.5, 24.0), seg(20.75, 22.0)])
        assert offset == 20.75
        assert [(s.start, s.end) for s in relative] == [(1.75, 3.25), (0.0, 1.25)]

    def test_round_trip_is_exact(self):
        rng = random.Random(7)
        for _ in range(200):
            base = rng.uniform(0, 3600)
            segments = []
            for i in range(rng.randint(1, 12)):
                start = base + rng.uniform(0, 30)
                segments.append(seg(start, start + rng.uniform(0, 5), id=i))

            relative, offset = to_chunk_relative(segments)
            restored = to_absolute(relative, offset)

            assert [(s.start, s.end) for s in restored] == [(s.start, s.end) for s in segments]

    def test_empty_transcript(self):
        assert to_chunk_relative([]) == ([], 0.0)

    def test_segments_are_quantized_to_milliseconds(self):
        segment = seg(1.23456, 2.00049)
        assert (segment.start, segment.end) == (1.235, 2.0)

    def test_end_before_start_is_rejected(self):
        with pytest.raises(ValidationError):
            seg(2.0, 1.0)

    def test_shift_preserves_text_and_ids(self):
        shifted = shift_segments([seg(0.5, 1.0, "hello", id=3)], 40.0)
        assert shifted[0].model_dump() == {"id": 3, "start": 40.5, "end": 41.0, "text": "hello"}


class TestMergeAndRedistribute:
    def test_merge_sorts_by_start_and_renumbers(self):
        merged = merge_transcripts([
            [seg(20.0, 21.0, "c", id=0)],
            [seg(0.0, 1.0, "a", id=0), seg(5.0, 6.0, "b", id=1)],
        ])
        assert [(s.id, s.text) for s in merged] == [(0, "a"), (1, "b"), (2, "c")]

    def test_redistribute_spreads_words_over_span(self):
        words = redistribute_words("one two three four", 20.0, 22.0)
        assert [(w.start, w.end, w.text) for w in words] == [
            (20.0, 20.5, "one"), (20.5, 21.0, "two"), (21.0, 21.5, "three"), (21.5, 22.0, "four"),
        ]

    def test_redistribute_empty_text(self):
        assert redistribute_words("   ", 0.0, 1.0) == []
