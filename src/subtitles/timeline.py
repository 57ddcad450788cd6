"""
Transcript segments and conversions between the absolute timeline of the
source video and the chunk-relative timeline of a single chunk.

All times are quantized to whole milliseconds, which keeps a
relative -> absolute round trip exact.
"""

from typing import Iterable, List, Sequence, Tuple

from pydantic import BaseModel, ConfigDict, field_validator, model_validator


def quantize(seconds: float) -> float:
    """Round a time in seconds to the nearest millisecond."""
    return round(float(seconds) * 1000) / 1000


class TranscriptSegment(BaseModel):
    """One timed transcript entry, on whichever timeline the caller uses."""

    model_config = ConfigDict(frozen=True)

    id: int = 0
    start: float
    end: float
    text: str

    @field_validator("start", "end")
    @classmethod
    def _quantize(cls, v: float) -> float:
        return quantize(v)

    @model_validator(mode="after")
    def _check_order(self):
        if self.end < self.start:
            raise ValueError(f"Segment end {self.end} precedes start {self.start}")
        return self


def shift_segments(segments: Iterable[TranscriptSegment], offset: float) -> List[TranscriptSegment]:
    """Move every segment by offset seconds."""
    return [
        segment.model_copy(update={
            "start": quantize(segment.start + offset),
            "end": quantize(segment.end + offset),
        })
        for segment in segments
    ]


def to_chunk_relative(segments: Sequence[TranscriptSegment]) -> Tuple[List[TranscriptSegment], float]:
    """
    Re-base absolute-timeline segments so the earliest one starts at 0.

    Returns:
        The shifted segments and the offset that was subtracted
    """
    if not segments:
        return [], 0.0
    offset = min(segment.start for segment in segments)
    return shift_segments(segments, -offset), offset


def to_absolute(segments: Sequence[TranscriptSegment], offset: float) -> List[TranscriptSegment]:
    return shift_segments(segments, offset)


def merge_transcripts(transcripts: Iterable[Sequence[TranscriptSegment]]) -> List[TranscriptSegment]:
    """Flatten several transcripts, order by start time and renumber ids."""
    merged = sorted((s for transcript in transcripts for s in transcript), key=lambda s: (s.start, s.end))
    return [segment.model_copy(update={"id": i}) for i, segment in enumerate(merged)]


def redistribute_words(text: str, start: float, end: float) -> List[TranscriptSegment]:
    """
    Spread the words of a corrected text evenly across [start, end].

    Used when a user replaces a transcript by hand: the original timing span
    is kept, the words are new.
    """
    words = text.split()
    if not words:
        return []
    step = (end - start) / len(words)
    segments = []
    for i, word in enumerate(words):
        word_start = start + i * step
        word_end = end if i == len(words) - 1 else word_start + step
        segments.append(TranscriptSegment(id=i, start=word_start, end=word_end, text=word))
    return segments
