"""
SRT sidecar generation for rendered videos.
"""

import logging
from typing import Iterable

from .captions import build_cues

logger = logging.getLogger(__name__)


class SRTGenerator:
    """Generator for SRT subtitle files."""

    def __init__(self, max_words_per_line: int = 0):
        self.max_words_per_line = max_words_per_line

    def generate_srt(self, segments: Iterable, mode: str = "sentence") -> str:
        """
        Generate SRT subtitle content from transcript segments.

        Timing matches the burned-in captions, so the same offset and word
        splitting apply.

        Args:
            segments: Transcript segments on the video's timeline
            mode: "word" or "sentence"

        Returns:
            SRT formatted subtitle string
        """
        cues = build_cues(segments, mode, self.max_words_per_line or None)
        if not cues:
            logger.debug("No cues to write to SRT")
            return ""

        srt_lines = []
        for counter, cue in enumerate(cues, start=1):
            # number, timecode, text, blank line
            srt_lines.append(str(counter))
            srt_lines.append(f"{self._seconds_to_srt_time(cue.start)} --> {self._seconds_to_srt_time(cue.end)}")
            srt_lines.append(cue.text)
            srt_lines.append("")

        logger.debug(f"Generated SRT with {len(cues)} subtitles")
        return "\n".join(srt_lines)

    def _seconds_to_srt_time(self, seconds: float) -> str:
        """
        Convert seconds to SRT time format (HH:MM:SS,mmm).

        Args:
            seconds: Time in seconds

        Returns:
            SRT formatted time string
        """
        total_ms = int(round(max(0.0, seconds) * 1000))
        hours, rem = divmod(total_ms, 3600000)
        minutes, rem = divmod(rem, 60000)
        secs, milliseconds = divmod(rem, 1000)
        return f"{hours:02d}:{minutes:02d}:{secs:02d},{milliseconds:03d}"
