"""
Caption styles, subtitle synthesis and transcript timeline helpers.
"""

from .captions import Cue, apply_offset, build_cues, generate_ass, hex_to_ass
from .srt_generator import SRTGenerator
from .styles import (
    CAPTION_STYLES,
    DEFAULT_STYLE_ID,
    CaptionStyle,
    UnknownStyleError,
    get_style,
    list_styles,
    parse_style_choice,
    resolve_style,
)
from .timeline import (
    TranscriptSegment,
    merge_transcripts,
    quantize,
    redistribute_words,
    shift_segments,
    to_absolute,
    to_chunk_relative,
)

__all__ = [
    "CAPTION_STYLES",
    "DEFAULT_STYLE_ID",
    "CaptionStyle",
    "Cue",
    "SRTGenerator",
    "TranscriptSegment",
    "UnknownStyleError",
    "apply_offset",
    "build_cues",
    "generate_ass",
    "get_style",
    "hex_to_ass",
    "list_styles",
    "merge_transcripts",
    "parse_style_choice",
    "quantize",
    "redistribute_words",
    "resolve_style",
    "shift_segments",
    "to_absolute",
    "to_chunk_relative",
]
