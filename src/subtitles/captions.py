"""
Caption synthesis: turns timed transcript segments plus a caption style into
an ASS subtitle document ready to be burned in by ffmpeg.
"""

import logging
import re
from dataclasses import dataclass
from typing import Iterable, List, Optional

from .styles import CaptionStyle

logger = logging.getLogger(__name__)

# Upstream speech timestamps run late; captions are pulled earlier by this much
TIMESTAMP_OFFSET_SECONDS = -0.2
MIN_CUE_DURATION = 0.1

REFERENCE_HEIGHT = 1080
DEFAULT_MARGIN_V = 80

CAPTION_MODES = ("word", "sentence")

ALIGNMENT = {"BOTTOM": 2, "CENTER": 5, "TOP": 8}

_HEX_COLOR = re.compile(r"^#?([0-9A-Fa-f]{2})([0-9A-Fa-f]{2})([0-9A-Fa-f]{2})$")


@dataclass
class Cue:
    """A single timed subtitle entry; never persisted."""
    start: float
    end: float
    text: str


def apply_offset(start: float, end: float, offset: float = TIMESTAMP_OFFSET_SECONDS):
    """Shift a time range by offset, keeping start >= 0 and a minimum duration."""
    new_start = max(0.0, start + offset)
    new_end = max(new_start + MIN_CUE_DURATION, end + offset)
    return new_start, new_end


def wrap_words(text: str, max_words_per_line: Optional[int]) -> str:
    """Break text into lines of at most max_words_per_line words."""
    words = text.split()
    if not max_words_per_line or len(words) <= max_words_per_line:
        return " ".join(words)
    lines = [" ".join(words[i:i + max_words_per_line]) for i in range(0, len(words), max_words_per_line)]
    return "\n".join(lines)


def split_word_cues(start: float, end: float, text: str) -> List[Cue]:
    """Divide [start, end) evenly over the words of text."""
    words = text.split()
    if not words:
        return []
    step = (end - start) / len(words)
    cues = []
    for i, word in enumerate(words):
        word_start = start + i * step
        # Pin the last boundary so the cue durations add up to the segment
        word_end = end if i == len(words) - 1 else start + (i + 1) * step
        cues.append(Cue(start=word_start, end=word_end, text=word))
    return cues


def build_cues(segments: Iterable, mode: str = "sentence", max_words_per_line: Optional[int] = None) -> List[Cue]:
    """
    Build subtitle cues from segments exposing start, end and text.

    Args:
        segments: Ordered transcript segments on the caller's timeline
        mode: "sentence" for one cue per segment, "word" for one cue per word
        max_words_per_line: Line wrap width for sentence cues

    Returns:
        Cues with the timestamp offset applied
    """
    if mode not in CAPTION_MODES:
        raise ValueError(f"Unknown caption mode: {mode}")

    cues: List[Cue] = []
    for segment in segments:
        text = (segment.text or "").strip()
        if not text:
            continue
        start, end = apply_offset(segment.start, segment.end)
        if mode == "word":
            cues.extend(split_word_cues(start, end, text))
        else:
            cues.append(Cue(start=start, end=end, text=wrap_words(text, max_words_per_line)))
    return cues


def hex_to_ass(color: str, alpha: int = 0) -> str:
    """Convert #RRGGBB to the ASS &HAABBGGRR form."""
    match = _HEX_COLOR.match(color or "")
    if not match:
        raise ValueError(f"Invalid hex color: {color!r}")
    r, g, b = (part.upper() for part in match.groups())
    return f"&H{alpha:02X}{b}{g}{r}"


def format_ass_time(seconds: float) -> str:
    """Format seconds as H:MM:SS.cc."""
    total_cs = int(round(max(0.0, seconds) * 100))
    hours, rem = divmod(total_cs, 360000)
    minutes, rem = divmod(rem, 6000)
    secs, cs = divmod(rem, 100)
    return f"{hours}:{minutes:02d}:{secs:02d}.{cs:02d}"


def escape_ass_text(text: str) -> str:
    """Escape characters that ASS would read as markup."""
    text = text.replace("\\", "\\\\").replace("{", "\\{").replace("}", "\\}")
    return text.replace("\r\n", "\n").replace("\n", "\\N")


def animation_tag(style: CaptionStyle) -> str:
    duration = style.animation_duration_ms
    if style.animation == "FADE":
        return f"{{\\fad({duration},{duration})}}"
    if style.animation == "POP":
        return f"{{\\fscx120\\fscy120\\t(0,{duration},\\fscx100\\fscy100)}}"
    return ""


def _margin_v(style: CaptionStyle, scale: float) -> int:
    if style.position == "BOTTOM" and style.margin_bottom:
        return round(style.margin_bottom * scale)
    if style.position == "TOP" and style.margin_top:
        return round(style.margin_top * scale)
    return DEFAULT_MARGIN_V


def style_line(style: CaptionStyle, width: int, height: int) -> str:
    scale = height / REFERENCE_HEIGHT
    font_size = max(1, round(style.font_size * scale))
    primary = hex_to_ass(style.font_color)

    if style.background_color:
        # BorderStyle 3 draws an opaque box in the outline colour
        border_style = 3
        outline_color = hex_to_ass(style.background_color)
    else:
        border_style = 1
        outline_color = hex_to_ass(style.outline_color) if style.outline_color else "&H00000000"
    back_color = hex_to_ass(style.shadow_color) if style.shadow_color else "&H80000000"
    outline = max(0, round(style.outline_width * scale))
    shadow = max(0, round(style.shadow_offset * scale))

    fields = [
        "Default", style.font_family, font_size, primary, primary, outline_color, back_color,
        -1 if style.bold else 0, 0, 0, 0, 100, 100, 0, 0,
        border_style, outline, shadow, ALIGNMENT.get(style.position, 2),
        10, 10, _margin_v(style, scale), 1,
    ]
    return "Style: " + ",".join(str(f) for f in fields)


def generate_ass(segments: Iterable, style: CaptionStyle, width: int, height: int, mode: str = "sentence") -> str:
    """
    Render a complete ASS document for the given segments.

    Args:
        segments: Transcript segments on the timeline of the video being captioned
        style: Caption style descriptor
        width: Frame width in pixels
        height: Frame height in pixels
        mode: "word" or "sentence"

    Returns:
        ASS document text
    """
    if width <= 0 or height <= 0:
        raise ValueError(f"Invalid frame size {width}x{height}")

    cues = build_cues(segments, mode, style.max_words_per_line)
    tag = animation_tag(style)
    logger.debug(f"Generating ASS: {len(cues)} {mode} cues, style {style.style_id}, {width}x{height}")

    lines = [
        "[Script Info]",
        "Title: Captions",
        "ScriptType: v4.00+",
        f"PlayResX: {width}",
        f"PlayResY: {height}",
        "WrapStyle: 0",
        "ScaledBorderAndShadow: yes",
        "",
        "[V4+ Styles]",
        "Format: Name, Fontname, Fontsize, PrimaryColour, SecondaryColour, OutlineColour, BackColour, "
        "Bold, Italic, Underline, StrikeOut, ScaleX, ScaleY, Spacing, Angle, BorderStyle, Outline, "
        "Shadow, Alignment, MarginL, MarginR, MarginV, Encoding",
        style_line(style, width, height),
        "",
        "[Events]",
        "Format: Layer, Start, End, Style, Name, MarginL, MarginR, MarginV, Effect, Text",
    ]
    for cue in cues:
        lines.append(
            f"Dialogue: 0,{format_ass_time(cue.start)},{format_ass_time(cue.end)},Default,,0,0,0,,"
            f"{tag}{escape_ass_text(cue.text)}"
        )
    return "\n".join(lines) + "\n"
