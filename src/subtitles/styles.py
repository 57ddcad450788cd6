"""
Caption style catalog.

Styles are immutable and identified by id; only the id travels inside job
payloads, workers look the full descriptor up here.
"""

import re
from dataclasses import dataclass
from typing import List, Optional, Tuple


class UnknownStyleError(KeyError):
    """Raised when a style id or token matches nothing in the catalog."""

    error_code = "UNKNOWN_STYLE"

    def __init__(self, token: str):
        super().__init__(token)
        self.token = token

    def __str__(self):
        return f"Unknown caption style: {self.token}"


@dataclass(frozen=True)
class CaptionStyle:
    style_id: str
    name: str
    description: str
    font_family: str = "Arial"
    font_size: int = 64  # pixels at a 1080px frame height
    bold: bool = True
    font_color: str = "#FFFFFF"
    outline_color: Optional[str] = "#000000"
    outline_width: int = 3
    shadow_color: Optional[str] = None
    shadow_offset: int = 1
    background_color: Optional[str] = None  # enables the opaque box
    position: str = "BOTTOM"  # TOP, CENTER, BOTTOM
    margin_bottom: Optional[int] = 120
    margin_top: Optional[int] = None
    animation: str = "NONE"  # NONE, FADE, POP
    animation_duration_ms: int = 150
    max_words_per_line: int = 6


CAPTION_STYLES: Tuple[CaptionStyle, ...] = (
    CaptionStyle(
        style_id="style_classic_white",
        name="Classic White",
        description="Clean white text",
        font_size=60,
        outline_width=3,
    ),
    CaptionStyle(
        style_id="style_bold_yellow",
        name="Bold Yellow",
        description="Eye-catching yellow",
        font_family="Arial Black",
        font_size=72,
        font_color="#FFD700",
        outline_width=4,
        shadow_color="#000000",
        shadow_offset=2,
        animation="POP",
        max_words_per_line=4,
    ),
    CaptionStyle(
        style_id="style_neon_green",
        name="Neon Green",
        description="Vibrant green",
        font_size=68,
        font_color="#39FF14",
        outline_color="#003300",
        outline_width=3,
        shadow_color="#39FF14",
        shadow_offset=0,
        position="CENTER",
        margin_bottom=None,
        animation="FADE",
        max_words_per_line=4,
    ),
    CaptionStyle(
        style_id="style_boxed_black",
        name="Boxed Black",
        description="Black background box",
        font_size=56,
        bold=False,
        outline_color=None,
        outline_width=8,
        background_color="#000000",
        shadow_offset=0,
        margin_bottom=100,
    ),
    CaptionStyle(
        style_id="style_gradient_pink",
        name="Gradient Pink",
        description="Stylish pink gradient",
        font_size=66,
        font_color="#FF69B4",
        outline_color="#8B008B",
        outline_width=3,
        shadow_color="#4B0082",
        shadow_offset=2,
        position="TOP",
        margin_bottom=None,
        margin_top=140,
        animation="FADE",
        max_words_per_line=5,
    ),
)

DEFAULT_STYLE_ID = CAPTION_STYLES[0].style_id

_CHOICE = re.compile(r"^(\d+)\s*([AaBb])$")


def list_styles() -> List[CaptionStyle]:
    return list(CAPTION_STYLES)


def get_style(style_id: str) -> CaptionStyle:
    for style in CAPTION_STYLES:
        if style.style_id == style_id:
            return style
    raise UnknownStyleError(style_id)


def resolve_style(token: str) -> CaptionStyle:
    """
    Find a style from loose user input.

    Tries an exact id, then a 1-based catalog number, then a case-insensitive
    fragment of the display name.
    """
    token = (token or "").strip()
    if not token:
        raise UnknownStyleError(token)
    for style in CAPTION_STYLES:
        if style.style_id == token:
            return style
    if token.isdigit():
        number = int(token)
        if 1 <= number <= len(CAPTION_STYLES):
            return CAPTION_STYLES[number - 1]
        raise UnknownStyleError(token)
    lowered = token.lower()
    for style in CAPTION_STYLES:
        if lowered in style.name.lower():
            return style
    raise UnknownStyleError(token)


def parse_style_choice(choice: str, default_mode: str = "sentence") -> Tuple[CaptionStyle, str]:
    """
    Parse a combined choice such as "1A" (style 1, word mode) or "2B"
    (style 2, sentence mode). Anything else is resolved as a plain style
    token with the default mode.
    """
    match = _CHOICE.match((choice or "").strip())
    if match:
        mode = "word" if match.group(2).upper() == "A" else "sentence"
        return resolve_style(match.group(1)), mode
    return resolve_style(choice), default_mode
