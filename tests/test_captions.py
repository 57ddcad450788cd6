"""
Tests for caption styles, cue synthesis, ASS output and SRT sidecars.
"""

import pytest

from subtitles import (
    CAPTION_STYLES,
    SRTGenerator,
    TranscriptSegment,
    UnknownStyleError,
    apply_offset,
    build_cues,
    generate_ass,
    get_style,
    hex_to_ass,
    parse_style_choice,
    resolve_style,
)
from subtitles.captions import escape_ass_text, format_ass_time, wrap_words


def seg(start, end, text, id=0):
    return TranscriptSegment(id=id, start=start, end=end, text=text)


class TestTimestampOffset:
    @pytest.mark.parametrize("start,end", [
        (0.0, 0.0), (0.0, 0.05), (0.1, 0.15), (0.2, 0.2), (1.0, 3.0), (5.0, 5.01), (0.0, 10.0),
    ])
    def test_offset_never_goes_negative_or_below_minimum_duration(self, start, end):
        new_start, new_end = apply_offset(start, end)
        assert new_start >= 0
        assert new_end >= new_start + 0.1 - 1e-9

    def test_offset_pulls_captions_earlier(self):
        assert apply_offset(1.0, 3.0) == pytest.approx((0.8, 2.8))

    def test_segment_starting_at_zero(self):
        assert apply_offset(0.0, 1.0) == pytest.approx((0.0, 0.8))


class TestBuildCues:
    def test_sentence_mode_is_one_cue_per_segment(self):
        cues = build_cues([seg(1, 3, "hello world"), seg(3, 5, "second line")], "sentence")
        assert [c.text for c in cues] == ["hello world", "second line"]
        assert cues[0].start == pytest.approx(0.8)

    def test_sentence_mode_wraps_long_lines(self):
        cues = build_cues([seg(0, 4, "one two three four five six seven")], "sentence", max_words_per_line=3)
        assert cues[0].text == "one two three\nfour five six\nseven"

    @pytest.mark.parametrize("start,end,text", [
        (1.0, 3.0, "a b c"),
        (10.25, 11.0, "one two three four five six seven"),
        (0.0, 0.3, "quick word"),
        (2.0, 9.5, "single"),
    ])
    def test_word_cues_are_contiguous_and_sum_to_segment(self, start, end, text):
        cues = build_cues([seg(start, end, text)], "word")
        expected_start, expected_end = apply_offset(start, end)

        assert [c.text for c in cues] == text.split()
        assert cues[0].start == pytest.approx(expected_start)
        assert cues[-1].end == pytest.approx(expected_end)
        for prev, nxt in zip(cues, cues[1:]):
            assert prev.end == pytest.approx(nxt.start)
            assert prev.end <= nxt.start + 1e-9
        assert sum(c.end - c.start for c in cues) == pytest.approx(expected_end - expected_start)

    def test_empty_segments_are_skipped(self):
        assert build_cues([seg(0, 1, "   ")], "word") == []

    def test_unknown_mode_is_rejected(self):
        with pytest.raises(ValueError):
            build_cues([seg(0, 1, "x")], "karaoke")


class TestAssDocument:
    def test_colors_are_converted_to_bgr(self):
        assert hex_to_ass("#FFD700") == "&H0000D7FF"
        assert hex_to_ass("#112233") == "&H00332211"
        with pytest.raises(ValueError):
            hex_to_ass("yellow")

    def test_time_format(self):
        assert format_ass_time(0) == "0:00:00.00"
        assert format_ass_time(3723.456) == "1:02:03.46"

    def test_escaping(self):
        assert escape_ass_text("line one\nline {two}") == "line one\\Nline \\{two\\}"

    def test_font_and_margins_scale_with_frame_height(self):
        style = get_style("style_classic_white")
        full = generate_ass([seg(1, 2, "hi")], style, 1920, 1080)
        half = generate_ass([seg(1, 2, "hi")], style, 960, 540)

        full_style = next(line for line in full.splitlines() if line.startswith("Style:")).split(",")
        half_style = next(line for line in half.splitlines() if line.startswith("Style:")).split(",")
        assert int(full_style[2]) == style.font_size
        assert int(half_style[2]) == round(style.font_size / 2)
        assert int(full_style[21]) == style.margin_bottom
        assert int(half_style[21]) == round(style.margin_bottom / 2)
        assert "PlayResX: 960" in half and "PlayResY: 540" in half

    def test_alignment_follows_position(self):
        doc = generate_ass([], get_style("style_gradient_pink"), 1080, 1920)
        style_fields = next(line for line in doc.splitlines() if line.startswith("Style:")).split(",")
        assert style_fields[18] == "8"

    def test_word_mode_emits_one_dialogue_per_word(self):
        doc = generate_ass([seg(1, 2, "a {b} c")], get_style("style_classic_white"), 1920, 1080, "word")
        dialogues = [line for line in doc.splitlines() if line.startswith("Dialogue:")]
        assert len(dialogues) == 3
        assert dialogues[1].endswith("\\{b\\}")
        assert dialogues[0].startswith("Dialogue: 0,0:00:00.80,")

    def test_animation_tag_is_prefixed(self):
        doc = generate_ass([seg(1, 2, "fade me")], get_style("style_neon_green"), 1920, 1080)
        dialogue = next(line for line in doc.splitlines() if line.startswith("Dialogue:"))
        assert "{\\fad(150,150)}fade me" in dialogue

    def test_boxed_style_uses_opaque_box(self):
        doc = generate_ass([], get_style("style_boxed_black"), 1920, 1080)
        style_fields = next(line for line in doc.splitlines() if line.startswith("Style:")).split(",")
        assert style_fields[15] == "3"

    def test_invalid_frame_size(self):
        with pytest.raises(ValueError):
            generate_ass([], get_style("style_classic_white"), 0, 1080)


class TestStyles:
    def test_catalog_has_five_styles(self):
        assert [s.name for s in CAPTION_STYLES] == [
            "Classic White", "Bold Yellow", "Neon Green", "Boxed Black", "Gradient Pink",
        ]

    def test_get_style_unknown(self):
        with pytest.raises(UnknownStyleError):
            get_style("style_missing")

    @pytest.mark.parametrize("token,expected", [
        ("style_neon_green", "style_neon_green"),
        ("2", "style_bold_yellow"),
        ("pink", "style_gradient_pink"),
        ("BOXED", "style_boxed_black"),
    ])
    def test_resolve_style(self, token, expected):
        assert resolve_style(token).style_id == expected

    @pytest.mark.parametrize("token", ["", "0", "6", "plaid"])
    def test_resolve_style_rejects_unknown(self, token):
        with pytest.raises(UnknownStyleError):
            resolve_style(token)

    def test_parse_combined_choice(self):
        style, mode = parse_style_choice("1A")
        assert (style.style_id, mode) == ("style_classic_white", "word")
        style, mode = parse_style_choice("2b")
        assert (style.style_id, mode) == ("style_bold_yellow", "sentence")
        style, mode = parse_style_choice("Neon")
        assert (style.style_id, mode) == ("style_neon_green", "sentence")

    def test_styles_are_immutable(self):
        with pytest.raises(AttributeError):
            CAPTION_STYLES[0].font_size = 10


class TestSRT:
    def test_generates_numbered_entries(self):
        srt = SRTGenerator().generate_srt([seg(1, 2.5, "hello"), seg(3661, 3662, "later")])
        assert srt.splitlines()[:4] == ["1", "00:00:00,800 --> 00:00:02,300", "hello", ""]
        assert "01:01:00,800 --> 01:01:01,800" in srt

    def test_empty_transcript(self):
        assert SRTGenerator().generate_srt([]) == ""

    def test_wrap_words(self):
        assert wrap_words("a b c d", 2) == "a b\nc d"
        assert wrap_words("a  b", None) == "a b"
