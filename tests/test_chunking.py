"""
Tests for chunk planning and the ffmpeg command builders.
"""

import math

import pytest

from video import clamp_chunk_duration, plan_chunks
from video.ffmpeg_toolkit import (
    FINAL_PROFILE,
    PREVIEW_PROFILE,
    FFmpegToolkit,
    MediaToolError,
    build_burn_command,
    build_concat_command,
    build_extract_audio_command,
    build_screenshot_command,
    build_split_command,
    escape_filter_path,
    parse_frame_rate,
)


class TestPlanChunks:
    def test_45_second_video_with_20_second_chunks(self):
        assert plan_chunks(45, 20) == [(0, 20), (20, 40), (40, 45)]

    @pytest.mark.parametrize("total,chunk", [
        (45, 20), (40, 20), (0.5, 20), (61.37, 7), (600, 30), (29.999, 5), (100, 30),
    ])
    def test_intervals_are_contiguous_and_cover_the_video(self, total, chunk):
        intervals = plan_chunks(total, chunk)

        assert len(intervals) == math.ceil(total / chunk)
        assert intervals[0][0] == 0
        assert intervals[-1][1] == pytest.approx(total)
        for (_, prev_end), (next_start, _) in zip(intervals, intervals[1:]):
            assert prev_end == next_start
        last_start, last_end = intervals[-1]
        assert 0 < last_end - last_start <= chunk

    def test_exact_multiple_has_no_empty_trailing_chunk(self):
        intervals = plan_chunks(40, 20)
        assert intervals == [(0, 20), (20, 40)]

    def test_sub_millisecond_remainder_is_folded_into_the_last_chunk(self):
        assert plan_chunks(40.0004, 20) == [(0, 20), (20, 40)]

    def test_millisecond_remainder_keeps_its_own_chunk(self):
        assert plan_chunks(40.0006, 20)[-1] == (40.0, 40.001)

    @pytest.mark.parametrize("total,chunk", [(40.0004, 20), (20.0001, 5), (7.0000001, 7), (0.0004, 5)])
    def test_no_interval_is_empty_after_rounding(self, total, chunk):
        for start, end in plan_chunks(total, chunk):
            assert end > start

    def test_empty_video_has_no_chunks(self):
        assert plan_chunks(0, 20) == []

    def test_non_positive_chunk_duration_is_rejected(self):
        with pytest.raises(ValueError):
            plan_chunks(45, 0)

    @pytest.mark.parametrize("value,expected", [(1, 5), (5, 5), (20, 20), (30, 30), (90, 30)])
    def test_clamp_chunk_duration(self, value, expected):
        assert clamp_chunk_duration(value) == expected


class TestCommandBuilders:
    def test_extract_audio_is_mono_16khz_mp3(self):
        cmd = build_extract_audio_command("ffmpeg", "in.mp4", "out.mp3")
        assert cmd[cmd.index("-ac") + 1] == "1"
        assert cmd[cmd.index("-ar") + 1] == "16000"
        assert cmd[cmd.index("-c:a") + 1] == "libmp3lame"
        assert "-vn" in cmd
        assert cmd[-1] == "out.mp3"

    def test_split_uses_stream_copy(self):
        cmd = build_split_command("ffmpeg", "in.mp4", "chunk_001.mp4", 20, 20)
        assert cmd[cmd.index("-ss") + 1] == "20.000"
        assert cmd[cmd.index("-t") + 1] == "20.000"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[cmd.index("-avoid_negative_ts") + 1] == "make_zero"

    def test_preview_profile_downscales_and_encodes_fast(self):
        cmd = build_burn_command("ffmpeg", "in.mp4", "/tmp/subs.ass", "out.mp4", PREVIEW_PROFILE, 854)
        vf = cmd[cmd.index("-vf") + 1]
        assert vf.startswith("scale=854:-2,")
        assert "subtitles='/tmp/subs.ass'" in vf
        assert cmd[cmd.index("-preset") + 1] == "ultrafast"
        assert cmd[cmd.index("-crf") + 1] == "28"
        assert cmd[cmd.index("-c:a") + 1] == "aac"

    def test_final_profile_keeps_resolution_and_copies_audio(self):
        cmd = build_burn_command("ffmpeg", "in.mp4", "subs.ass", "out.mp4", FINAL_PROFILE)
        vf = cmd[cmd.index("-vf") + 1]
        assert "scale" not in vf
        assert cmd[cmd.index("-preset") + 1] == "slow"
        assert cmd[cmd.index("-crf") + 1] == "18"
        assert cmd[cmd.index("-c:a") + 1] == "copy"

    def test_unknown_profile_is_rejected(self):
        with pytest.raises(ValueError):
            build_burn_command("ffmpeg", "in.mp4", "subs.ass", "out.mp4", "draft")

    def test_concat_uses_the_demuxer_with_stream_copy(self):
        cmd = build_concat_command("ffmpeg", "/tmp/concat_list.txt", "final.mp4")
        assert cmd[cmd.index("-f") + 1] == "concat"
        assert cmd[cmd.index("-safe") + 1] == "0"
        assert cmd[cmd.index("-i") + 1] == "/tmp/concat_list.txt"
        assert cmd[cmd.index("-c") + 1] == "copy"
        assert cmd[-1] == "final.mp4"

    def test_screenshot_is_a_single_320_wide_frame(self):
        cmd = build_screenshot_command("ffmpeg", "in.mp4", "thumb.jpg", 1.0)
        assert cmd[cmd.index("-frames:v") + 1] == "1"
        assert cmd[cmd.index("-vf") + 1] == "scale=320:-2"

    def test_filter_path_escaping(self):
        assert escape_filter_path("C:\\subs\\a.ass") == "C\\:/subs/a.ass"
        assert escape_filter_path("/tmp/it's.ass") == "/tmp/it'\\''s.ass"

    @pytest.mark.parametrize("value,expected", [("30000/1001", 29.97), ("25", 25.0), ("0/0", 30.0), (None, 30.0)])
    def test_parse_frame_rate(self, value, expected):
        assert parse_frame_rate(value) == pytest.approx(expected, abs=0.01)


class TestMediaToolError:
    def test_message_carries_exit_code_and_last_stderr_line(self):
        error = MediaToolError("Caption burn failed", returncode=1,
                               stderr="ffmpeg version 6\nUnable to open subs.ass\n", command=["ffmpeg"])
        assert str(error) == "Caption burn failed (exit code 1): Unable to open subs.ass"
        assert error.returncode == 1
        assert "ffmpeg version 6" in error.stderr


class TestConcatenate:
    @pytest.mark.asyncio
    async def test_list_file_is_written_and_removed(self, tmp_path, monkeypatch):
        toolkit = FFmpegToolkit()
        seen = {}

        async def run(cmd, description):
            list_file = cmd[cmd.index("-i") + 1]
            with open(list_file, encoding="utf-8") as f:
                seen["lines"] = f.read().splitlines()
            return b""

        monkeypatch.setattr(toolkit, "_run", run)
        output = str(tmp_path / "final.mp4")
        await toolkit.concatenate(["/tmp/chunk_000.mp4", "/tmp/it's.mp4"], output)

        assert seen["lines"] == ["file '/tmp/chunk_000.mp4'", "file '/tmp/it'\\''s.mp4'"]
        assert not (tmp_path / "concat_list.txt").exists()
