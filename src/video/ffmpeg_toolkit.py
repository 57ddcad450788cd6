"""
FFmpeg-based media toolkit for the captioning pipeline.

Every operation is file-in/file-out and stateless. Commands are assembled by
plain builder functions so they can be inspected without running ffmpeg.
"""

import asyncio
import json
import logging
import math
import os
from dataclasses import dataclass
from typing import List, Optional, Tuple

logger = logging.getLogger(__name__)

DEFAULT_CHUNK_DURATION = 20.0
MIN_CHUNK_DURATION = 5.0
MAX_CHUNK_DURATION = 30.0

PREVIEW_PROFILE = "preview"
FINAL_PROFILE = "final"


class MediaToolError(Exception):
    """An ffmpeg/ffprobe process exited unsuccessfully."""

    error_code = "MEDIA_TOOL_ERROR"

    def __init__(self, message: str, returncode: Optional[int] = None, stderr: str = "", command: Optional[List[str]] = None):
        self.returncode = returncode
        self.stderr = stderr[-2000:] if stderr else ""
        self.command = command or []
        detail = message
        if returncode is not None:
            detail = f"{message} (exit code {returncode})"
        stderr_lines = self.stderr.strip().splitlines()
        if stderr_lines:
            detail = f"{detail}: {stderr_lines[-1]}"
        super().__init__(detail)


@dataclass
class VideoMetadata:
    """ffprobe metadata of a media file."""
    duration: float
    width: int
    height: int
    fps: float
    codec: str
    bitrate: int
    file_size: int
    audio_codec: Optional[str] = None


def clamp_chunk_duration(value: float) -> float:
    """Clamp a requested chunk length into the supported 5-30s window."""
    return max(MIN_CHUNK_DURATION, min(MAX_CHUNK_DURATION, float(value)))


def _to_ms(seconds: float) -> float:
    return round(seconds * 1000) / 1000


def plan_chunks(total_duration: float, chunk_duration: float) -> List[Tuple[float, float]]:
    """
    Compute the (start, end) interval of each chunk.

    Boundaries are rounded to whole milliseconds, the precision chunk times
    are stored with. The intervals are contiguous, cover [0, total] and the
    last one holds the remainder. A remainder shorter than a millisecond is
    folded into the previous chunk, so no interval is ever empty.

    Args:
        total_duration: Length of the source video in seconds
        chunk_duration: Requested length of each chunk in seconds

    Returns:
        List of (start, end) tuples on the absolute timeline
    """
    if chunk_duration <= 0:
        raise ValueError("chunk_duration must be positive")
    total = _to_ms(total_duration)
    if total <= 0:
        return []

    intervals: List[Tuple[float, float]] = []
    for i in range(math.ceil(total / chunk_duration)):
        start = _to_ms(i * chunk_duration)
        end = min(_to_ms((i + 1) * chunk_duration), total)
        if end <= start:
            prev_start, _ = intervals.pop()
            intervals.append((prev_start, total))
            break
        intervals.append((start, end))
    return intervals


def parse_frame_rate(value: Optional[str]) -> float:
    """Parse ffprobe's r_frame_rate ("30000/1001" or "25") into fps."""
    if not value:
        return 30.0
    try:
        if "/" in value:
            num, den = value.split("/", 1)
            if float(den) == 0:
                return 30.0
            return float(num) / float(den)
        return float(value)
    except ValueError:
        return 30.0


def escape_filter_path(path: str) -> str:
    """Escape a file path for use inside an ffmpeg filter graph argument."""
    return path.replace("\\", "/").replace("'", "'\\''").replace(":", "\\:")


# ----------------------------------------------------------------------
# Command builders
# ----------------------------------------------------------------------
def build_metadata_command(ffprobe: str, input_file: str) -> List[str]:
    return [
        ffprobe, "-v", "error",
        "-print_format", "json",
        "-show_format", "-show_streams",
        input_file,
    ]


def build_extract_audio_command(ffmpeg: str, input_file: str, output_file: str, sample_rate: int = 16000) -> List[str]:
    return [
        ffmpeg, "-y",
        "-i", input_file,
        "-vn",  # No video
        "-ac", "1",  # Mono audio
        "-ar", str(sample_rate),
        "-c:a", "libmp3lame",
        "-b:a", "128k",
        output_file,
    ]


def build_split_command(ffmpeg: str, input_file: str, output_file: str, start: float, duration: float) -> List[str]:
    return [
        ffmpeg, "-y",
        "-ss", f"{start:.3f}",
        "-i", input_file,
        "-t", f"{duration:.3f}",
        "-c", "copy",
        "-avoid_negative_ts", "make_zero",
        output_file,
    ]


def build_burn_command(ffmpeg: str, input_file: str, subtitle_file: str, output_file: str,
                       profile: str = FINAL_PROFILE, preview_width: int = 854) -> List[str]:
    subtitles_filter = f"subtitles='{escape_filter_path(subtitle_file)}'"
    if profile == PREVIEW_PROFILE:
        # Scale down first so the caption is rasterized at preview resolution
        vf_arg = f"scale={preview_width}:-2,{subtitles_filter}"
        codec_args = [
            "-c:v", "libx264", "-preset", "ultrafast", "-crf", "28",
            "-c:a", "aac", "-b:a", "128k",
        ]
    elif profile == FINAL_PROFILE:
        vf_arg = subtitles_filter
        codec_args = [
            "-c:v", "libx264", "-preset", "slow", "-crf", "18",
            "-c:a", "copy",
        ]
    else:
        raise ValueError(f"Unknown render profile: {profile}")
    return [ffmpeg, "-y", "-i", input_file, "-vf", vf_arg, *codec_args, output_file]


def build_concat_command(ffmpeg: str, list_file: str, output_file: str) -> List[str]:
    return [
        ffmpeg, "-y",
        "-f", "concat", "-safe", "0",
        "-i", list_file,
        "-c", "copy",
        output_file,
    ]


def build_screenshot_command(ffmpeg: str, input_file: str, output_file: str, timestamp: float = 0.0, width: int = 320) -> List[str]:
    return [
        ffmpeg, "-y",
        "-ss", f"{timestamp:.3f}",
        "-i", input_file,
        "-frames:v", "1",
        "-vf", f"scale={width}:-2",
        output_file,
    ]


class FFmpegToolkit:
    """Async wrapper around the ffmpeg/ffprobe executables."""

    def __init__(self, ffmpeg_path: str = "ffmpeg", ffprobe_path: str = "ffprobe",
                 audio_sample_rate: int = 16000, preview_width: int = 854):
        self.ffmpeg_path = ffmpeg_path
        self.ffprobe_path = ffprobe_path
        self.audio_sample_rate = audio_sample_rate
        self.preview_width = preview_width

    async def _run(self, cmd: List[str], description: str) -> bytes:
        """Run a command to completion and return stdout, raising MediaToolError on failure."""
        logger.debug(f"Running {description}: {' '.join(cmd)}")
        try:
            process = await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
            )
        except FileNotFoundError as e:
            raise MediaToolError(f"{description} failed: executable not found ({cmd[0]})", command=cmd) from e

        stdout, stderr = await process.communicate()
        if process.returncode != 0:
            error_output = stderr.decode(errors="replace")
            logger.error(f"{description} failed with exit code {process.returncode}")
            raise MediaToolError(f"{description} failed", returncode=process.returncode, stderr=error_output, command=cmd)
        return stdout

    async def read_metadata(self, input_file: str) -> VideoMetadata:
        """
        Read duration, dimensions and codec information.

        Args:
            input_file: Path to a local media file

        Returns:
            VideoMetadata for the first video stream
        """
        stdout = await self._run(build_metadata_command(self.ffprobe_path, input_file), "ffprobe")
        try:
            info = json.loads(stdout.decode() or "{}")
        except json.JSONDecodeError as e:
            raise MediaToolError(f"ffprobe returned invalid JSON for {input_file}") from e

        streams = info.get("streams", [])
        fmt = info.get("format", {})
        video_stream = next((s for s in streams if s.get("codec_type") == "video"), None)
        audio_stream = next((s for s in streams if s.get("codec_type") == "audio"), None)
        if video_stream is None:
            raise MediaToolError(f"No video stream found in {input_file}")

        file_size = int(fmt.get("size") or 0)
        if not file_size and os.path.exists(input_file):
            file_size = os.path.getsize(input_file)

        return VideoMetadata(
            duration=float(fmt.get("duration") or video_stream.get("duration") or 0.0),
            width=int(video_stream.get("width") or 0),
            height=int(video_stream.get("height") or 0),
            fps=parse_frame_rate(video_stream.get("r_frame_rate")),
            codec=video_stream.get("codec_name") or "unknown",
            bitrate=int(fmt.get("bit_rate") or 0),
            file_size=file_size,
            audio_codec=audio_stream.get("codec_name") if audio_stream else None,
        )

    async def extract_audio(self, input_file: str, output_dir: str) -> str:
        """Extract a mono 16kHz mp3 track for transcription."""
        base = os.path.splitext(os.path.basename(input_file))[0]
        output_file = os.path.join(output_dir, f"{base}_audio.mp3")
        cmd = build_extract_audio_command(self.ffmpeg_path, input_file, output_file, self.audio_sample_rate)
        await self._run(cmd, "Audio extraction")
        if not os.path.exists(output_file) or os.path.getsize(output_file) == 0:
            raise MediaToolError(f"Audio extraction produced no output for {input_file}")
        return output_file

    async def split_by_duration(self, input_file: str, output_dir: str, chunk_duration: float,
                                total_duration: Optional[float] = None) -> List[str]:
        """
        Split a video into fixed-length pieces.

        Args:
            input_file: Source video
            output_dir: Directory for the chunk files
            chunk_duration: Length of each chunk in seconds
            total_duration: Known source duration (read with ffprobe when omitted)

        Returns:
            Chunk file paths in index order
        """
        if total_duration is None:
            total_duration = (await self.read_metadata(input_file)).duration

        chunk_paths = []
        for i, (start, end) in enumerate(plan_chunks(total_duration, chunk_duration)):
            output_file = os.path.join(output_dir, f"chunk_{i:03d}.mp4")
            cmd = build_split_command(self.ffmpeg_path, input_file, output_file, start, end - start)
            await self._run(cmd, f"Chunk {i} creation")
            logger.debug(f"Chunk {i} created: {output_file}")
            chunk_paths.append(output_file)
        return chunk_paths

    async def burn_subtitles(self, input_file: str, subtitle_file: str, output_file: str,
                             profile: str = FINAL_PROFILE) -> str:
        """Render a subtitle track onto the video using the given quality profile."""
        if not os.path.exists(input_file):
            raise MediaToolError(f"Input file not found: {input_file}")
        if not os.path.exists(subtitle_file):
            raise MediaToolError(f"Subtitle file not found: {subtitle_file}")
        os.makedirs(os.path.dirname(output_file) or ".", exist_ok=True)

        cmd = build_burn_command(self.ffmpeg_path, input_file, subtitle_file, output_file, profile, self.preview_width)
        logger.info(f"Caption burn started ({profile}): {output_file}")
        await self._run(cmd, "Caption burn")
        if not os.path.exists(output_file):
            raise MediaToolError(f"Caption burn produced no output: {output_file}")
        logger.info(f"Caption burn completed: {output_file}")
        return output_file

    async def concatenate(self, input_files: List[str], output_file: str) -> str:
        """Join videos with the concat demuxer (stream copy)."""
        list_file = os.path.join(os.path.dirname(output_file) or ".", "concat_list.txt")
        with open(list_file, "w", encoding="utf-8") as f:
            for path in input_files:
                escaped = path.replace("'", "'\\''")
                f.write(f"file '{escaped}'\n")
        try:
            await self._run(build_concat_command(self.ffmpeg_path, list_file, output_file), "Video concatenation")
        finally:
            if os.path.exists(list_file):
                os.remove(list_file)
        return output_file

    async def screenshot(self, input_file: str, output_file: str, timestamp: float = 0.0) -> str:
        """Grab a single downscaled frame as a thumbnail."""
        await self._run(build_screenshot_command(self.ffmpeg_path, input_file, output_file, timestamp), "Thumbnail generation")
        return output_file
