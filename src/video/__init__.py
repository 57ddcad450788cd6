"""
Media toolkit wrapping the external ffmpeg/ffprobe processes.
"""

from .ffmpeg_toolkit import (
    FFmpegToolkit,
    MediaToolError,
    VideoMetadata,
    clamp_chunk_duration,
    plan_chunks,
)

__all__ = [
    "FFmpegToolkit",
    "MediaToolError",
    "VideoMetadata",
    "clamp_chunk_duration",
    "plan_chunks",
]
