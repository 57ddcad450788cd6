"""
Shared fixtures and test doubles.

Nothing here needs Redis, ffmpeg or network access: the queue, toolkit and
providers are replaced by in-process fakes.
"""

import asyncio
import os
import shutil
from typing import List, Optional

import pytest
from redis.exceptions import ConnectionError as RedisConnectionError

from pipeline.config import PipelineConfig
from pipeline.errors import QueueConnectionError
from pipeline.processors import WorkerContext
from storage import FilesystemObjectStore
from transcription import ProviderSet
from transcription.base import (
    ProviderCapabilities,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
)
from video import VideoMetadata, plan_chunks


class FakePubSub:
    """Subscription fed by push(): an exception drops it, None ends it."""

    def __init__(self):
        self.channels = []
        self.messages = asyncio.Queue()
        self.closed = False

    async def subscribe(self, *channels):
        self.channels.extend(channels)

    def push(self, item):
        self.messages.put_nowait(item)

    async def listen(self):
        for channel in self.channels:
            yield {"type": "subscribe", "channel": channel, "data": 1}
        while True:
            item = await self.messages.get()
            if item is None:
                return
            if isinstance(item, Exception):
                raise item
            yield {"type": "message", "channel": self.channels[0], "data": item}

    async def aclose(self):
        self.closed = True


class FakeRedis:
    """Records publishes; optionally fails like a dropped connection."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.published = []
        self.closed = False
        self.subscription = FakePubSub()

    def pubsub(self):
        return self.subscription

    async def ping(self):
        if self.fail:
            raise RedisConnectionError("Connection refused")
        return True

    async def publish(self, channel, message):
        if self.fail:
            raise RedisConnectionError("Connection reset by peer")
        self.published.append((channel, message))
        return 1

    async def aclose(self):
        self.closed = True


class FakeQueue:
    """Producer stand-in that keeps every published job; fail=True rejects publishes."""

    def __init__(self, fail: bool = False):
        self.fail = fail
        self.jobs = []
        self.callbacks = []
        self.connected = False

    async def connect(self):
        self.connected = True

    async def close(self):
        self.connected = False

    def on_result(self, callback):
        self.callbacks.append(callback)

    async def publish(self, job):
        if self.fail:
            raise QueueConnectionError(f"Failed to publish job {job.job_id}: Connection reset by peer")
        self.jobs.append(job)
        return job.job_id

    def of_type(self, job_type: str):
        return [job for job in self.jobs if job.job_type == job_type]


class FakeToolkit:
    """File-in/file-out toolkit that writes placeholder files instead of running ffmpeg."""

    def __init__(self, duration: float = 45.0, width: int = 1920, height: int = 1080):
        self.duration = duration
        self.width = width
        self.height = height
        self.subtitles: List[str] = []
        self.burns = []
        self.fail_screenshot = False

    async def read_metadata(self, input_file):
        return VideoMetadata(duration=self.duration, width=self.width, height=self.height, fps=30.0,
                             codec="h264", bitrate=4_000_000, file_size=os.path.getsize(input_file),
                             audio_codec="aac")

    async def extract_audio(self, input_file, output_dir):
        base = os.path.splitext(os.path.basename(input_file))[0]
        output_file = os.path.join(output_dir, f"{base}_audio.mp3")
        with open(output_file, "wb") as f:
            f.write(b"ID3audio")
        return output_file

    async def split_by_duration(self, input_file, output_dir, chunk_duration, total_duration=None):
        paths = []
        for i, (start, end) in enumerate(plan_chunks(total_duration or self.duration, chunk_duration)):
            path = os.path.join(output_dir, f"chunk_{i:03d}.mp4")
            with open(path, "wb") as f:
                f.write(f"chunk {start}-{end}".encode())
            paths.append(path)
        return paths

    async def burn_subtitles(self, input_file, subtitle_file, output_file, profile="final"):
        with open(subtitle_file, encoding="utf-8") as f:
            self.subtitles.append(f.read())
        self.burns.append(profile)
        shutil.copyfile(input_file, output_file)
        return output_file

    async def screenshot(self, input_file, output_file, timestamp=0.0):
        if self.fail_screenshot:
            from video import MediaToolError
            raise MediaToolError("Thumbnail generation failed", returncode=1, stderr="Invalid frame")
        with open(output_file, "wb") as f:
            f.write(b"\xff\xd8jpeg")
        return output_file


class FakeProvider(TranscriptionProvider):
    def __init__(self, name: str = "fake", accepts_local_files: bool = True,
                 segments: Optional[List[TranscriptionSegment]] = None, error: Optional[Exception] = None):
        self.name = name
        self._accepts_local_files = accepts_local_files
        self.segments = segments if segments is not None else [
            TranscriptionSegment(start=0.5, end=2.0, text="hello there"),
            TranscriptionSegment(start=2.5, end=4.0, text="general kenobi"),
        ]
        self.error = error
        self.calls = []

    def is_configured(self):
        return True

    @property
    def capabilities(self):
        return ProviderCapabilities(
            supports_word_timings=True,
            accepts_local_files=self._accepts_local_files,
            polling=False,
            max_file_size_mb=25,
            max_duration_seconds=600,
        )

    async def transcribe(self, audio, options=None):
        self.calls.append((audio, options))
        if self.error:
            raise self.error
        return TranscriptionResult(
            text=" ".join(s.text for s in self.segments),
            segments=self.segments,
            language="en",
            duration=self.segments[-1].end if self.segments else 0.0,
            provider=self.name,
            processing_time_ms=12,
        )


@pytest.fixture
def config(tmp_path):
    return PipelineConfig(
        temp_dir=str(tmp_path / "scratch"),
        storage_root=str(tmp_path / "store"),
    )


@pytest.fixture
def store(config):
    return FilesystemObjectStore(config.storage_root)


@pytest.fixture
def toolkit():
    return FakeToolkit()


@pytest.fixture
def provider():
    return FakeProvider()


@pytest.fixture
def ctx(store, toolkit, provider, config):
    return WorkerContext(store=store, toolkit=toolkit, providers=ProviderSet(provider, provider), config=config)


@pytest.fixture
def fake_queue():
    return FakeQueue()
