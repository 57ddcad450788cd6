"""
Faster-whisper provider for transcribing on the worker host itself.
"""

import asyncio
import logging
import os
import time
from pathlib import Path
from typing import Optional

try:
    from faster_whisper import WhisperModel
except ImportError:
    WhisperModel = None

from .base import (
    ProviderCapabilities,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
    WordTimestamp,
)
from .errors import ProviderNotConfiguredError, UnsupportedInputError

logger = logging.getLogger(__name__)


class LocalWhisperProvider(TranscriptionProvider):
    """Client for faster-whisper transcription."""

    name = "local-whisper"

    def __init__(self, model_size: str = "base", device: str = "cpu", compute_type: str = "int8",
                 language: Optional[str] = None, download_root: Optional[str] = None):
        """
        Initialize the whisper client.

        Args:
            model_size: Whisper model size (tiny, base, small, medium, large)
            device: Device to run on (cpu, cuda)
            compute_type: float16, float32, int8, ... (depends on device support)
            language: Default language code (None for auto-detect)
            download_root: Model cache directory
        """
        self.model_size = model_size
        self.device = device
        self.compute_type = compute_type
        self.language = language
        self.download_root = Path(download_root or os.environ.get("MODEL_DIR", "/models"))
        self.model = None
        self._lock = asyncio.Lock()

    def is_configured(self) -> bool:
        return WhisperModel is not None

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_word_timings=True,
            accepts_local_files=True,
            polling=False,
            max_file_size_mb=1024,
            max_duration_seconds=4 * 3600,
            supported_formats=("mp3", "wav", "flac", "m4a", "ogg", "webm", "mp4"),
        )

    async def initialize(self):
        """Load the whisper model once, off the event loop."""
        if WhisperModel is None:
            raise ProviderNotConfiguredError(
                "faster-whisper not installed. Install with: pip install faster-whisper", provider=self.name
            )
        async with self._lock:
            if self.model is None:
                logger.info(f"Loading whisper model: {self.model_size} on {self.device}")
                self.download_root.mkdir(parents=True, exist_ok=True)
                loop = asyncio.get_running_loop()
                self.model = await loop.run_in_executor(
                    None,
                    lambda: WhisperModel(
                        self.model_size,
                        device=self.device,
                        compute_type=self.compute_type,
                        download_root=str(self.download_root),
                    ),
                )
                logger.info("Whisper model loaded successfully")

    async def transcribe(self, audio: str, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        options = options or TranscriptionOptions()
        if not os.path.isfile(audio):
            raise UnsupportedInputError(f"Audio file not found: {audio}", provider=self.name)
        if self.model is None:
            await self.initialize()

        started = time.monotonic()
        language = options.language or self.language

        def _run():
            segments, info = self.model.transcribe(
                audio,
                language=language,
                word_timestamps=options.granularity == "word",
                vad_filter=False,
            )
            # The generator does the actual decoding, keep it in the worker thread
            return list(segments), info

        loop = asyncio.get_running_loop()
        raw_segments, info = await loop.run_in_executor(None, _run)

        segments = []
        for segment in raw_segments:
            words = [
                WordTimestamp(start=w.start, end=w.end, text=w.word.strip())
                for w in (getattr(segment, "words", None) or [])
            ]
            segments.append(TranscriptionSegment(start=segment.start, end=segment.end, text=segment.text.strip(), words=words))

        processing_time_ms = int((time.monotonic() - started) * 1000)
        logger.debug(f"Transcribed {len(segments)} segments locally in {processing_time_ms}ms")
        return TranscriptionResult(
            text=" ".join(s.text for s in segments).strip(),
            segments=segments,
            language=getattr(info, "language", None) or language or "unknown",
            duration=float(getattr(info, "duration", 0.0) or 0.0),
            provider=self.name,
            processing_time_ms=processing_time_ms,
            model_used=f"faster-whisper/{self.model_size}",
        )
