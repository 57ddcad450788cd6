"""
Shared types and the provider contract for speech-to-text services.
"""

import os
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional


@dataclass
class WordTimestamp:
    """Word-level timing reported by providers that support it."""
    start: float
    end: float
    text: str


@dataclass
class TranscriptionSegment:
    """Represents a transcribed segment with timing information."""
    start: float  # Start time in seconds (relative to the submitted audio)
    end: float    # End time in seconds (relative to the submitted audio)
    text: str     # Transcribed text
    words: List[WordTimestamp] = field(default_factory=list)


@dataclass
class TranscriptionOptions:
    """Per-request options understood by every provider."""
    language: Optional[str] = None
    granularity: str = "segment"  # segment, word
    prompt: Optional[str] = None
    temperature: Optional[float] = None


@dataclass
class TranscriptionResult:
    """Uniform transcription output across providers."""
    text: str
    segments: List[TranscriptionSegment]
    language: str
    duration: float
    provider: str
    processing_time_ms: int = 0
    model_used: Optional[str] = None


@dataclass(frozen=True)
class ProviderCapabilities:
    """What a provider can do, used to pick inputs and providers at startup."""
    supports_word_timings: bool
    accepts_local_files: bool
    polling: bool
    max_file_size_mb: float
    max_duration_seconds: int
    supported_formats: tuple = ("mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm")


def is_local_path(audio: str) -> bool:
    """Whether an audio reference is a filesystem path rather than a URL."""
    if audio.startswith(("http://", "https://")):
        return False
    return audio.startswith("/") or "\\" in audio or os.path.exists(audio)


class TranscriptionProvider:
    """Base class for speech-to-text providers."""

    name: str = "base"

    def is_configured(self) -> bool:
        raise NotImplementedError

    @property
    def capabilities(self) -> ProviderCapabilities:
        raise NotImplementedError

    async def transcribe(self, audio: str, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        """
        Transcribe an audio file.

        Args:
            audio: Local file path or a published URL, depending on capabilities
            options: Language and timestamp granularity hints

        Returns:
            TranscriptionResult with segment timestamps relative to the audio start
        """
        raise NotImplementedError

    async def health_check(self) -> bool:
        return self.is_configured()

    def get_info(self) -> Dict[str, Any]:
        caps = self.capabilities
        return {
            "provider": self.name,
            "configured": self.is_configured(),
            "word_timings": caps.supports_word_timings,
            "local_files": caps.accepts_local_files,
            "polling": caps.polling,
        }
