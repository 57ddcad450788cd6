"""
Azure OpenAI GPT-4o transcription client with word-level timestamps.
"""

import asyncio
import logging
import os
import re
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .azure_whisper import audio_content_type, error_detail
from .base import (
    ProviderCapabilities,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
)
from .errors import (
    PayloadTooLargeError,
    ProviderNotConfiguredError,
    TranscriptionTimeoutError,
    UnsupportedInputError,
    error_for_status,
)

logger = logging.getLogger(__name__)

_SENTENCE_END = re.compile(r"(?<=[.!?])\s+")


def split_into_sentences(text: str) -> List[str]:
    return [s.strip() for s in _SENTENCE_END.split(text) if s.strip()]


def segments_from_response(data: Dict[str, Any], audio_duration: float) -> List[TranscriptionSegment]:
    """
    Build segments from the most precise timing the response offers.

    Word timestamps win over segment timestamps; with neither, the text is
    split into sentences spread evenly over the audio duration.
    """
    words = data.get("words") or []
    if words:
        return [
            TranscriptionSegment(start=float(w["start"]), end=float(w["end"]), text=str(w.get("word", "")).strip())
            for w in words
        ]

    segments = data.get("segments") or []
    if segments:
        return [
            TranscriptionSegment(start=float(s["start"]), end=float(s["end"]), text=str(s.get("text", "")).strip())
            for s in segments
        ]

    sentences = split_into_sentences(data.get("text") or "")
    if not sentences:
        return []
    per_sentence = audio_duration / len(sentences) if audio_duration > 0 else 0.0
    estimated = []
    for i, sentence in enumerate(sentences):
        estimated.append(TranscriptionSegment(start=i * per_sentence, end=(i + 1) * per_sentence, text=sentence))
    return estimated


@dataclass
class AzureGPT4oConfig:
    endpoint: str = ""
    api_key: str = ""
    deployment_name: str = "gpt-4o-transcribe"
    api_version: str = "2025-03-01-preview"
    request_timeout: float = 300.0


class AzureGPT4oProvider(TranscriptionProvider):
    """GPT-4o transcription deployment on Azure, Bearer-token auth."""

    name = "azure-gpt4o"
    max_file_size_mb = 25

    def __init__(self, config: AzureGPT4oConfig, audio_duration_reader=None):
        """
        Args:
            config: Endpoint and credentials
            audio_duration_reader: Optional async callable(path) -> seconds, used when
                the response carries no timestamps at all
        """
        self.config = config
        self.audio_duration_reader = audio_duration_reader

    def is_configured(self) -> bool:
        return bool(self.config.endpoint and self.config.api_key and self.config.deployment_name)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_word_timings=True,
            accepts_local_files=True,
            polling=False,
            max_file_size_mb=self.max_file_size_mb,
            max_duration_seconds=1500,
        )

    def _url(self) -> str:
        endpoint = self.config.endpoint.rstrip("/")
        return (f"{endpoint}/openai/deployments/{self.config.deployment_name}"
                f"/audio/transcriptions?api-version={self.config.api_version}")

    async def transcribe(self, audio: str, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        options = options or TranscriptionOptions(granularity="word")
        if not self.is_configured():
            raise ProviderNotConfiguredError("Azure GPT-4o provider is not configured", provider=self.name)
        if not os.path.isfile(audio):
            raise UnsupportedInputError(f"Audio file not found: {audio}", provider=self.name)

        size_mb = os.path.getsize(audio) / (1024 * 1024)
        if size_mb > self.max_file_size_mb:
            raise PayloadTooLargeError(
                f"File size {size_mb:.2f}MB exceeds maximum of {self.max_file_size_mb}MB", provider=self.name
            )

        with open(audio, "rb") as f:
            payload = f.read()
        form = aiohttp.FormData()
        form.add_field("file", payload, filename=os.path.basename(audio), content_type=audio_content_type(audio))
        form.add_field("model", self.config.deployment_name)
        form.add_field("response_format", "verbose_json")
        form.add_field("timestamp_granularities[]", "segment")
        if options.granularity == "word":
            form.add_field("timestamp_granularities[]", "word")
        if options.language:
            form.add_field("language", options.language)
        if options.prompt:
            form.add_field("prompt", options.prompt)

        logger.info(f"Starting Azure GPT-4o transcription of {audio} ({size_mb:.2f}MB)")
        started = time.monotonic()
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as client:
                async with client.post(
                    self._url(),
                    data=form,
                    headers={"Authorization": f"Bearer {self.config.api_key}"},
                ) as response:
                    if response.status >= 400:
                        raise error_for_status(self.name, "Azure GPT-4o", response.status, await error_detail(response))
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeoutError(
                f"Azure GPT-4o request timed out after {self.config.request_timeout:.0f}s", provider=self.name
            ) from e

        audio_duration = float(data.get("duration") or 0.0)
        if not audio_duration and not data.get("words") and not data.get("segments") and self.audio_duration_reader:
            audio_duration = await self.audio_duration_reader(audio)
        if not data.get("words") and not data.get("segments"):
            logger.warning("No timestamps in GPT-4o response, estimating sentence timings")

        segments = segments_from_response(data, audio_duration)
        processing_time_ms = int((time.monotonic() - started) * 1000)
        duration = segments[-1].end if segments else audio_duration
        language = data.get("language") or options.language or "unknown"
        logger.info(f"Azure GPT-4o transcription completed: {len(segments)} segments, {processing_time_ms}ms")

        return TranscriptionResult(
            text=data.get("text", ""),
            segments=segments,
            language=language,
            duration=duration,
            provider=self.name,
            processing_time_ms=processing_time_ms,
            model_used=f"azure/{self.config.deployment_name}",
        )
