"""
Azure OpenAI Whisper client for segment-level transcription.
"""

import asyncio
import logging
import os
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .base import (
    ProviderCapabilities,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
    WordTimestamp,
)
from .errors import (
    PayloadTooLargeError,
    ProviderNotConfiguredError,
    TranscriptionTimeoutError,
    UnsupportedInputError,
    error_for_status,
)

logger = logging.getLogger(__name__)

AUDIO_CONTENT_TYPES = {
    ".mp3": "audio/mpeg",
    ".mp4": "audio/mp4",
    ".mpeg": "audio/mpeg",
    ".mpga": "audio/mpeg",
    ".m4a": "audio/mp4",
    ".wav": "audio/wav",
    ".webm": "audio/webm",
    ".flac": "audio/flac",
}


def audio_content_type(path: str) -> str:
    return AUDIO_CONTENT_TYPES.get(os.path.splitext(path)[1].lower(), "audio/mpeg")


async def error_detail(response: aiohttp.ClientResponse) -> str:
    """Pull the provider's error message out of a failed response."""
    try:
        payload = await response.json(content_type=None)
    except (aiohttp.ContentTypeError, ValueError):
        return (await response.text())[:500]
    if isinstance(payload, dict):
        error = payload.get("error")
        if isinstance(error, dict):
            return str(error.get("message", ""))
        if error:
            return str(error)
        return str(payload.get("detail", ""))
    return ""


def parse_verbose_segments(data: Dict[str, Any]) -> List[TranscriptionSegment]:
    """Convert an OpenAI-style verbose_json body into segments."""
    segments = []
    for seg in data.get("segments") or []:
        words = [
            WordTimestamp(start=float(w["start"]), end=float(w["end"]), text=str(w.get("word", "")).strip())
            for w in seg.get("words") or []
        ]
        segments.append(TranscriptionSegment(
            start=float(seg["start"]),
            end=float(seg["end"]),
            text=str(seg.get("text", "")).strip(),
            words=words,
        ))
    return segments


@dataclass
class AzureWhisperConfig:
    endpoint: str = ""
    api_key: str = ""
    deployment_name: str = "whisper"
    api_version: str = "2024-02-01"
    request_timeout: float = 300.0


class AzureWhisperProvider(TranscriptionProvider):
    """Azure OpenAI Whisper deployment, uploads a local audio file per request."""

    name = "azure-openai"
    max_file_size_mb = 25

    def __init__(self, config: AzureWhisperConfig):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.endpoint and self.config.api_key and self.config.deployment_name and self.config.api_version)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_word_timings=False,
            accepts_local_files=True,
            polling=False,
            max_file_size_mb=self.max_file_size_mb,
            max_duration_seconds=7200,
        )

    def _url(self) -> str:
        endpoint = self.config.endpoint.rstrip("/")
        return (f"{endpoint}/openai/deployments/{self.config.deployment_name}"
                f"/audio/transcriptions?api-version={self.config.api_version}")

    def _build_form(self, audio_path: str, data: bytes, options: TranscriptionOptions) -> aiohttp.FormData:
        form = aiohttp.FormData()
        form.add_field("file", data, filename=os.path.basename(audio_path), content_type=audio_content_type(audio_path))
        form.add_field("response_format", "verbose_json")
        form.add_field("timestamp_granularities[]", "segment")
        if options.granularity == "word":
            form.add_field("timestamp_granularities[]", "word")
        if options.language:
            form.add_field("language", options.language)
        if options.prompt:
            form.add_field("prompt", options.prompt)
        if options.temperature is not None:
            form.add_field("temperature", str(options.temperature))
        return form

    async def transcribe(self, audio: str, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        options = options or TranscriptionOptions()
        if not self.is_configured():
            raise ProviderNotConfiguredError("Azure OpenAI Whisper provider is not configured", provider=self.name)
        if not os.path.isfile(audio):
            raise UnsupportedInputError(f"Audio file not found: {audio}", provider=self.name)

        size_mb = os.path.getsize(audio) / (1024 * 1024)
        if size_mb > self.max_file_size_mb:
            raise PayloadTooLargeError(
                f"File size {size_mb:.2f}MB exceeds maximum of {self.max_file_size_mb}MB", provider=self.name
            )

        logger.info(f"Starting Azure OpenAI Whisper transcription of {audio} ({size_mb:.2f}MB)")
        started = time.monotonic()
        with open(audio, "rb") as f:
            payload = f.read()

        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        try:
            async with aiohttp.ClientSession(timeout=timeout) as client:
                async with client.post(
                    self._url(),
                    data=self._build_form(audio, payload, options),
                    headers={"api-key": self.config.api_key},
                ) as response:
                    if response.status >= 400:
                        raise error_for_status(self.name, "Azure OpenAI", response.status, await error_detail(response))
                    data = await response.json(content_type=None)
        except asyncio.TimeoutError as e:
            raise TranscriptionTimeoutError(
                f"Azure OpenAI request timed out after {self.config.request_timeout:.0f}s", provider=self.name
            ) from e

        segments = parse_verbose_segments(data)
        processing_time_ms = int((time.monotonic() - started) * 1000)
        language = data.get("language") or options.language or "unknown"
        logger.info(f"Azure OpenAI Whisper transcription completed: {len(segments)} segments, "
                    f"language={language}, {processing_time_ms}ms")

        return TranscriptionResult(
            text=data.get("text", ""),
            segments=segments,
            language=language,
            duration=float(data.get("duration") or 0.0),
            provider=self.name,
            processing_time_ms=processing_time_ms,
            model_used=f"azure/{self.config.deployment_name}",
        )

    async def health_check(self) -> bool:
        if not self.is_configured():
            return False
        url = f"{self.config.endpoint.rstrip('/')}/openai/deployments?api-version={self.config.api_version}"
        try:
            async with aiohttp.ClientSession(timeout=aiohttp.ClientTimeout(total=5)) as client:
                async with client.get(url, headers={"api-key": self.config.api_key}) as response:
                    return response.status == 200
        except (aiohttp.ClientError, asyncio.TimeoutError) as e:
            logger.warning(f"Azure OpenAI health check failed: {e}")
            return False
