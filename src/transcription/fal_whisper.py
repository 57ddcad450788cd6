"""
Fal.ai Whisper client: queue submission followed by status polling.

The service only reads audio from a URL, so callers must publish the audio
file before transcribing.
"""

import asyncio
import logging
import time
from dataclasses import dataclass
from typing import Any, Dict, List, Optional

import aiohttp

from .azure_whisper import error_detail
from .base import (
    ProviderCapabilities,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
    is_local_path,
)
from .errors import (
    ProviderNotConfiguredError,
    ProviderRequestError,
    TranscriptionError,
    TranscriptionTimeoutError,
    UnsupportedInputError,
    error_for_status,
)

logger = logging.getLogger(__name__)

FAL_API_BASE = "https://queue.fal.run"
FAL_MODEL = "fal-ai/whisper"

# Statuses that mean "not ready yet" while polling; anything else is fatal
TRANSIENT_POLL_STATUSES = frozenset({404, 429, 502, 503, 504})


@dataclass
class FalWhisperConfig:
    api_key: str = ""
    chunk_level: str = "word"  # word, segment
    poll_interval: float = 3.0  # seconds
    max_poll_attempts: int = 100  # ~5 minutes at the default interval
    base_url: str = FAL_API_BASE
    request_timeout: float = 30.0


def segments_from_chunks(chunks: List[Dict[str, Any]]) -> List[TranscriptionSegment]:
    segments = []
    for chunk in chunks or []:
        timestamp = chunk.get("timestamp") or [0.0, 0.0]
        start = float(timestamp[0] or 0.0)
        # Fal reports a null end for a trailing chunk that runs to the end of the audio
        end = float(timestamp[1]) if len(timestamp) > 1 and timestamp[1] is not None else start
        segments.append(TranscriptionSegment(start=start, end=max(end, start), text=str(chunk.get("text", "")).strip()))
    return segments


class FalWhisperProvider(TranscriptionProvider):
    """Word-level Whisper on Fal.ai's asynchronous queue API."""

    name = "fal-whisper"

    def __init__(self, config: FalWhisperConfig):
        self.config = config

    def is_configured(self) -> bool:
        return bool(self.config.api_key)

    @property
    def capabilities(self) -> ProviderCapabilities:
        return ProviderCapabilities(
            supports_word_timings=self.config.chunk_level == "word",
            accepts_local_files=False,
            polling=True,
            max_file_size_mb=100,
            max_duration_seconds=7200,
            supported_formats=("mp3", "mp4", "mpeg", "mpga", "m4a", "wav", "webm", "flac", "ogg"),
        )

    def _headers(self) -> Dict[str, str]:
        return {"Authorization": f"Key {self.config.api_key}"}

    async def _request_json(self, method: str, url: str, json_body: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        timeout = aiohttp.ClientTimeout(total=self.config.request_timeout)
        async with aiohttp.ClientSession(timeout=timeout) as client:
            async with client.request(method, url, json=json_body, headers=self._headers()) as response:
                if response.status >= 400:
                    raise error_for_status(self.name, "Fal.ai", response.status, await error_detail(response))
                return await response.json(content_type=None)

    async def submit(self, audio_url: str, language: Optional[str] = None) -> str:
        """Queue a transcription request and return its request id."""
        body: Dict[str, Any] = {
            "audio_url": audio_url,
            "chunk_level": self.config.chunk_level,
            "task": "transcribe",
        }
        if language:
            body["language"] = language
        data = await self._request_json("POST", f"{self.config.base_url}/{FAL_MODEL}", body)
        request_id = data.get("request_id")
        if not request_id:
            raise ProviderRequestError("Fal.ai queue response missing request_id", provider=self.name)
        logger.info(f"Fal.ai request submitted: {request_id}")
        return request_id

    async def check_status(self, request_id: str) -> Dict[str, Any]:
        return await self._request_json("GET", f"{self.config.base_url}/{FAL_MODEL}/requests/{request_id}/status")

    async def fetch_result(self, request_id: str) -> Dict[str, Any]:
        return await self._request_json("GET", f"{self.config.base_url}/{FAL_MODEL}/requests/{request_id}")

    async def poll_result(self, request_id: str) -> Dict[str, Any]:
        """
        Poll until the request completes.

        Transient HTTP statuses keep the loop going; a FAILED status or any
        other HTTP error aborts. Gives up after max_poll_attempts.
        """
        for attempt in range(1, self.config.max_poll_attempts + 1):
            try:
                status = await self.check_status(request_id)
            except TranscriptionError as e:
                http_status = e.context.get("status")
                if http_status in TRANSIENT_POLL_STATUSES:
                    logger.debug(f"Fal.ai request {request_id} not ready (HTTP {http_status}), attempt {attempt}")
                    await asyncio.sleep(self.config.poll_interval)
                    continue
                raise
            except aiohttp.ClientConnectionError as e:
                logger.warning(f"Fal.ai status check connection error on attempt {attempt}: {e}")
                await asyncio.sleep(self.config.poll_interval)
                continue

            state = status.get("status")
            logger.debug(f"Fal.ai status for {request_id}: {state} (attempt {attempt})")
            if state == "COMPLETED":
                return await self.fetch_result(request_id)
            if state == "FAILED":
                raise ProviderRequestError(f"Fal.ai transcription failed for request {request_id}",
                                           provider=self.name, request_id=request_id)
            await asyncio.sleep(self.config.poll_interval)

        raise TranscriptionTimeoutError(
            f"Fal.ai transcription timed out after {self.config.max_poll_attempts} attempts for request {request_id}",
            provider=self.name,
            request_id=request_id,
        )

    async def transcribe(self, audio: str, options: Optional[TranscriptionOptions] = None) -> TranscriptionResult:
        options = options or TranscriptionOptions(granularity="word")
        if not self.is_configured():
            raise ProviderNotConfiguredError("Fal.ai Whisper provider is not configured", provider=self.name)
        if is_local_path(audio):
            raise UnsupportedInputError(
                "Fal.ai Whisper requires an audio URL. Upload the file to storage first.", provider=self.name
            )

        started = time.monotonic()
        request_id = await self.submit(audio, options.language)
        data = await self.poll_result(request_id)
        processing_time_ms = int((time.monotonic() - started) * 1000)

        segments = segments_from_chunks(data.get("chunks") or [])
        languages = data.get("inferred_languages") or []
        language = languages[0] if languages else (options.language or "unknown")
        duration = segments[-1].end if segments else 0.0
        logger.info(f"Fal.ai Whisper transcription completed: {len(segments)} segments, {processing_time_ms}ms")

        return TranscriptionResult(
            text=data.get("text", ""),
            segments=segments,
            language=language,
            duration=duration,
            provider=self.name,
            processing_time_ms=processing_time_ms,
            model_used=FAL_MODEL,
        )
