"""
Configuration management for the video captioning pipeline.
"""

import os
from dataclasses import dataclass
from typing import Optional

from video.ffmpeg_toolkit import DEFAULT_CHUNK_DURATION, clamp_chunk_duration


def _env_int(name: str, default: int) -> int:
    value = os.getenv(name)
    return int(value) if value not in (None, "") else default


@dataclass
class PipelineConfig:
    """Configuration for the captioning worker and coordinator."""

    # Message bus
    redis_url: str = "redis://localhost:6379/0"
    jobs_channel: str = "caption:video:jobs"
    results_channel: str = "caption:video:results"
    worker_concurrency: int = 2
    job_max_attempts: int = 1  # single attempt, failed stages are not retried

    # Chunking
    chunk_duration_seconds: float = DEFAULT_CHUNK_DURATION

    # Local scratch space and object storage
    temp_dir: str = "/tmp/caption-worker"
    storage_root: str = "./storage"
    storage_backend: str = "filesystem"  # filesystem, azure
    storage_public_url: Optional[str] = None  # e.g. http://localhost:8000/files
    azure_storage_connection_string: str = ""
    azure_storage_container: str = "caption-videos"

    # Media tools
    ffmpeg_path: str = "ffmpeg"
    ffprobe_path: str = "ffprobe"
    audio_sample_rate: int = 16000  # Hz, required for whisper
    preview_width: int = 854
    output_format: str = "mp4"  # mp4, mov

    # Transcription provider selection
    transcription_provider: str = "azure-openai"  # azure-openai, azure-gpt4o, fal-whisper, local-whisper
    word_transcription_provider: str = "fal-whisper"

    # Azure OpenAI Whisper
    azure_openai_endpoint: str = ""
    azure_openai_api_key: str = ""
    azure_openai_whisper_deployment: str = "whisper"
    azure_openai_api_version: str = "2024-02-01"

    # Azure GPT-4o transcribe
    azure_gpt4o_endpoint: str = ""
    azure_gpt4o_api_key: str = ""
    azure_gpt4o_deployment: str = "gpt-4o-transcribe"
    azure_gpt4o_api_version: str = "2025-03-01-preview"

    # Fal.ai Whisper
    fal_key: str = ""
    fal_poll_interval_ms: int = 3000
    fal_max_poll_attempts: int = 100

    # Local faster-whisper
    whisper_model: str = "base"  # base, small, medium, large
    whisper_language: Optional[str] = None  # Auto-detect if None
    whisper_device: str = "cpu"  # cpu, cuda
    compute_type: str = "int8"  # float16, float32, int8, etc. (depends on whisper model support)

    log_level: str = "INFO"

    def __post_init__(self):
        self.chunk_duration_seconds = clamp_chunk_duration(self.chunk_duration_seconds)
        if self.worker_concurrency < 1:
            raise ValueError("worker_concurrency must be at least 1")
        if self.output_format not in ("mp4", "mov"):
            raise ValueError(f"Unsupported output format: {self.output_format}")
        if self.storage_backend not in ("filesystem", "azure"):
            raise ValueError(f"Unsupported storage backend: {self.storage_backend}")

    @classmethod
    def from_env(cls) -> "PipelineConfig":
        """Create configuration from environment variables."""
        return cls(
            redis_url=os.getenv("REDIS_URL", cls.redis_url),
            jobs_channel=os.getenv("JOBS_CHANNEL", cls.jobs_channel),
            results_channel=os.getenv("RESULTS_CHANNEL", cls.results_channel),
            worker_concurrency=_env_int("WORKER_CONCURRENCY", cls.worker_concurrency),
            job_max_attempts=_env_int("JOB_MAX_ATTEMPTS", cls.job_max_attempts),
            chunk_duration_seconds=float(os.getenv("CHUNK_DURATION_SECONDS", cls.chunk_duration_seconds)),
            temp_dir=os.getenv("TEMP_DIR", cls.temp_dir),
            storage_backend=os.getenv("STORAGE_BACKEND", cls.storage_backend).lower(),
            storage_root=os.getenv("STORAGE_ROOT", cls.storage_root),
            storage_public_url=os.getenv("STORAGE_PUBLIC_URL", cls.storage_public_url),
            azure_storage_connection_string=os.getenv("AZURE_STORAGE_CONNECTION_STRING",
                                                      cls.azure_storage_connection_string),
            azure_storage_container=os.getenv("AZURE_STORAGE_CONTAINER_NAME", cls.azure_storage_container),
            ffmpeg_path=os.getenv("FFMPEG_PATH", cls.ffmpeg_path),
            ffprobe_path=os.getenv("FFPROBE_PATH", cls.ffprobe_path),
            audio_sample_rate=_env_int("AUDIO_SAMPLE_RATE", cls.audio_sample_rate),
            preview_width=_env_int("PREVIEW_WIDTH", cls.preview_width),
            output_format=os.getenv("OUTPUT_FORMAT", cls.output_format),
            transcription_provider=os.getenv("TRANSCRIPTION_PROVIDER", cls.transcription_provider),
            word_transcription_provider=os.getenv("WORD_TRANSCRIPTION_PROVIDER", cls.word_transcription_provider),
            azure_openai_endpoint=os.getenv("AZURE_OPENAI_ENDPOINT", cls.azure_openai_endpoint),
            azure_openai_api_key=os.getenv("AZURE_OPENAI_API_KEY", cls.azure_openai_api_key),
            azure_openai_whisper_deployment=os.getenv("AZURE_OPENAI_WHISPER_DEPLOYMENT",
                                                      cls.azure_openai_whisper_deployment),
            azure_openai_api_version=os.getenv("AZURE_OPENAI_API_VERSION", cls.azure_openai_api_version),
            azure_gpt4o_endpoint=os.getenv("AZURE_GPT4O_ENDPOINT", cls.azure_gpt4o_endpoint),
            azure_gpt4o_api_key=os.getenv("AZURE_GPT4O_API_KEY", cls.azure_gpt4o_api_key),
            azure_gpt4o_deployment=os.getenv("AZURE_GPT4O_DEPLOYMENT", cls.azure_gpt4o_deployment),
            azure_gpt4o_api_version=os.getenv("AZURE_GPT4O_API_VERSION", cls.azure_gpt4o_api_version),
            fal_key=os.getenv("FAL_KEY", cls.fal_key),
            fal_poll_interval_ms=_env_int("FAL_POLL_INTERVAL_MS", cls.fal_poll_interval_ms),
            fal_max_poll_attempts=_env_int("FAL_MAX_POLL_ATTEMPTS", cls.fal_max_poll_attempts),
            whisper_model=os.getenv("WHISPER_MODEL", cls.whisper_model),
            whisper_language=os.getenv("WHISPER_LANGUAGE", cls.whisper_language),
            whisper_device=os.getenv("WHISPER_DEVICE", cls.whisper_device),
            compute_type=os.getenv("COMPUTE_TYPE", cls.compute_type),
            log_level=os.getenv("LOG_LEVEL", cls.log_level).upper(),
        )
