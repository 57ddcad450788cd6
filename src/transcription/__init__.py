"""
Speech-to-text providers behind a single transcription contract.
"""

__version__ = "1.0.0"

from .azure_gpt4o import AzureGPT4oConfig, AzureGPT4oProvider
from .azure_whisper import AzureWhisperConfig, AzureWhisperProvider
from .base import (
    ProviderCapabilities,
    TranscriptionOptions,
    TranscriptionProvider,
    TranscriptionResult,
    TranscriptionSegment,
    WordTimestamp,
)
from .errors import TranscriptionError
from .factory import ProviderSet, build_providers
from .fal_whisper import FalWhisperConfig, FalWhisperProvider
from .whisper_client import LocalWhisperProvider

__all__ = [
    "AzureGPT4oConfig",
    "AzureGPT4oProvider",
    "AzureWhisperConfig",
    "AzureWhisperProvider",
    "FalWhisperConfig",
    "FalWhisperProvider",
    "LocalWhisperProvider",
    "ProviderCapabilities",
    "ProviderSet",
    "TranscriptionError",
    "TranscriptionOptions",
    "TranscriptionProvider",
    "TranscriptionResult",
    "TranscriptionSegment",
    "WordTimestamp",
    "build_providers",
]
