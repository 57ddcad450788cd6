"""
Provider selection, done once at startup from configuration.
"""

import logging
from dataclasses import dataclass
from typing import Callable, Dict, Optional

from .azure_gpt4o import AzureGPT4oConfig, AzureGPT4oProvider
from .azure_whisper import AzureWhisperConfig, AzureWhisperProvider
from .base import TranscriptionProvider
from .errors import ProviderNotConfiguredError
from .fal_whisper import FalWhisperConfig, FalWhisperProvider
from .whisper_client import LocalWhisperProvider

logger = logging.getLogger(__name__)


def _azure_openai(config) -> TranscriptionProvider:
    return AzureWhisperProvider(AzureWhisperConfig(
        endpoint=config.azure_openai_endpoint,
        api_key=config.azure_openai_api_key,
        deployment_name=config.azure_openai_whisper_deployment,
        api_version=config.azure_openai_api_version,
    ))


def _azure_gpt4o(config) -> TranscriptionProvider:
    return AzureGPT4oProvider(AzureGPT4oConfig(
        endpoint=config.azure_gpt4o_endpoint,
        api_key=config.azure_gpt4o_api_key,
        deployment_name=config.azure_gpt4o_deployment,
        api_version=config.azure_gpt4o_api_version,
    ))


def _fal_whisper(config) -> TranscriptionProvider:
    return FalWhisperProvider(FalWhisperConfig(
        api_key=config.fal_key,
        chunk_level="word",
        poll_interval=config.fal_poll_interval_ms / 1000.0,
        max_poll_attempts=config.fal_max_poll_attempts,
    ))


def _local_whisper(config) -> TranscriptionProvider:
    return LocalWhisperProvider(
        model_size=config.whisper_model,
        device=config.whisper_device,
        compute_type=config.compute_type,
        language=config.whisper_language,
    )


PROVIDER_BUILDERS: Dict[str, Callable[..., TranscriptionProvider]] = {
    "azure-openai": _azure_openai,
    "azure-gpt4o": _azure_gpt4o,
    "fal-whisper": _fal_whisper,
    "local-whisper": _local_whisper,
}


@dataclass(frozen=True)
class ProviderSet:
    """The primary provider plus the one used for word-level captions."""
    primary: TranscriptionProvider
    word_level: TranscriptionProvider

    def for_granularity(self, granularity: str) -> TranscriptionProvider:
        return self.word_level if granularity == "word" else self.primary


def _build_one(name: str, config) -> Optional[TranscriptionProvider]:
    builder = PROVIDER_BUILDERS.get(name)
    if builder is None:
        raise ValueError(f"Unknown transcription provider: {name}. Choose from {sorted(PROVIDER_BUILDERS)}")
    provider = builder(config)
    if not provider.is_configured():
        logger.error(f"Transcription provider {name} configuration incomplete")
        return None
    logger.info(f"Transcription provider {name} initialized")
    return provider


def build_providers(config) -> ProviderSet:
    """
    Build the primary and word-level providers named in the configuration.

    Each side falls back to the other when its own provider is not
    configured. Fails when neither is usable.
    """
    primary_name = config.transcription_provider
    word_name = config.word_transcription_provider

    primary = _build_one(primary_name, config)
    word_level = primary if word_name == primary_name else _build_one(word_name, config)

    if word_level is None and primary is not None:
        logger.warning("Word-level provider not available, falling back to primary provider")
        word_level = primary
    if primary is None and word_level is not None:
        logger.warning("Primary provider not available, falling back to word-level provider")
        primary = word_level
    if primary is None:
        raise ProviderNotConfiguredError(
            f"No transcription provider configured (tried {primary_name}, {word_name})"
        )
    return ProviderSet(primary=primary, word_level=word_level)
