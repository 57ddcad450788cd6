"""Exceptions raised by speech-to-text providers."""

from typing import Any, Optional


class TranscriptionError(Exception):
    """Base exception for provider failures.

    Attributes:
        error_code: Machine-readable error identifier.
        provider: Name of the provider that failed.
        context: Extra key-value details (HTTP status, request id, ...).
    """

    error_code: str = "TRANSCRIPTION_ERROR"

    def __init__(self, message: str, provider: Optional[str] = None, **context: Any) -> None:
        super().__init__(message)
        self.provider = provider
        self.context = context


class ProviderNotConfiguredError(TranscriptionError):
    error_code = "PROVIDER_NOT_CONFIGURED"


class UnsupportedInputError(TranscriptionError):
    error_code = "UNSUPPORTED_INPUT"


class RateLimitError(TranscriptionError):
    error_code = "RATE_LIMITED"


class AuthenticationError(TranscriptionError):
    error_code = "AUTHENTICATION_FAILED"


class PayloadTooLargeError(TranscriptionError):
    error_code = "PAYLOAD_TOO_LARGE"


class TranscriptionTimeoutError(TranscriptionError):
    error_code = "TRANSCRIPTION_TIMEOUT"


class ProviderRequestError(TranscriptionError):
    error_code = "PROVIDER_REQUEST_FAILED"

    def __init__(self, message: str, provider: Optional[str] = None, status: Optional[int] = None, **context: Any) -> None:
        super().__init__(message, provider=provider, status=status, **context)
        self.status = status


def error_for_status(provider: str, label: str, status: int, detail: str = "") -> TranscriptionError:
    """Map an HTTP status from a provider into a descriptive exception."""
    if status == 429:
        return RateLimitError("Rate limit exceeded. Please retry after a moment.", provider=provider, status=status)
    if status in (401, 403):
        return AuthenticationError(f"{label} authentication failed. Check API key.", provider=provider, status=status)
    if status == 413:
        return PayloadTooLargeError(f"Audio file too large for {label}.", provider=provider, status=status)
    message = f"{label} transcription failed (HTTP {status})"
    if detail:
        message = f"{message}: {detail}"
    return ProviderRequestError(message, provider=provider, status=status)
