"""Exceptions raised by the job queue and the pipeline coordinator."""

from typing import Any, Dict, Optional


class CaptionPipelineError(Exception):
    """Base exception for pipeline failures.

    Attributes:
        error_code: Machine-readable error identifier.
        context: Extra key-value details such as job or session ids.
    """

    error_code: str = "PIPELINE_ERROR"

    def __init__(self, message: str, context: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.context = context or {}

    def to_dict(self) -> Dict[str, Any]:
        return {"error": self.error_code, "message": self.message, "context": self.context}


class QueueConnectionError(CaptionPipelineError):
    """The message bus is unreachable or dropped the connection."""

    error_code = "QUEUE_CONNECTION_ERROR"


class JobValidationError(CaptionPipelineError):
    """A job or result message is missing required fields or malformed."""

    error_code = "JOB_VALIDATION_ERROR"


class CoordinatorError(CaptionPipelineError):
    """A session or chunk is missing, or a signal does not fit the session state."""

    error_code = "COORDINATOR_ERROR"


class SessionNotFoundError(CoordinatorError):
    error_code = "SESSION_NOT_FOUND"


class InvalidTransitionError(CoordinatorError):
    error_code = "INVALID_TRANSITION"


class DownloadError(CaptionPipelineError):
    """A source video could not be fetched over HTTP."""

    error_code = "DOWNLOAD_FAILED"
