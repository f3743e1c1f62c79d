from __future__ import annotations

from typing import Any, List, Optional


class TodoAppError(Exception):
    """Base class for errors raised by the todo service outside of FastAPI validation."""


# PUBLIC_INTERFACE
class InvalidSortSettings(TodoAppError):
    """
    Raised when sort weights fall outside [0, 1] or are not numbers.

    The settings write path is the only entry point for weights, so this is
    surfaced to the caller (HTTP 400) and nothing is persisted.
    """

    def __init__(self, message: str = "Invalid settings values", errors: Optional[List[Any]] = None) -> None:
        super().__init__(message)
        self.message = message
        self.errors = errors or []


# PUBLIC_INTERFACE
class VoiceProcessingError(TodoAppError):
    """Failure in the voice-to-todo pipeline; carries the HTTP status to answer with."""

    status_code: int = 500
    default_message: str = "Failed to process recording. Please try again."

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or self.default_message)
        self.message = message or self.default_message


class VoiceNotConfigured(VoiceProcessingError):
    status_code = 500
    default_message = "OpenAI API key not configured"


class InvalidAudio(VoiceProcessingError):
    status_code = 400
    default_message = "No audio file provided"


class NoSpeechDetected(VoiceProcessingError):
    status_code = 400
    default_message = "No speech detected in the recording"


class NoTodosExtracted(VoiceProcessingError):
    status_code = 400
    default_message = "No actionable todos could be extracted from the recording"


class UpstreamQuotaExceeded(VoiceProcessingError):
    status_code = 429
    default_message = "OpenAI API quota exceeded. Please try again later."


class UpstreamRateLimited(VoiceProcessingError):
    status_code = 429
    default_message = "Too many requests. Please try again in a moment."


class UpstreamAuthFailed(VoiceProcessingError):
    status_code = 500
    default_message = "OpenAI API key is invalid"


class UpstreamFailure(VoiceProcessingError):
    status_code = 500


# PUBLIC_INTERFACE
class DuplicateTag(TodoAppError):
    """Raised by repositories when a user already owns a tag with the requested name."""

    def __init__(self, name: str) -> None:
        super().__init__(f"Tag '{name}' already exists")
        self.name = name
