"""Typed errors raised while capturing, interpreting and executing commands."""

from __future__ import annotations

import asyncio
import enum


class ErrorKind(str, enum.Enum):
    NETWORK = "network_error"
    API = "api_error"
    TIMEOUT = "timeout_error"
    PERMISSION = "permission_error"
    VALIDATION = "validation_error"
    PROCESSING = "processing_error"


class Severity(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class CommandError(Exception):
    """Base class for pipeline failures.

    ``user_message`` is what gets spoken or shown; the exception text itself
    never reaches a :class:`~lark_voice.types.CommandResult` response.
    """

    kind = ErrorKind.PROCESSING
    severity = Severity.MEDIUM
    recoverable = True
    user_message = "An unexpected error occurred."

    def __init__(self, message: str = "", *, service: str | None = None) -> None:
        super().__init__(message or self.user_message)
        self.service = service

    def to_metadata(self) -> dict[str, object]:
        return {
            "error": str(self),
            "errorType": self.kind.value,
            "severity": self.severity.value,
            "recoverable": self.recoverable,
        }


class NetworkError(CommandError):
    kind = ErrorKind.NETWORK
    severity = Severity.HIGH
    user_message = "There seems to be a network issue. Please check your connection."


class ApiError(CommandError):
    kind = ErrorKind.API
    severity = Severity.HIGH
    user_message = "There was an issue with the AI service. Please try again in a moment."

    def __init__(self, message: str = "", *, service: str | None = None, recoverable: bool = True) -> None:
        super().__init__(message, service=service)
        self.recoverable = recoverable


class InterpreterTimeoutError(CommandError):
    kind = ErrorKind.TIMEOUT
    severity = Severity.MEDIUM
    user_message = "The request timed out. Please try again."


class PermissionDeniedError(CommandError):
    kind = ErrorKind.PERMISSION
    severity = Severity.CRITICAL
    recoverable = False
    user_message = "There was a permission error. Please check your microphone settings."


class CommandValidationError(CommandError):
    kind = ErrorKind.VALIDATION
    severity = Severity.LOW
    recoverable = False
    user_message = "The command couldn't be processed in its current form."


class ReferenceNotFoundError(CommandError):
    """The offline reference data has no answer; the message is spoken as-is."""

    kind = ErrorKind.VALIDATION
    severity = Severity.LOW
    recoverable = False

    def __init__(self, message: str, *, service: str | None = None) -> None:
        super().__init__(message, service=service)
        self.user_message = message


class ProcessingError(CommandError):
    kind = ErrorKind.PROCESSING
    severity = Severity.MEDIUM
    user_message = "An unexpected error occurred."


class CaptureInterruptedError(CommandError):
    """Transient end of a capture session (no speech, audio glitch, network blip)."""

    kind = ErrorKind.PROCESSING
    severity = Severity.LOW
    user_message = "Listening was interrupted and will resume shortly."


def classify_exception(exc: BaseException, *, service: str | None = None) -> CommandError:
    """Map an arbitrary exception onto the pipeline's error kinds."""

    if isinstance(exc, CommandError):
        return exc
    if isinstance(exc, (asyncio.TimeoutError, TimeoutError)):
        return InterpreterTimeoutError(str(exc) or "request timed out", service=service)
    if isinstance(exc, PermissionError):
        return PermissionDeniedError(str(exc), service=service)
    if isinstance(exc, (ConnectionError, OSError)):
        return NetworkError(str(exc), service=service)

    text = str(exc).lower()
    if any(marker in text for marker in ("network", "fetch", "connection")):
        return NetworkError(str(exc), service=service)
    if "timeout" in text or "timed out" in text:
        return InterpreterTimeoutError(str(exc), service=service)
    if "permission" in text or "microphone" in text:
        return PermissionDeniedError(str(exc), service=service)
    if any(marker in text for marker in ("api", "key", "rate limit", "quota")):
        return ApiError(str(exc), service=service)
    if "invalid" in text or "validation" in text:
        return CommandValidationError(str(exc), service=service)
    return ProcessingError(str(exc), service=service)


def user_message_for(error: CommandError, *, offline: bool = False) -> str:
    if offline:
        return "I'm sorry, I couldn't process that command offline. You are currently offline."
    return f"I'm sorry, I encountered an error processing your command. {error.user_message}"


__all__ = [
    "ApiError",
    "CaptureInterruptedError",
    "CommandError",
    "CommandValidationError",
    "ErrorKind",
    "InterpreterTimeoutError",
    "NetworkError",
    "PermissionDeniedError",
    "ProcessingError",
    "ReferenceNotFoundError",
    "Severity",
    "classify_exception",
    "user_message_for",
]
