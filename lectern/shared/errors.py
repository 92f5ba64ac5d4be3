"""
Error taxonomy for detection and transcript extraction.

Exceptions are used inside the core (fetch layer, providers). At the provider
boundary they are converted to ``TranscriptExtractionResult`` failures so
callers always receive data, never a raised error.
"""

from typing import Optional

import requests

from .models import TranscriptExtractionResult


class ErrorCode:
    AUTH_REQUIRED = "AUTH_REQUIRED"
    NO_CAPTIONS = "NO_CAPTIONS"
    NETWORK_ERROR = "NETWORK_ERROR"
    PARSE_ERROR = "PARSE_ERROR"
    NOT_AVAILABLE = "NOT_AVAILABLE"
    MEDIA_PROCESSING = "MEDIA_PROCESSING"
    MEDIA_FAILED = "MEDIA_FAILED"
    MEDIA_PRELIMINARY = "MEDIA_PRELIMINARY"
    MEDIA_HIDDEN = "MEDIA_HIDDEN"
    INVALID_VIDEO = "INVALID_VIDEO"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"


# Substrings that identify transport-level failures in error messages
NETWORK_ERROR_MARKERS = (
    "Failed to fetch",
    "NetworkError",
    "Network request failed",
    "ERR_NETWORK",
    "ECONNRESET",
    "ETIMEDOUT",
    "EAI_AGAIN",
)


class TranscriptError(Exception):
    """Raised when a fetch or extraction step hits a known error condition."""

    def __init__(self, code: str, message: str):
        self.code = code
        self.message = message
        super().__init__(f"[{code}] {message}")


class AuthRequiredError(TranscriptError):
    """A provider endpoint answered 401/403."""

    def __init__(self, url: str = "", status: Optional[int] = None):
        self.url = url
        self.status = status
        super().__init__(ErrorCode.AUTH_REQUIRED, f"Authentication required for {url or 'request'}")


class FetchTimeoutError(TranscriptError):
    """An internally enforced timeout fired. Retryable."""

    def __init__(self, operation: str, timeout_ms: int):
        self.operation = operation
        self.timeout_ms = timeout_ms
        super().__init__(ErrorCode.TIMEOUT, f"{operation} request timed out after {timeout_ms}ms")


class RequestAbortedError(TranscriptError):
    """The caller cancelled the request. Never retried."""

    def __init__(self, message: str = "Request aborted by caller"):
        super().__init__("ABORTED", message)


class HttpStatusError(TranscriptError):
    """A non-2xx response that is not an auth failure."""

    def __init__(self, status: int, url: str = ""):
        self.status = status
        self.url = url
        super().__init__(ErrorCode.NETWORK_ERROR, f"HTTP {status} for {url or 'request'}")


class NetworkError(TranscriptError):
    """Transport-level failure (DNS, connection reset, refused ...)."""

    def __init__(self, message: str):
        super().__init__(ErrorCode.NETWORK_ERROR, message)


def is_timeout_error(error: BaseException) -> bool:
    if isinstance(error, (FetchTimeoutError, requests.Timeout)):
        return True
    if isinstance(error, TranscriptError):
        return error.code == ErrorCode.TIMEOUT
    return "timeout" in str(error).lower() or "timed out" in str(error).lower()


def is_network_error(error: BaseException) -> bool:
    if isinstance(error, (NetworkError, requests.ConnectionError, ConnectionError)):
        return True
    message = str(error)
    return any(marker in message for marker in NETWORK_ERROR_MARKERS)


def is_auth_error(error: BaseException) -> bool:
    if isinstance(error, AuthRequiredError):
        return True
    if isinstance(error, TranscriptError):
        return error.code == ErrorCode.AUTH_REQUIRED
    return str(error) == ErrorCode.AUTH_REQUIRED


def classify_exception(error: BaseException) -> str:
    """Map an exception raised inside the core to an ``ErrorCode`` value."""
    if is_auth_error(error):
        return ErrorCode.AUTH_REQUIRED
    if isinstance(error, RequestAbortedError):
        return ErrorCode.NETWORK_ERROR
    if is_timeout_error(error):
        return ErrorCode.TIMEOUT
    if is_network_error(error) or isinstance(error, HttpStatusError):
        return ErrorCode.NETWORK_ERROR
    if isinstance(error, TranscriptError):
        return error.code
    return ErrorCode.PARSE_ERROR


_FAILURE_MESSAGES = {
    ErrorCode.AUTH_REQUIRED: "Please sign in to {provider} to access this transcript",
    ErrorCode.TIMEOUT: "Request timed out while fetching the transcript",
    ErrorCode.NETWORK_ERROR: "Network error while fetching the transcript",
    ErrorCode.NO_CAPTIONS: "No captions available for this video",
    ErrorCode.NOT_AVAILABLE: "Transcript is not available for this video",
    ErrorCode.INVALID_VIDEO: "Video information is incomplete",
    ErrorCode.INVALID_RESPONSE: "Transcript response was not in an expected format",
}


def failure_from_exception(
    error: BaseException,
    provider: str = "the video provider",
    ai_transcription_available: Optional[bool] = True,
) -> TranscriptExtractionResult:
    """Convert an exception into a failed extraction result."""
    code = classify_exception(error)
    template = _FAILURE_MESSAGES.get(code)
    message = template.format(provider=provider) if template else f"Failed to extract transcript: {error}"
    return TranscriptExtractionResult.failure(message, code, ai_transcription_available)
