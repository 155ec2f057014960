"""
Error handling utilities for the analysis engine.

Provides the error taxonomy shared by the rate limiter, media fetcher, Gemini
client and entity analyzers, plus classification of raw provider exceptions
into retryable and terminal failures.
"""

from enum import Enum
from typing import Optional

from google.api_core import exceptions as google_exceptions


class ErrorCategory(Enum):
    """Enumeration of different error categories for better error handling."""
    NETWORK_ERROR = "network_error"
    AUTHENTICATION_ERROR = "authentication_error"
    QUOTA_ERROR = "quota_error"
    MODEL_ERROR = "model_error"
    TIMEOUT_ERROR = "timeout_error"
    MEDIA_ERROR = "media_error"
    CONFIGURATION_ERROR = "configuration_error"
    RATE_LIMIT_TIMEOUT = "rate_limit_timeout"
    DOWNLOAD_ERROR = "download_error"
    FILE_TOO_LARGE = "file_too_large"
    EMPTY_ANALYSIS = "empty_analysis"
    EMBEDDING_ERROR = "embedding_error"
    PROVIDER_PROCESSING = "provider_processing"
    NOT_FOUND = "not_found"
    UNKNOWN_ERROR = "unknown_error"


class AnalysisError(Exception):
    """Custom exception for analysis errors with categorization."""

    def __init__(self, message: str, category: ErrorCategory, recoverable: bool = False, retry_delay: Optional[int] = None):
        super().__init__(message)
        self.category = category
        self.recoverable = recoverable
        self.retry_delay = retry_delay
        self.message = message

    def __str__(self):
        return f"[{self.category.value}] {self.message}"


class RateLimitTimeout(AnalysisError):
    """No rate limiter slot became free within the maximum wait."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.RATE_LIMIT_TIMEOUT, recoverable=True, retry_delay=60)


class DownloadFailure(AnalysisError):
    """Media could not be fetched to scratch storage. Terminal for the entity."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.DOWNLOAD_ERROR, recoverable=False)


class SourceNotFound(DownloadFailure):
    """No usable source URL could be resolved for a media item."""


class FileTooLarge(AnalysisError):
    """Media exceeds the provider's hard size ceiling. Permanent."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.FILE_TOO_LARGE, recoverable=False)


class EmptyAnalysisError(AnalysisError):
    """The provider returned blank text."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.EMPTY_ANALYSIS, recoverable=False)


class EmbeddingFailure(AnalysisError):
    """Embedding generation failed or returned no vector."""

    def __init__(self, message: str, recoverable: bool = False):
        super().__init__(message, ErrorCategory.EMBEDDING_ERROR, recoverable=recoverable)


class ProviderProcessingFailed(AnalysisError):
    """The provider's file API reported a failed processing state."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.PROVIDER_PROCESSING, recoverable=False)


class ProviderProcessingTimeout(ProviderProcessingFailed):
    """The provider's file API did not become active within the poll budget."""


class EntityNotFound(AnalysisError):
    """A job, portfolio, project or media row does not exist."""

    def __init__(self, message: str):
        super().__init__(message, ErrorCategory.NOT_FOUND, recoverable=False)


def error_message(error: BaseException) -> str:
    """Human-readable message persisted on failed entities and jobs."""
    if isinstance(error, AnalysisError):
        return error.message
    return str(error) or type(error).__name__


def classify_error(error: Exception, context: str = "") -> AnalysisError:
    """
    Classify an exception into a specific error category with recovery information.

    Args:
        error: The exception to classify
        context: Additional context about where the error occurred

    Returns:
        AnalysisError with appropriate category and recovery information
    """
    if isinstance(error, AnalysisError):
        return error

    # Typed provider errors take precedence over message heuristics
    if isinstance(error, google_exceptions.ResourceExhausted):
        return AnalysisError(
            f"Quota exceeded in {context}: {error}",
            ErrorCategory.QUOTA_ERROR,
            recoverable=True,
            retry_delay=60
        )
    if isinstance(error, (google_exceptions.Unauthenticated, google_exceptions.PermissionDenied)):
        return AnalysisError(
            f"Authentication error in {context}: {error}",
            ErrorCategory.AUTHENTICATION_ERROR,
            recoverable=False
        )
    if isinstance(error, google_exceptions.DeadlineExceeded):
        return AnalysisError(
            f"Network timeout in {context}: {error}",
            ErrorCategory.TIMEOUT_ERROR,
            recoverable=True,
            retry_delay=5
        )
    if isinstance(error, (google_exceptions.ServiceUnavailable, google_exceptions.InternalServerError)):
        return AnalysisError(
            f"Network error in {context}: {error}",
            ErrorCategory.NETWORK_ERROR,
            recoverable=True,
            retry_delay=2
        )

    error_str = str(error).lower()

    # Network-related errors
    if isinstance(error, TimeoutError) or any(pattern in error_str for pattern in ['connection', 'timeout', 'network', 'dns', 'ssl']):
        if isinstance(error, TimeoutError) or 'timeout' in error_str:
            return AnalysisError(
                f"Network timeout in {context}: {error}",
                ErrorCategory.TIMEOUT_ERROR,
                recoverable=True,
                retry_delay=5
            )
        return AnalysisError(
            f"Network error in {context}: {error}",
            ErrorCategory.NETWORK_ERROR,
            recoverable=True,
            retry_delay=2
        )

    # Authentication errors
    elif any(pattern in error_str for pattern in ['unauthorized', 'forbidden', 'authentication', 'api key', 'credentials']):
        return AnalysisError(
            f"Authentication error in {context}: {error}",
            ErrorCategory.AUTHENTICATION_ERROR,
            recoverable=False
        )

    # Quota/rate limit errors
    elif any(pattern in error_str for pattern in ['quota', 'rate limit', 'exceeded', '429']):
        return AnalysisError(
            f"Quota exceeded in {context}: {error}",
            ErrorCategory.QUOTA_ERROR,
            recoverable=True,
            retry_delay=60
        )

    # Model availability errors
    elif any(pattern in error_str for pattern in ['model not found', 'model not available', 'unsupported model']):
        return AnalysisError(
            f"Model error in {context}: {error}",
            ErrorCategory.MODEL_ERROR,
            recoverable=True,
            retry_delay=10
        )

    # Media processing errors
    elif any(pattern in error_str for pattern in ['media', 'file', 'upload', 'processing', 'mime']):
        return AnalysisError(
            f"Media processing error in {context}: {error}",
            ErrorCategory.MEDIA_ERROR,
            recoverable=False
        )

    return AnalysisError(
        f"Unknown error in {context}: {error}",
        ErrorCategory.UNKNOWN_ERROR,
        recoverable=False
    )
