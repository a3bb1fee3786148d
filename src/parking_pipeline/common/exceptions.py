"""
Common exception types and error classification for parking_pipeline.

Provides:
- ErrorCategory enum for retry decisions
- Typed exception hierarchy for pipeline errors
- Error classification utilities
"""

from enum import Enum
from typing import Optional


class ErrorCategory(Enum):
    """
    Classification of error types for handling decisions.

    Categories:
        TRANSIENT: Temporary failures that may succeed on a later attempt
                   (e.g., network timeouts, 5xx responses)
        AUTH: Authentication failures (e.g., 401, unreadable token file)
        PERMANENT: Failures that won't succeed on retry
                   (e.g., upstream error marker, bad configuration)
        CIRCUIT_OPEN: Circuit breaker is open, rejecting fast without attempting
        UNKNOWN: Unclassified errors
    """

    TRANSIENT = "transient"
    AUTH = "auth"
    PERMANENT = "permanent"
    CIRCUIT_OPEN = "circuit_open"
    UNKNOWN = "unknown"


class PipelineError(Exception):
    """
    Base exception for all pipeline errors.

    Attributes:
        message: Human-readable error description
        category: Error classification for retry decisions
        cause: Original exception if wrapping
        context: Additional context dict for debugging
    """

    category: ErrorCategory = ErrorCategory.UNKNOWN

    def __init__(
        self,
        message: str,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        self.message = message
        self.cause = cause
        self.context = context or {}
        super().__init__(message)

    @property
    def is_retryable(self) -> bool:
        """Whether this error should trigger a retry."""
        return self.category in (
            ErrorCategory.TRANSIENT,
            ErrorCategory.UNKNOWN,
        )

    def __str__(self) -> str:
        parts = [self.message]
        if self.cause:
            parts.append(f"Caused by: {self.cause}")
        return " | ".join(parts)


class TransientError(PipelineError):
    """Base class for transient/retriable errors."""

    category = ErrorCategory.TRANSIENT


class PermanentError(PipelineError):
    """Base class for permanent/non-retriable errors."""

    category = ErrorCategory.PERMANENT


class ConfigurationError(PermanentError, ValueError):
    """Invalid or missing configuration."""

    pass


# =============================================================================
# Peer Directory
# =============================================================================


class DirectoryUnavailableError(TransientError):
    """
    Orchestration API could not produce a usable peer list.

    Never escapes PeerDirectory: it is recovered there into the
    single-peer fallback.
    """

    pass


# =============================================================================
# Upstream Data API
# =============================================================================


class UpstreamError(PipelineError):
    """
    Upstream data API failure.

    Attributes:
        result_code: Upstream RESULT.CODE marker if the API answered
        status_code: HTTP status if the failure was at the HTTP layer
    """

    def __init__(
        self,
        message: str,
        result_code: Optional[str] = None,
        status_code: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
        cause: Optional[Exception] = None,
        context: Optional[dict] = None,
    ):
        super().__init__(message, cause, context)
        self.result_code = result_code
        self.status_code = status_code
        if category is not None:
            self.category = category
        elif result_code is not None:
            # The API answered and said no: asking again won't change that
            self.category = ErrorCategory.PERMANENT
        else:
            self.category = ErrorCategory.TRANSIENT


class UpstreamCountError(UpstreamError):
    """Total-count discovery request failed."""

    pass


class UpstreamPageError(UpstreamError):
    """A page request for [page_start, page_end] failed."""

    def __init__(
        self,
        message: str,
        page_start: int,
        page_end: int,
        result_code: Optional[str] = None,
        status_code: Optional[int] = None,
        category: Optional[ErrorCategory] = None,
        cause: Optional[Exception] = None,
    ):
        super().__init__(
            message,
            result_code=result_code,
            status_code=status_code,
            category=category,
            cause=cause,
            context={"page_start": page_start, "page_end": page_end},
        )
        self.page_start = page_start
        self.page_end = page_end


# =============================================================================
# Message Bus
# =============================================================================


class PublishError(TransientError):
    """Message bus transport failure."""

    pass


# =============================================================================
# Orchestration
# =============================================================================


class CycleError(PipelineError):
    """
    Unexpected exception surfacing from a work cycle.

    Wraps anything that is not already a PipelineError so the cycle
    outcome always carries a typed error.
    """

    def __init__(
        self,
        message: str,
        state: str,
        cause: Optional[Exception] = None,
    ):
        super().__init__(message, cause, {"state": state})
        self.state = state


# =============================================================================
# Circuit Breaker Errors
# =============================================================================


class CircuitOpenError(PipelineError):
    """Circuit breaker is open, rejecting requests."""

    category = ErrorCategory.CIRCUIT_OPEN

    def __init__(
        self,
        circuit_name: str,
        retry_after: float,
        cause: Optional[Exception] = None,
    ):
        message = f"Circuit '{circuit_name}' is open"
        super().__init__(message, cause, {"circuit_name": circuit_name})
        self.circuit_name = circuit_name
        self.retry_after = retry_after


# =============================================================================
# Error Classification Utilities
# =============================================================================


def classify_http_status(status_code: int) -> ErrorCategory:
    """
    Classify HTTP status code into error category.

    Args:
        status_code: HTTP response status

    Returns:
        Appropriate ErrorCategory
    """
    if 200 <= status_code < 300:
        return ErrorCategory.UNKNOWN  # Not an error

    if status_code in (401, 403):
        return ErrorCategory.AUTH

    if status_code == 429:
        return ErrorCategory.TRANSIENT  # Rate limited

    if 400 <= status_code < 500:
        return ErrorCategory.PERMANENT

    if status_code >= 500:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN


def classify_exception(exc: Exception) -> ErrorCategory:
    """
    Classify an exception into error category.

    Args:
        exc: Exception to classify

    Returns:
        Appropriate ErrorCategory
    """
    if isinstance(exc, PipelineError):
        return exc.category

    exc_type = type(exc).__name__.lower()
    exc_str = str(exc).lower()

    connection_markers = (
        "connectionerror",
        "connection refused",
        "connection reset",
        "connection aborted",
        "no route to host",
        "network unreachable",
        "name resolution",
        "dns",
        "socket",
        "broken pipe",
        "kafkaconnectionerror",
    )
    if any(m in exc_type or m in exc_str for m in connection_markers):
        return ErrorCategory.TRANSIENT

    if "timeout" in exc_type or "timeout" in exc_str:
        return ErrorCategory.TRANSIENT

    auth_markers = ("401", "unauthorized", "authentication", "invalid token")
    if any(m in exc_str for m in auth_markers):
        return ErrorCategory.AUTH

    if "503" in exc_str or "502" in exc_str or "504" in exc_str:
        return ErrorCategory.TRANSIENT

    return ErrorCategory.UNKNOWN
