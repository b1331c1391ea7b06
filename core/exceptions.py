"""
Custom exceptions for the aircraft sync pipeline with structured error context.

This module provides the exception hierarchy used throughout the sync
pipeline. Each exception carries context information for debugging and for
the error details stored on the sync run.

Exception Hierarchy:
    SyncException (base)
    ├── AuthError
    ├── TransportError
    │   ├── NetworkError
    │   └── RateLimitError
    ├── ValidationError
    ├── PersistenceError
    │   └── ReconciliationConflictError
    ├── SyncStateError
    ├── SyncAlreadyRunningError
    ├── SyncCancelledError
    └── RetryableError / NonRetryableError (mixins)

Fatal vs. non-fatal:
    AuthError, TransportError raised while paginating and SyncCancelledError
    abort a run (status FAILED). TransportError and ValidationError raised
    while enriching one aircraft, and PersistenceError raised while
    reconciling one record, are counted and the run continues.
"""

from typing import Optional, Dict, Any
from datetime import datetime, timezone


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (aircraft id, page, url, etc.)
        original_exception: The original exception that was caught (if any)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = datetime.now(timezone.utc)

        # Add timestamp to context
        self.context["error_timestamp"] = self.timestamp.isoformat()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/storage."""
        return {
            "error_type": self.__class__.__name__,
            "message": self.message,
            "context": self.context,
            "timestamp": self.timestamp.isoformat(),
            "original_error": str(self.original_exception) if self.original_exception else None
        }


# ============================================================================
# Retry Strategy Mixins
# ============================================================================

class RetryableError(SyncException):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Service unavailable (HTTP 5xx)
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        max_retries: int = 3,
        retry_delay: float = 1.0
    ):
        super().__init__(message, context, original_exception)
        self.max_retries = max_retries
        self.retry_delay = retry_delay


class NonRetryableError(SyncException):
    """
    Mixin for errors that should NOT trigger retry logic.

    Use this for permanent errors like:
    - Bad credentials or corrupted token responses
    - Invalid payload shapes
    - Identity conflicts in the store
    """
    pass


# ============================================================================
# Provider Errors
# ============================================================================

class AuthError(NonRetryableError):
    """
    Raised when the provider login fails or returns unusable tokens.

    Context should include:
        - login_url: The login endpoint
        - status_code: HTTP status code (if applicable)
        - reason: Which shape check failed (if applicable)
    """
    pass


class TransportError(SyncException):
    """
    Raised when a provider request fails (network failure, non-2xx status).

    Context should include:
        - url: The endpoint that failed (tokens redacted)
        - status_code: HTTP status code (if applicable)
        - retry_count: Number of attempts made
    """
    pass


class NetworkError(RetryableError, TransportError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, TransportError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after  # Seconds to wait before retry
        if retry_after:
            self.context["retry_after"] = retry_after


class UnauthorizedResourceError(NonRetryableError, TransportError):
    """
    Raised when the provider answers 401 for a resource even with a fresh session.

    The login itself succeeded, so this is scoped to the one resource
    (typically a sub-resource the account is not licensed for).
    """
    pass


# ============================================================================
# Data Errors
# ============================================================================

class ValidationError(NonRetryableError):
    """
    Raised when a payload has an unexpected shape.

    Context should include:
        - field_name / category: What was malformed
        - aircraft_id: Provider aircraft id (if known)
    """
    pass


class PersistenceError(SyncException):
    """
    Raised when writing one record to the store fails.

    Context should include:
        - operation: CREATE or UPDATE
        - aircraft_id: Internal or provider id of the record
    """
    pass


class ReconciliationConflictError(NonRetryableError, PersistenceError):
    """
    Raised when identity keys of one incoming record match different stored rows.

    Context should include:
        - matches: Mapping of identity key to the stored row id it matched
    """
    pass


# ============================================================================
# Run Lifecycle Errors
# ============================================================================

class SyncStateError(NonRetryableError):
    """Raised on an illegal sync run state transition."""
    pass


class SyncAlreadyRunningError(NonRetryableError):
    """Raised when a sync is triggered while another run is active."""
    pass


class SyncCancelledError(NonRetryableError):
    """Raised at a page/batch boundary when a run was cancelled or hit its deadline."""
    pass
