"""
Custom exceptions for the delta sync pipeline with structured error context.

This module provides the exception hierarchy used throughout a sync round.
Each exception carries context information for debugging and for the
sync-run audit trail.

Exception Hierarchy:
    SyncException (base)
    ├── ConfigurationError
    │   └── WriteConfigError
    ├── CheckpointError
    │   └── MissingCheckpointError
    ├── SourceError
    │   ├── SourceReadError
    │   ├── NetworkError / RateLimitError (retryable)
    │   └── AuthenticationError / ResourceNotFoundError
    ├── TransformationError
    │   ├── KeyGenerationError
    │   └── RecordPreparationError
    ├── TableStoreError
    │   ├── UnsupportedTableTypeError
    │   └── InstantStateError (retryable)
    ├── WriteError
    │   ├── CommitFailedError
    │   ├── WriteErrorsExceededError
    │   └── RollbackError
    ├── CatalogSyncError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from datetime import datetime


class SyncException(Exception):
    """
    Base exception for all sync-related errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (table, instant, checkpoint, etc.)
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
        self.timestamp = datetime.utcnow()

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
    Mixin for errors that may succeed when the operation is attempted again.

    Use this for transient errors like:
    - Network timeouts
    - Rate limiting (HTTP 429)
    - Instant-time races on the table timeline
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
    Mixin for errors that must NOT be retried.

    Use this for permanent errors like:
    - Invalid write configuration
    - Authentication failures (HTTP 401, 403)
    - Unsupported table types
    """
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Base exception for invalid configuration."""
    pass


class WriteConfigError(ConfigurationError):
    """
    Exception raised when the write-client configuration violates an invariant
    the sync round depends on.

    Context should include:
        - setting: Name of the offending setting
        - expected: Value the sync round requires
        - actual: Value found in the write configuration
    """
    pass


# ============================================================================
# Checkpoint Errors
# ============================================================================

class CheckpointError(SyncException):
    """Base exception for checkpoint resolution failures."""
    pass


class MissingCheckpointError(CheckpointError):
    """
    Exception raised when the table has commit history but the last commit
    carries no resume checkpoint.

    Context should include:
        - last_instant: The last completed instant
        - instants: All completed instants on the timeline
        - commit_metadata: Metadata of the last commit
    """
    pass


# ============================================================================
# Source Errors
# ============================================================================

class SourceError(SyncException):
    """Base exception for failures while pulling data from a source."""
    pass


class SourceReadError(SourceError):
    """
    Exception raised when a source batch cannot be read.

    Context should include:
        - source_name: Name of the source
        - checkpoint: Checkpoint the read resumed from
    """
    pass


class NetworkError(RetryableError, SourceError):
    """Network-related errors that should be retried."""
    pass


class RateLimitError(RetryableError, SourceError):
    """Rate limiting errors (HTTP 429) that should be retried with backoff."""

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[int] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class AuthenticationError(NonRetryableError, SourceError):
    """Authentication failures (HTTP 401, 403) that should not be retried."""
    pass


class ResourceNotFoundError(NonRetryableError, SourceError):
    """Resource not found errors (HTTP 404) that should not be retried."""
    pass


# ============================================================================
# Transformation Errors
# ============================================================================

class TransformationError(SyncException):
    """Base exception for failures while transforming or preparing records."""
    pass


class KeyGenerationError(TransformationError):
    """
    Exception raised when a record key cannot be extracted.

    Context should include:
        - field_name: Key field that was missing or empty
        - key_generator: Key generator class name
    """
    pass


class RecordPreparationError(TransformationError):
    """
    Exception raised when a raw record cannot be turned into a prepared record.

    Context should include:
        - ordering_field: Configured ordering field
        - record_key: Key of the offending record (if known)
    """
    pass


# ============================================================================
# Table Store Errors
# ============================================================================

class TableStoreError(SyncException):
    """Base exception for table store failures."""
    pass


class UnsupportedTableTypeError(NonRetryableError, TableStoreError):
    """Exception raised when the table's type has no known commit timeline."""
    pass


class InstantStateError(RetryableError, TableStoreError):
    """
    Exception raised when a new instant cannot be started because the timeline
    is in a state that has not settled yet (e.g. a newer instant is visible).

    Context should include:
        - instant_time: Instant time that was requested
        - latest_instant: Latest instant time found on the timeline
    """
    pass


# ============================================================================
# Write Errors
# ============================================================================

class WriteError(SyncException):
    """Base exception for write/commit protocol failures."""
    pass


class CommitFailedError(WriteError):
    """Exception raised when the table store reports a failed commit."""
    pass


class WriteErrorsExceededError(WriteError):
    """
    Exception raised when a write produced error records and committing with
    errors is not allowed. The instant has been rolled back.

    Context should include:
        - instant_time: Rolled back instant
        - total_records: Records written
        - total_error_records: Records in error
    """
    pass


class RollbackError(WriteError):
    """Exception raised when rolling back an instant fails."""
    pass


# ============================================================================
# Catalog Errors
# ============================================================================

class CatalogSyncError(SyncException):
    """
    Exception raised when publishing the table to the external catalog fails.

    Context should include:
        - table_name: Table being published
        - catalog_url: Catalog endpoint
    """
    pass
