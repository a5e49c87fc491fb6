"""
Core utilities and configuration for the delta sync service.

This package provides foundational components used throughout a sync round:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session factory creation
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration and utilities

Usage:
    from core.config import settings
    from core.database import create_engine, create_session_maker
    from core.exceptions import MissingCheckpointError, InstantStateError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Build a session factory for the Postgres table store
    engine = create_engine()
    session_maker = create_session_maker(engine)
"""

__all__ = [
    "settings",
    "create_engine",
    "create_session_maker",
    "setup_logging",
    # Exceptions
    "SyncException",
    "RetryableError",
    "NonRetryableError",
    "ConfigurationError",
    "WriteConfigError",
    "CheckpointError",
    "MissingCheckpointError",
    "SourceError",
    "SourceReadError",
    "NetworkError",
    "RateLimitError",
    "AuthenticationError",
    "ResourceNotFoundError",
    "TransformationError",
    "KeyGenerationError",
    "RecordPreparationError",
    "TableStoreError",
    "UnsupportedTableTypeError",
    "InstantStateError",
    "WriteError",
    "CommitFailedError",
    "WriteErrorsExceededError",
    "RollbackError",
    "CatalogSyncError",
]
