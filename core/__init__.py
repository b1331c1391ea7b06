"""
Core utilities and configuration for the aircraft sync backend.

This package provides foundational components used throughout the pipeline:

Modules:
    config: Application configuration and environment variable management
    database: Database engine and async session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import AuthError, TransportError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Open a database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "setup_logging",
    # Exceptions
    "SyncException",
    "RetryableError",
    "NonRetryableError",
    "AuthError",
    "TransportError",
    "NetworkError",
    "RateLimitError",
    "ValidationError",
    "PersistenceError",
    "ReconciliationConflictError",
    "SyncStateError",
    "SyncAlreadyRunningError",
    "SyncCancelledError",
]
