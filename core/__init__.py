"""
Core utilities and configuration for the data connector engine.

This package provides foundational components used throughout the engine:

Modules:
    config: Application configuration and environment variable management
    database: Async engine and session management
    exceptions: Custom exception hierarchy for error handling
    logging: Logging configuration
    timeutil: Naive-UTC time helpers

Usage:
    from core.config import settings
    from core.database import async_session_maker
    from core.exceptions import NotConnectedError, AlreadyLoadingError
    from core.logging import setup_logging

Example:
    # Initialize logging
    setup_logging()

    # Get database session
    async with async_session_maker() as session:
        # Perform database operations
        pass
"""

__all__ = [
    "settings",
    "async_session_maker",
    "get_session",
    "setup_logging",
    "utcnow",
    # Exceptions
    "SyncError",
    "RetryableError",
    "NonRetryableError",
    "ConfigurationError",
    "UnknownLoaderError",
    "InvalidConnectorConfigError",
    "ResourceNotFoundError",
    "ConnectorAuthenticationError",
    "ConflictError",
    "NotConnectedError",
    "AlreadyLoadingError",
    "ConnectorExistsError",
    "JobAlreadyFinishedError",
    "ForbiddenError",
    "NotFoundError",
    "ConnectorNotFoundError",
    "JobNotFoundError",
    "FetchError",
    "APIFetchError",
    "QuotaExceededError",
    "IntrospectionUnavailableError",
    "WriteError",
    "SchemaSyncError",
    "NoPrimaryKeyError",
    "UpsertError",
    "JobStateError",
    "UnknownJobTypeError",
    "ActionableError",
]
