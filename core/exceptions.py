"""
Custom exceptions for the sync engine with structured error context.

This module provides the exception hierarchy shared by loaders, the
writer, connectors, the catalog and the job scheduler. Each exception
carries context information for debugging and an HTTP status used by
the API layer when the error reaches a request handler.

Exception Hierarchy:
    SyncError (base)
    ├── ConfigurationError
    │   ├── UnknownLoaderError
    │   ├── InvalidConnectorConfigError
    │   └── ResourceNotFoundError
    ├── ConnectorAuthenticationError
    ├── ConflictError
    │   ├── NotConnectedError
    │   ├── AlreadyLoadingError
    │   ├── ConnectorExistsError
    │   └── JobAlreadyFinishedError
    ├── ForbiddenError
    ├── NotFoundError
    │   ├── ConnectorNotFoundError
    │   └── JobNotFoundError
    ├── FetchError
    │   ├── APIFetchError
    │   ├── QuotaExceededError
    │   └── IntrospectionUnavailableError
    ├── WriteError
    │   ├── SchemaSyncError
    │   ├── NoPrimaryKeyError
    │   └── UpsertError
    ├── JobStateError
    │   └── UnknownJobTypeError
    ├── ActionableError
    └── RetryableError / NonRetryableError (mixins)
"""

from typing import Optional, Dict, Any
from core.timeutil import utcnow


class SyncError(Exception):
    """
    Base exception for all sync engine errors.

    Attributes:
        message: Human-readable error message
        context: Additional context information (connector_id, resource, etc.)
        original_exception: The original exception that was caught (if any)
        status_code: HTTP status reported when the error reaches the API
    """

    status_code: int = 500

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None
    ):
        self.message = message
        self.context = context or {}
        self.original_exception = original_exception
        self.timestamp = utcnow()

        super().__init__(message)
        if original_exception:
            self.__cause__ = original_exception

    def __str__(self) -> str:
        return self.message

    def describe(self) -> str:
        """Format error message with context."""
        base_msg = f"{self.__class__.__name__}: {self.message}"

        if self.context:
            context_str = ", ".join(f"{k}={v}" for k, v in self.context.items())
            base_msg += f" | Context: {context_str}"

        if self.original_exception:
            base_msg += f" | Caused by: {type(self.original_exception).__name__}: {str(self.original_exception)}"

        return base_msg

    def to_dict(self) -> Dict[str, Any]:
        """Convert exception to dictionary for logging/API responses."""
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

class RetryableError(SyncError):
    """
    Mixin for errors that should trigger retry logic.

    Use this for transient errors like:
    - Rate limiting and quota responses
    - Service unavailable (HTTP 5xx)
    - Network timeouts
    """

    def __init__(
        self,
        message: str,
        context: Optional[Dict[str, Any]] = None,
        original_exception: Optional[Exception] = None,
        retry_after: Optional[float] = None
    ):
        super().__init__(message, context, original_exception)
        self.retry_after = retry_after
        if retry_after:
            self.context["retry_after"] = retry_after


class NonRetryableError(SyncError):
    """Mixin for permanent errors (bad config, rejected credentials, missing resources)."""
    pass


# ============================================================================
# Configuration Errors
# ============================================================================

class ConfigurationError(NonRetryableError):
    """Base exception for invalid connector or loader configuration."""
    status_code = 400


class UnknownLoaderError(ConfigurationError):
    """Raised when a connector names a loader type missing from the registry."""
    pass


class InvalidConnectorConfigError(ConfigurationError):
    """Raised when a connector or loader configuration fails validation."""
    status_code = 422


class ResourceNotFoundError(ConfigurationError):
    """
    Raised when a declared resource has no schema.

    Context should include:
        - connector_id: Connector being created
        - resource_name: Resource that failed to resolve
    """
    status_code = 404


# ============================================================================
# Authentication Errors
# ============================================================================

class ConnectorAuthenticationError(NonRetryableError):
    """
    Raised when a provider rejects an auth code or refresh token.

    The connector stays disconnected and no tokens are persisted.
    """
    status_code = 401


# ============================================================================
# Conflict / Access Errors
# ============================================================================

class ConflictError(NonRetryableError):
    """Base exception for requests that contradict current state."""
    status_code = 409


class NotConnectedError(ConflictError):
    """Raised when loading is requested for a disconnected connector."""
    status_code = 400


class AlreadyLoadingError(ConflictError):
    """Raised when loading is requested while another load is in flight."""
    pass


class ConnectorExistsError(ConflictError):
    """Raised when registering a connector id that is already taken."""
    pass


class JobAlreadyFinishedError(ConflictError):
    """Raised when running a job that reached the finished state."""
    pass


class ForbiddenError(NonRetryableError):
    """Raised when mutating a bundled connector configuration."""
    status_code = 403


# ============================================================================
# Not Found Errors
# ============================================================================

class NotFoundError(NonRetryableError):
    status_code = 404


class ConnectorNotFoundError(NotFoundError):
    pass


class JobNotFoundError(NotFoundError):
    pass


# ============================================================================
# Fetch Errors
# ============================================================================

class FetchError(SyncError):
    """
    Base exception for failures while pulling records from a provider.

    Context should include:
        - url: The endpoint that failed (HTTP loaders)
        - status_code: HTTP status code (if applicable)
        - resource_name: Resource being fetched (SQL loader)
    """
    status_code = 502


class APIFetchError(FetchError):
    """Raised when a provider HTTP request fails after retries."""
    pass


class QuotaExceededError(RetryableError, FetchError):
    """Quota or rate limit responses (HTTP 429, provider-specific 403) that outlived their retries."""
    status_code = 429


class IntrospectionUnavailableError(NonRetryableError, FetchError):
    """Raised by loaders that cannot describe their resources."""
    status_code = 501


# ============================================================================
# Write Errors
# ============================================================================

class WriteError(SyncError):
    """Base exception for destination table failures."""
    pass


class SchemaSyncError(WriteError):
    """
    Raised when DDL for a resource table cannot be derived or applied.

    Context should include:
        - table_name: Qualified destination table
    """
    pass


class NoPrimaryKeyError(SchemaSyncError):
    """Raised when no primary key can be resolved for a resource schema."""
    status_code = 422


class UpsertError(WriteError):
    """
    Raised when the batched upsert statement fails.

    Context should include:
        - table_name: Qualified destination table
        - record_count: Number of records in the failed batch
    """
    pass


# ============================================================================
# Job Errors
# ============================================================================

class JobStateError(SyncError):
    status_code = 409


class UnknownJobTypeError(JobStateError):
    status_code = 400


# ============================================================================
# Agent Tool Errors
# ============================================================================

class ActionableError(NonRetryableError):
    """Raised by the agent tool with a message the caller can act on directly."""
    status_code = 400
