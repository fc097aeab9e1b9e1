"""
Custom exceptions for notebridge.

This module provides a consistent exception hierarchy for error handling
across the transport, the provider adapters, the gateway and the vector
store.

Exception Hierarchy:
    NotebridgeException (base)
    ├── ConfigurationError (500)
    ├── VectorStoreError (500)
    ├── ValidationError (400)
    ├── RequestCancelledError (499)
    ├── TransportError (502)
    │   └── TransportConnectError (502)
    ├── ProviderError (503)
    └── EmbeddingError (503)

Usage:
    from notebridge.exceptions import TransportError

    raise TransportError("Model not found", upstream_status=404)
"""
from __future__ import annotations

from typing import Any


class NotebridgeException(Exception):
    """
    Base exception for all notebridge errors.

    All custom exceptions inherit from this class, enabling
    consistent error handling at the API layer.

    Attributes:
        message: Human-readable error message
        status_code: HTTP status code for API response
        details: Additional error details (optional)
        error_code: Machine-readable error code (optional)
    """

    default_message: str = "An error occurred"
    default_status_code: int = 500

    def __init__(
        self,
        message: str | None = None,
        status_code: int | None = None,
        details: str | None = None,
        error_code: str | None = None,
    ) -> None:
        self.message = message or self.default_message
        self.status_code = status_code or self.default_status_code
        self.details = details
        self.error_code = error_code or self.__class__.__name__.upper()
        super().__init__(self.message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dictionary with error details
        """
        result: dict[str, Any] = {
            "error": self.error_code,
            "message": self.message,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


# =============================================================================
# Configuration Errors (500)
# =============================================================================

class ConfigurationError(NotebridgeException):
    """
    Raised when configuration is invalid or missing.

    Examples:
        - Unknown provider in a scoped model id
        - Hosted provider without an API key
        - No embedding model available
    """

    default_message = "Configuration error"
    default_status_code = 500


class VectorStoreError(NotebridgeException):
    """
    Raised when the vector index cannot be persisted.

    Examples:
        - Data directory not writable
        - Disk full while saving
    """

    default_message = "Vector store error"
    default_status_code = 500


# =============================================================================
# Client Errors (4xx)
# =============================================================================

class ValidationError(NotebridgeException):
    """
    Raised when input validation fails.

    Examples:
        - Zero-magnitude query or chunk vector
        - Non-positive k
        - Malformed chat message
    """

    default_message = "Validation error"
    default_status_code = 400


class RequestCancelledError(NotebridgeException):
    """
    Raised when a request is aborted through its cancellation token.

    Uses the non-standard 499 (client closed request) status.
    """

    default_message = "Request cancelled"
    default_status_code = 499


# =============================================================================
# Upstream Errors (5xx)
# =============================================================================

class TransportError(NotebridgeException):
    """
    Raised when an HTTP exchange with a backend fails.

    Attributes:
        upstream_status: HTTP status returned by the backend, None for
            connection and timeout failures
    """

    default_message = "Transport error"
    default_status_code = 502

    def __init__(
        self,
        message: str | None = None,
        upstream_status: int | None = None,
        details: str | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message, details=details, error_code=error_code)
        self.upstream_status = upstream_status

    def to_dict(self) -> dict[str, Any]:
        result = super().to_dict()
        if self.upstream_status is not None:
            result["upstream_status"] = self.upstream_status
        return result


class TransportConnectError(TransportError):
    """
    Raised when no connection to the backend could be opened.

    Nothing has been sent to the backend when this is raised.
    """

    default_message = "Connection failed"

    def __init__(self, message: str | None = None, details: str | None = None) -> None:
        super().__init__(message, details=details, error_code="TRANSPORTERROR")


class ProviderError(NotebridgeException):
    """
    Raised when a backend reports an error inside an otherwise valid response.

    Examples:
        - Error event in the middle of a stream
        - Response missing the expected fields
    """

    default_message = "Model provider error"
    default_status_code = 503

    def __init__(
        self,
        message: str | None = None,
        upstream_status: int | None = None,
        details: str | None = None,
        error_code: str | None = None,
    ) -> None:
        super().__init__(message, details=details, error_code=error_code)
        self.upstream_status = upstream_status


class EmbeddingError(NotebridgeException):
    """
    Raised when embedding generation fails.

    Examples:
        - Embedding endpoint returned no vector
        - Empty or zero-magnitude vector
    """

    default_message = "Embedding service error"
    default_status_code = 503
