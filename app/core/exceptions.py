"""
Base exception classes for application-wide error handling.

This module provides a standardized exception hierarchy that enables:
- Consistent error responses across the application
- Machine-readable error codes for client handling
- Detailed error information for debugging

Exception Hierarchy:
    BaseApplicationError (base)
    ├── ValidationError - Input validation failures
    ├── AuthenticationError - Caller could not be authenticated
    ├── NotFoundError - Resource not found
    ├── ConflictError - State conflicts (duplicates, concurrent modifications)
    └── ExternalServiceError - Third-party or infrastructure failures

Usage:
    from core.exceptions import ValidationError, NotFoundError

    # Raise with message only
    raise ValidationError("Missing event id")

    # Raise with error code and additional details
    raise NotFoundError(
        "Subscription not found",
        error_code="SUBSCRIPTION_NOT_FOUND",
        details={"subscription_id": "..."},
    )

    # Convert to dict for API response
    try:
        ...
    except BaseApplicationError as e:
        return JsonResponse(e.to_dict(), status=400)

Note:
    These exceptions are for domain/business logic errors.
    DRF handles API-layer exceptions (serialization, permissions, etc.).
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from typing import Any


class BaseApplicationError(Exception):
    """
    Base exception for all application-specific errors.

    Provides a consistent interface for error handling across the application.
    All custom exceptions should inherit from this class.

    Attributes:
        message: Human-readable error description
        error_code: Machine-readable code for client-side handling
        details: Additional error context (field errors, metadata, etc.)
    """

    default_error_code: str = "APPLICATION_ERROR"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
    ):
        """
        Initialize the exception.

        Args:
            message: Human-readable error description
            error_code: Machine-readable error code (defaults to class default)
            details: Additional error context
        """
        self.message = message
        self.error_code = error_code or self.default_error_code
        self.details = details or {}
        super().__init__(message)

    def to_dict(self) -> dict[str, Any]:
        """
        Convert exception to dictionary for API response.

        Returns:
            Dict with error, error_code, and details keys

        Example:
            {
                "error": "Subscription not found",
                "error_code": "SUBSCRIPTION_NOT_FOUND",
                "details": {"subscription_id": "..."}
            }
        """
        result: dict[str, Any] = {
            "error": self.message,
            "error_code": self.error_code,
        }
        if self.details:
            result["details"] = self.details
        return result

    def __str__(self) -> str:
        """Return string representation with error code."""
        return f"[{self.error_code}] {self.message}"

    def __repr__(self) -> str:
        """Return detailed representation for debugging."""
        return (
            f"{self.__class__.__name__}("
            f"message={self.message!r}, "
            f"error_code={self.error_code!r}, "
            f"details={self.details!r})"
        )


class ValidationError(BaseApplicationError):
    """
    Raised when input validation fails.

    Use for:
    - Malformed payloads
    - Missing required fields
    - Values outside the accepted vocabulary

    Example:
        raise ValidationError(
            "Event payload is missing data.object",
            error_code="INVALID_WEBHOOK_PAYLOAD",
            details={"field": "data.object"},
        )
    """

    default_error_code: str = "VALIDATION_ERROR"


class AuthenticationError(BaseApplicationError):
    """
    Raised when a caller cannot be authenticated.

    Use for:
    - Bad or missing request signatures
    - Stale timestamps on signed requests (replay protection)

    Note:
        For user authentication on API views, rely on DRF's
        authentication classes. This is for service-level checks.
    """

    default_error_code: str = "AUTHENTICATION_FAILED"


class NotFoundError(BaseApplicationError):
    """
    Raised when a requested resource is not found.

    Use for:
    - Database record not found
    - External resource not found

    Example:
        subscription = Subscription.objects.filter(id=pk).first()
        if not subscription:
            raise NotFoundError(
                f"Subscription {pk} not found",
                error_code="SUBSCRIPTION_NOT_FOUND",
                details={"subscription_id": str(pk)},
            )
    """

    default_error_code: str = "NOT_FOUND"


class ConflictError(BaseApplicationError):
    """
    Raised when operation conflicts with current resource state.

    Use for:
    - Duplicate entries (unique constraint violations)
    - Concurrent modification conflicts
    - Invalid state transitions
    - Optimistic locking failures

    Note:
        HTTP 409 Conflict is the appropriate status for these errors
        when they reach an API caller.
    """

    default_error_code: str = "CONFLICT"


class ExternalServiceError(BaseApplicationError):
    """
    Raised when an external service or infrastructure call fails.

    Use for:
    - Database or transaction failures
    - Lock and statement timeouts
    - Third-party service unavailability

    Note:
        Log the original error for debugging but don't expose
        internal details to clients in production.
        HTTP 503 Service Unavailable is appropriate.
    """

    default_error_code: str = "EXTERNAL_SERVICE_ERROR"
