"""
Billing-specific exceptions for webhook reconciliation.

Exception Hierarchy:
    BillingError (base for billing domain)
    ├── WebhookAuthenticationError - Bad signature or stale timestamp (permanent, 400)
    ├── WebhookValidationError - Malformed payload (permanent, 400)
    ├── SubscriptionNotFoundError - Referenced subscription missing (deferred, 200)
    ├── TransientProcessingError - Database/lock/timeout failure (retryable, 503)
    └── PaymentRecordImmutableError - Attempt to mutate a ledger row

    StaleRecordError - Optimistic locking conflict (inherits ConflictError)
    LockAcquisitionError - Distributed lock held elsewhere (inherits ConflictError)
    InvalidStateTransitionError - FSM transition not allowed (inherits ConflictError)

Every exception carries ``is_retryable``. The webhook processor uses it to
decide between acknowledging a delivery and asking the provider to redeliver.

Usage:
    from billing.exceptions import InvalidStateTransitionError

    raise InvalidStateTransitionError(
        "Cannot renew subscription from 'pending' state",
        details={"current_state": "pending", "transition": "renew"},
    )
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.exceptions import (
    AuthenticationError,
    BaseApplicationError,
    ConflictError,
    ExternalServiceError,
    NotFoundError,
    ValidationError,
)

if TYPE_CHECKING:
    from typing import Any


class BillingError(BaseApplicationError):
    """
    Base exception for billing operations.

    Attributes:
        is_retryable: Whether the provider should redeliver the event
    """

    default_error_code: str = "BILLING_ERROR"
    is_retryable: bool = False


class WebhookAuthenticationError(BillingError, AuthenticationError):
    """
    Raised when a delivery cannot be authenticated.

    Covers missing or malformed signature headers, signature mismatches,
    timestamps outside the tolerance window and a missing signing secret.
    Never retried by this system and never reaches handler logic.
    """

    default_error_code: str = "INVALID_SIGNATURE"


class WebhookValidationError(BillingError, ValidationError):
    """
    Raised when an authenticated payload is not a usable event.

    Example:
        raise WebhookValidationError(
            "Event payload is missing data.object",
            error_code="INVALID_WEBHOOK_PAYLOAD",
            details={"field": "data.object"},
        )
    """

    default_error_code: str = "INVALID_WEBHOOK_PAYLOAD"


class SubscriptionNotFoundError(BillingError, NotFoundError):
    """
    Raised when an event references a subscription that does not exist yet.

    Typically a race with the linking step. The delivery is acknowledged
    and flagged for manual reconciliation instead of being retried.
    """

    default_error_code: str = "SUBSCRIPTION_NOT_FOUND"


class TransientProcessingError(BillingError, ExternalServiceError):
    """
    Raised when processing failed for a reason that may clear on redelivery.

    Database errors, lock and statement timeouts, constraint races and
    retryable business errors all surface as this single type.
    """

    default_error_code: str = "TRANSIENT_PROCESSING_ERROR"
    is_retryable: bool = True


class PaymentRecordImmutableError(BillingError):
    """Raised when code tries to update or delete a PaymentRecord."""

    default_error_code: str = "PAYMENT_RECORD_IMMUTABLE"


# =============================================================================
# Concurrency Control Exceptions
# =============================================================================


class StaleRecordError(ConflictError):
    """
    Raised when optimistic locking detects a concurrent modification.

    The version stored on the row no longer matches the version the caller
    loaded. Retryable: the redelivered event will see the fresh row.

    Example:
        raise StaleRecordError(
            f"Subscription {pk} was modified by another process",
            details={"pk": str(pk), "expected_version": 3, "current_version": 4},
        )
    """

    default_error_code: str = "STALE_RECORD"
    is_retryable: bool = True


class LockAcquisitionError(ConflictError):
    """
    Raised when a distributed lock is already held.

    Periodic jobs use it to skip a run that overlaps with a previous one.
    """

    default_error_code: str = "LOCK_ACQUISITION_FAILED"
    is_retryable: bool = True


class InvalidStateTransitionError(ConflictError):
    """
    Raised when a subscription transition is not allowed from its state.

    Treated as retryable unless constructed with ``permanent=True``, since
    an out-of-order event often becomes applicable once its predecessor
    has been processed.

    Example:
        raise InvalidStateTransitionError(
            "Cannot renew subscription from 'pending' state",
            details={"current_state": "pending", "transition": "renew"},
        )
    """

    default_error_code: str = "INVALID_STATE_TRANSITION"

    def __init__(
        self,
        message: str,
        error_code: str | None = None,
        details: dict[str, Any] | None = None,
        permanent: bool = False,
    ):
        super().__init__(message, error_code=error_code, details=details)
        self.is_retryable = not permanent
