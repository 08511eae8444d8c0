"""
State enums for billing models.

These are Django TextChoices for database storage and admin integration.
Subscription status is driven by django-fsm transitions declared on the
Subscription model.

State Machines Overview:

Subscription Status:
    pending → active (first payment reconciled)
    pending → expired (first payment failed)
    active → suspended (renewal payment failed)
    suspended → active (renewal payment recovered)
    pending/active/suspended → cancelled
    cancelled and expired are terminal

WebhookEvent Status (last recorded outcome of a delivery):
    received → processed / ignored / deferred / failed / rejected
    failed → processed (a later redelivery succeeded)
"""

from django.db import models


class SubscriptionStatus(models.TextChoices):
    """
    States for the Subscription lifecycle.

    Terminal states: CANCELLED, EXPIRED

    State Flow:
        PENDING → ACTIVE → SUSPENDED → ACTIVE
        PENDING → EXPIRED
        PENDING/ACTIVE/SUSPENDED → CANCELLED
    """

    PENDING = "pending", "Pending"
    ACTIVE = "active", "Active"
    SUSPENDED = "suspended", "Suspended"
    CANCELLED = "cancelled", "Cancelled"
    EXPIRED = "expired", "Expired"

    @classmethod
    def terminal(cls) -> frozenset[str]:
        return frozenset({cls.CANCELLED, cls.EXPIRED})


class BillingInterval(models.TextChoices):
    """Recurring period used for renewal arithmetic."""

    WEEK = "week", "Weekly"
    MONTH = "month", "Monthly"
    YEAR = "year", "Yearly"


class PaymentKind(models.TextChoices):
    """Whether a payment opened the subscription or renewed it."""

    INITIAL = "initial", "Initial"
    RECURRING = "recurring", "Recurring"


class PaymentStatus(models.TextChoices):
    """Outcome of a single charge as reported by the provider."""

    SUCCEEDED = "succeeded", "Succeeded"
    FAILED = "failed", "Failed"


class EventOutcome(models.TextChoices):
    """
    Outcome stored in the idempotency ledger.

    PROCESSED: handler applied (or confirmed) the fact
    IGNORED: event acknowledged without state change (not ours, stale, superseded)
    DEFERRED: applied as far as possible but needs manual reconciliation
    """

    PROCESSED = "processed", "Processed"
    IGNORED = "ignored", "Ignored"
    DEFERRED = "deferred", "Deferred"


class WebhookEventStatus(models.TextChoices):
    """
    Last recorded outcome for a provider delivery.

    State Flow:
        RECEIVED → PROCESSED / IGNORED / DEFERRED / FAILED / REJECTED
        FAILED → PROCESSED (redelivery succeeded)
        Any → REPLAYED is never written over a terminal outcome; it marks
        a delivery whose first processing was committed by a concurrent
        request before this one recorded anything.
    """

    RECEIVED = "received", "Received"
    PROCESSED = "processed", "Processed"
    REPLAYED = "replayed", "Replayed"
    IGNORED = "ignored", "Ignored"
    DEFERRED = "deferred", "Deferred"
    REJECTED = "rejected", "Rejected"
    FAILED = "failed", "Failed"


class NotificationType(models.TextChoices):
    """User-facing emails sent after a subscription change commits."""

    ACTIVATED = "activated", "Subscription activated"
    RENEWED = "renewed", "Subscription renewed"
    PAYMENT_FAILED = "payment_failed", "Payment failed"
    CANCELLED = "cancelled", "Subscription cancelled"
    EXPIRED = "expired", "Subscription expired"
