"""
Billing state enums.

Usage:
    from billing.state_machines import SubscriptionStatus, WebhookEventStatus
"""

from billing.state_machines.states import (
    BillingInterval,
    EventOutcome,
    NotificationType,
    PaymentKind,
    PaymentStatus,
    SubscriptionStatus,
    WebhookEventStatus,
)

__all__ = [
    "BillingInterval",
    "EventOutcome",
    "NotificationType",
    "PaymentKind",
    "PaymentStatus",
    "SubscriptionStatus",
    "WebhookEventStatus",
]
