"""
Billing models.

Usage:
    from billing.models import Plan, Subscription, PaymentRecord
"""

from billing.models.payment_record import PaymentRecord
from billing.models.plan import Plan
from billing.models.processed_event import ProcessedEvent
from billing.models.subscription import Subscription
from billing.models.webhook_event import WebhookEvent

__all__ = [
    "PaymentRecord",
    "Plan",
    "ProcessedEvent",
    "Subscription",
    "WebhookEvent",
]
