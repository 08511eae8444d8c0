"""
Repositories for the entities webhook handlers read and write.

Each repository is constructed once (see billing.webhooks.service) and
passed into the handlers that need it, so handler code never reaches for
model managers directly and tests can substitute any piece.

Usage:
    subscriptions = SubscriptionRepository()
    payments = PaymentRecordRepository()

    with transaction.atomic():
        subscription = subscriptions.lock(subscription_id)
        subscription.renew(fallback=now)
        subscriptions.save(subscription, ["status", "ends_at"])
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.core.exceptions import ValidationError as DjangoValidationError

from billing.exceptions import SubscriptionNotFoundError
from billing.locks import lock_for_update, save_versioned
from billing.models import PaymentRecord, ProcessedEvent, Subscription, WebhookEvent
from billing.state_machines import PaymentKind, PaymentStatus, SubscriptionStatus

if TYPE_CHECKING:
    from collections.abc import Iterable
    from datetime import datetime
    from typing import Any

logger = logging.getLogger(__name__)


class SubscriptionRepository:
    """Row-locked access to subscriptions."""

    def __init__(self, using: str = "default") -> None:
        self.using = using

    def _queryset(self):
        return Subscription.objects.using(self.using).select_related("plan")

    def lock(self, subscription_id: Any) -> Subscription:
        """
        Lock a subscription by internal id.

        Raises:
            SubscriptionNotFoundError: No subscription with that id (a
                malformed id is treated the same way)
        """
        try:
            subscription = lock_for_update(self._queryset(), pk=subscription_id)
        except (DjangoValidationError, ValueError):
            subscription = None
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"Subscription {subscription_id} not found",
                details={"subscription_id": str(subscription_id)},
            )
        return subscription

    def lock_by_external_id(self, external_subscription_id: str) -> Subscription:
        """
        Lock a subscription by provider subscription id.

        Raises:
            SubscriptionNotFoundError: Not linked yet (or unknown)
        """
        subscription = lock_for_update(
            self._queryset(),
            external_subscription_id=external_subscription_id,
        )
        if subscription is None:
            raise SubscriptionNotFoundError(
                f"No subscription linked to {external_subscription_id}",
                details={"external_subscription_id": external_subscription_id},
            )
        return subscription

    def external_id_owner(self, external_subscription_id: str) -> Any | None:
        """Primary key of the subscription already linked to this id, if any."""
        return (
            Subscription.objects.using(self.using)
            .filter(external_subscription_id=external_subscription_id)
            .values_list("pk", flat=True)
            .first()
        )

    def save(self, subscription: Subscription, fields: Iterable[str]) -> Subscription:
        """
        Persist changed fields with an optimistic version check.

        Raises:
            StaleRecordError: Another writer committed first
        """
        return save_versioned(subscription, fields, using=self.using)

    def lapsed_suspensions(self, suspended_before: datetime):
        """Subscriptions suspended since before the given moment."""
        return Subscription.objects.using(self.using).filter(
            status=SubscriptionStatus.SUSPENDED,
            suspended_at__lt=suspended_before,
        )


class PaymentRecordRepository:
    """Append-only access to payment records."""

    def __init__(self, using: str = "default") -> None:
        self.using = using

    def exists(self, external_payment_id: str, status: str) -> bool:
        return (
            PaymentRecord.objects.using(self.using)
            .filter(external_payment_id=external_payment_id, status=status)
            .exists()
        )

    def has_succeeded_initial(self, subscription: Subscription) -> bool:
        return (
            PaymentRecord.objects.using(self.using)
            .filter(
                subscription=subscription,
                kind=PaymentKind.INITIAL,
                status=PaymentStatus.SUCCEEDED,
            )
            .exists()
        )

    def append(self, **fields: Any) -> PaymentRecord:
        """Insert a new record. Existing records are never touched."""
        return PaymentRecord.objects.using(self.using).create(**fields)

    def for_subscription(self, subscription: Subscription):
        return PaymentRecord.objects.using(self.using).filter(
            subscription=subscription
        )


class ProcessedEventRepository:
    """The idempotency ledger."""

    def __init__(self, using: str = "default") -> None:
        self.using = using

    def get(self, event_id: str) -> ProcessedEvent | None:
        return ProcessedEvent.objects.using(self.using).filter(event_id=event_id).first()

    def exists(self, event_id: str) -> bool:
        return ProcessedEvent.objects.using(self.using).filter(event_id=event_id).exists()

    def create(
        self,
        event_id: str,
        event_type: str,
        outcome: str,
        summary: dict[str, Any],
    ) -> ProcessedEvent:
        """
        Insert the ledger row.

        Raises:
            IntegrityError: The event id was recorded concurrently
        """
        return ProcessedEvent.objects.using(self.using).create(
            event_id=event_id,
            event_type=event_type,
            outcome=outcome,
            summary=summary,
        )


class WebhookEventRepository:
    """Audit records for provider deliveries."""

    def __init__(self, using: str = "default") -> None:
        self.using = using

    def get_or_create(self, event_id: str, defaults: dict[str, Any]):
        return WebhookEvent.objects.using(self.using).get_or_create(
            event_id=event_id,
            defaults=defaults,
        )

    def get(self, event_id: str) -> WebhookEvent | None:
        return WebhookEvent.objects.using(self.using).filter(event_id=event_id).first()

    def needing_reconciliation(self):
        return WebhookEvent.objects.using(self.using).needing_reconciliation()
