"""
Factory Boy factories for billing test data.

This module provides factories for creating test instances of billing models.
Factories generate realistic test data while allowing easy customization.

Usage:
    from billing.tests.factories import (
        PlanFactory,
        SubscriptionFactory,
        PaymentRecordFactory,
        WebhookEventFactory,
    )

    # Create a pending subscription on a monthly plan
    subscription = SubscriptionFactory()

    # Create an active subscription linked to a provider subscription
    subscription = SubscriptionFactory(
        status=SubscriptionStatus.ACTIVE,
        external_subscription_id="sub_123",
    )
"""

import uuid

import factory
from django.utils import timezone

from billing.models import (
    PaymentRecord,
    Plan,
    ProcessedEvent,
    Subscription,
    WebhookEvent,
)
from billing.state_machines import (
    BillingInterval,
    EventOutcome,
    PaymentKind,
    PaymentStatus,
    SubscriptionStatus,
    WebhookEventStatus,
)


class UserFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating User instances for billing tests.

    Users live outside this app; this is a minimal factory over the
    configured auth user model.
    """

    class Meta:
        model = "auth.User"
        skip_postgeneration_save = True

    username = factory.Sequence(lambda n: f"user{n}")
    email = factory.Sequence(lambda n: f"user{n}@example.com")
    password = factory.PostGenerationMethodCall("set_password", "testpass123")
    is_active = True


class PlanFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Plan instances.

    Default creates a monthly plan at 15.00 USD.
    """

    class Meta:
        model = Plan

    name = factory.Sequence(lambda n: f"Plan {n}")
    billing_interval = BillingInterval.MONTH
    price_cents = 1500
    currency = "usd"
    is_active = True


class SubscriptionFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating Subscription instances.

    Default creates a PENDING subscription that is not linked to a
    provider subscription yet.

    Example:
        # Active subscription mid-period
        subscription = SubscriptionFactory(
            status=SubscriptionStatus.ACTIVE,
            started_at=now,
            ends_at=now + timedelta(days=20),
            external_subscription_id="sub_123",
        )
    """

    class Meta:
        model = Subscription

    user = factory.SubFactory(UserFactory)
    plan = factory.SubFactory(PlanFactory)
    status = SubscriptionStatus.PENDING
    metadata = factory.LazyFunction(dict)


class PaymentRecordFactory(factory.django.DjangoModelFactory):
    """Factory for creating PaymentRecord instances (succeeded recurring charge)."""

    class Meta:
        model = PaymentRecord

    subscription = factory.SubFactory(SubscriptionFactory)
    external_payment_id = factory.Sequence(lambda n: f"in_test_{n}")
    kind = PaymentKind.RECURRING
    amount_cents = 1500
    currency = "usd"
    status = PaymentStatus.SUCCEEDED
    processed_at = factory.LazyFunction(timezone.now)
    source_event_id = factory.Sequence(lambda n: f"evt_source_{n}")


class ProcessedEventFactory(factory.django.DjangoModelFactory):
    """Factory for creating ProcessedEvent ledger rows."""

    class Meta:
        model = ProcessedEvent

    event_id = factory.Sequence(lambda n: f"evt_processed_{n}")
    event_type = "invoice.payment_succeeded"
    outcome = EventOutcome.PROCESSED
    summary = factory.LazyFunction(dict)


class WebhookEventFactory(factory.django.DjangoModelFactory):
    """
    Factory for creating WebhookEvent audit records.

    Default creates a RECEIVED invoice.payment_succeeded event.

    Example:
        # Event waiting for an operator
        event = WebhookEventFactory(
            status=WebhookEventStatus.DEFERRED,
            requires_reconciliation=True,
        )
    """

    class Meta:
        model = WebhookEvent

    event_id = factory.Sequence(lambda n: f"evt_test_{n}_{uuid.uuid4().hex[:8]}")
    event_type = "invoice.payment_succeeded"
    payload = factory.LazyAttribute(
        lambda o: {
            "id": o.event_id,
            "type": o.event_type,
            "data": {"object": {"id": f"in_{o.event_id}"}},
        }
    )
    status = WebhookEventStatus.RECEIVED
    attempt_count = 1
