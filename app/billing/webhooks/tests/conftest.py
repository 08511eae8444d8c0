"""
Pytest fixtures for webhook pipeline tests.

Provides signed-delivery helpers, provider payload builders and a processor
wired with a known signing secret, a fixed clock and a mocked notification
task.

Usage:
    def test_renewal(client_post, active_subscription):
        payload = invoice_payload("invoice.paid", "sub_active_123")
        response = client_post(payload)
        assert response.status_code == 200
"""

import hashlib
import hmac
import json
import time
import uuid
from datetime import UTC, datetime, timedelta

import pytest
from django.apps import apps
from django.urls import reverse
from django.utils import timezone

from billing.notifications import SubscriptionNotifier
from billing.state_machines import SubscriptionStatus
from billing.tests.factories import PlanFactory, SubscriptionFactory, UserFactory
from billing.webhooks.service import build_webhook_processor

WEBHOOK_SECRET = "whsec_test_secret"
FIXED_NOW = datetime(2026, 3, 15, 12, 0, tzinfo=UTC)


# =============================================================================
# Signing & Payload Helpers
# =============================================================================


def sign(payload: bytes, secret: str = WEBHOOK_SECRET, timestamp: int | None = None) -> str:
    """Build a Stripe-Signature header for ``payload``."""
    timestamp = int(time.time()) if timestamp is None else timestamp
    signed = f"{timestamp}.".encode() + payload
    digest = hmac.new(secret.encode(), signed, hashlib.sha256).hexdigest()
    return f"t={timestamp},v1={digest}"


def encode(payload: dict) -> bytes:
    return json.dumps(payload).encode("utf-8")


def make_event(event_type: str, data_object: dict, event_id: str | None = None) -> dict:
    return {
        "id": event_id or f"evt_{uuid.uuid4().hex[:16]}",
        "object": "event",
        "type": event_type,
        "created": int(time.time()),
        "livemode": False,
        "data": {"object": data_object},
    }


def payment_intent_payload(
    subscription_id,
    event_type: str = "payment_intent.succeeded",
    payment_id: str = "pi_initial_1",
    amount: int = 1500,
    event_id: str | None = None,
    error: dict | None = None,
) -> dict:
    data_object = {
        "id": payment_id,
        "object": "payment_intent",
        "amount": amount,
        "amount_received": amount if event_type == "payment_intent.succeeded" else 0,
        "currency": "usd",
        "metadata": {"subscription_id": str(subscription_id)} if subscription_id else {},
    }
    if error is not None:
        data_object["last_payment_error"] = error
    return make_event(event_type, data_object, event_id)


def invoice_payload(
    event_type: str,
    external_subscription_id: str | None,
    invoice_id: str = "in_renewal_1",
    amount: int = 1500,
    billing_reason: str = "subscription_cycle",
    event_id: str | None = None,
) -> dict:
    data_object = {
        "id": invoice_id,
        "object": "invoice",
        "subscription": external_subscription_id,
        "billing_reason": billing_reason,
        "amount_paid": amount if event_type != "invoice.payment_failed" else 0,
        "amount_due": amount,
        "attempt_count": 1,
        "currency": "usd",
    }
    return make_event(event_type, data_object, event_id)


def provider_subscription_payload(
    event_type: str,
    external_subscription_id: str,
    status: str = "active",
    subscription_id=None,
    customer: str = "cus_test_1",
    event_id: str | None = None,
) -> dict:
    data_object = {
        "id": external_subscription_id,
        "object": "subscription",
        "status": status,
        "customer": customer,
        "metadata": {"subscription_id": str(subscription_id)} if subscription_id else {},
    }
    return make_event(event_type, data_object, event_id)


# =============================================================================
# Model Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    return UserFactory()


@pytest.fixture
def plan(db):
    """Monthly plan at 15.00 USD."""
    return PlanFactory()


@pytest.fixture
def pending_subscription(db, user, plan):
    return SubscriptionFactory(user=user, plan=plan)


@pytest.fixture
def active_subscription(db, user, plan):
    """Active subscription whose period ends on 2026-04-01."""
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.ACTIVE,
        started_at=datetime(2026, 3, 1, tzinfo=UTC),
        ends_at=datetime(2026, 4, 1, tzinfo=UTC),
        external_subscription_id="sub_active_123",
        external_customer_id="cus_test_1",
    )


@pytest.fixture
def suspended_subscription(db, user, plan):
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.SUSPENDED,
        started_at=datetime(2026, 2, 1, tzinfo=UTC),
        ends_at=datetime(2026, 3, 1, tzinfo=UTC),
        suspended_at=datetime(2026, 3, 1, tzinfo=UTC),
        external_subscription_id="sub_suspended_123",
        metadata={
            "suspension_reason": "payment_failed",
            "payment_failure_reason": "Card declined",
        },
    )


@pytest.fixture
def cancelled_subscription(db, user, plan):
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.CANCELLED,
        started_at=datetime(2026, 1, 1, tzinfo=UTC),
        ends_at=datetime(2026, 2, 1, tzinfo=UTC),
        cancelled_at=timezone.now() - timedelta(days=1),
        external_subscription_id="sub_cancelled_123",
    )


# =============================================================================
# Pipeline Fixtures
# =============================================================================


@pytest.fixture
def notification_task(mocker):
    """Stand-in for the notification Celery task."""
    return mocker.MagicMock()


@pytest.fixture
def processor(db, notification_task):
    """Processor with the test secret, a fixed clock and a mocked task."""
    return build_webhook_processor(
        secret=WEBHOOK_SECRET,
        clock=lambda: FIXED_NOW,
        notifier=SubscriptionNotifier(task=notification_task),
    )


@pytest.fixture
def installed_processor(processor, monkeypatch):
    """Make the endpoint use ``processor``."""
    config = apps.get_app_config("billing")
    monkeypatch.setattr(config, "webhook_processor", processor)
    return processor


@pytest.fixture
def deliver(processor):
    """Sign and hand a payload to the processor, as the endpoint would."""

    def _deliver(payload: dict, source_ip: str | None = "127.0.0.1"):
        body = encode(payload)
        return processor.handle(body, sign(body), source_ip=source_ip)

    return _deliver


@pytest.fixture
def client_post(client, installed_processor):
    """POST a signed payload to the webhook endpoint."""

    def _post(
        payload: dict,
        signature: str | None = None,
        body: bytes | None = None,
        signed: bool = True,
    ):
        body = encode(payload) if body is None else body
        headers = {}
        if signed:
            headers["HTTP_STRIPE_SIGNATURE"] = signature or sign(body)
        return client.post(
            reverse("billing:provider_webhook"),
            data=body,
            content_type="application/json",
            **headers,
        )

    return _post
