"""
Pytest fixtures for billing tests.

This module provides fixtures for creating billing test data. Subscription
fixtures are provided in each lifecycle state so transition tests can start
from the state they need.

Usage:
    def test_suspend(active_subscription):
        active_subscription.suspend(suspended_at=timezone.now())
        assert active_subscription.status == SubscriptionStatus.SUSPENDED
"""

from datetime import timedelta

import pytest
from django.utils import timezone

from billing.state_machines import BillingInterval, SubscriptionStatus
from billing.tests.factories import (
    PlanFactory,
    SubscriptionFactory,
    UserFactory,
)


# =============================================================================
# User and Plan Fixtures
# =============================================================================


@pytest.fixture
def user(db):
    """Create a test user."""
    return UserFactory()


@pytest.fixture
def admin_user(db):
    """Create a staff user allowed into the operator API and admin."""
    return UserFactory(is_staff=True, is_superuser=True)


@pytest.fixture
def plan(db):
    """Create a monthly plan."""
    return PlanFactory()


@pytest.fixture
def weekly_plan(db):
    return PlanFactory(billing_interval=BillingInterval.WEEK, price_cents=500)


# =============================================================================
# Subscription State Fixtures
# =============================================================================


@pytest.fixture
def pending_subscription(db, user, plan):
    """Create a subscription waiting for its first payment."""
    return SubscriptionFactory(user=user, plan=plan)


@pytest.fixture
def active_subscription(db, user, plan):
    """Create an active subscription linked to a provider subscription."""
    now = timezone.now()
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.ACTIVE,
        started_at=now - timedelta(days=10),
        ends_at=now + timedelta(days=20),
        external_subscription_id="sub_active_123",
        external_customer_id="cus_123",
    )


@pytest.fixture
def suspended_subscription(db, user, plan):
    """Create a subscription suspended after a failed renewal."""
    now = timezone.now()
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.SUSPENDED,
        started_at=now - timedelta(days=40),
        ends_at=now - timedelta(days=10),
        suspended_at=now - timedelta(days=10),
        external_subscription_id="sub_suspended_123",
        metadata={"suspension_reason": "payment_failed"},
    )


@pytest.fixture
def cancelled_subscription(db, user, plan):
    now = timezone.now()
    return SubscriptionFactory(
        user=user,
        plan=plan,
        status=SubscriptionStatus.CANCELLED,
        started_at=now - timedelta(days=40),
        ends_at=now - timedelta(days=10),
        cancelled_at=now - timedelta(days=1),
        external_subscription_id="sub_cancelled_123",
    )


# =============================================================================
# Infrastructure Mocks
# =============================================================================


@pytest.fixture
def mock_redis(mocker):
    """
    Mock Redis client for distributed lock tests.

    Returns a MagicMock configured for basic lock operations.
    """
    mock_client = mocker.MagicMock()
    mock_client.set.return_value = True
    mock_client.eval.return_value = 1

    mocker.patch("billing.locks.get_redis_connection", return_value=mock_client)
    return mock_client


@pytest.fixture
def notification_task(mocker):
    """Stand-in for the notification Celery task."""
    return mocker.MagicMock()
