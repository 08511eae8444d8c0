"""
Tests for billing Celery tasks.

Tasks are called synchronously; Redis and the broker are mocked.
"""

from datetime import timedelta

import pytest
from django.core import mail
from django.utils import timezone
from freezegun import freeze_time

from billing.exceptions import SubscriptionNotFoundError
from billing.models import Subscription
from billing.state_machines import NotificationType, SubscriptionStatus
from billing.tasks import (
    cancel_lapsed_suspensions,
    report_unreconciled_webhooks,
    reprocess_flagged_webhooks,
    send_subscription_notification,
)
from billing.tests.factories import SubscriptionFactory, UserFactory, WebhookEventFactory
from core.services import ServiceResult


# =============================================================================
# Notification Tasks
# =============================================================================


class TestSendSubscriptionNotification:
    """Tests for send_subscription_notification task."""

    def test_sends_email(self, active_subscription):
        result = send_subscription_notification(
            str(active_subscription.pk),
            str(active_subscription.user_id),
            NotificationType.RENEWED,
        )

        assert result["status"] == "sent"
        assert len(mail.outbox) == 1
        message = mail.outbox[0]
        assert message.to == [active_subscription.user.email]
        assert message.subject == "Your subscription has been renewed"
        assert active_subscription.plan.name in message.body
        assert active_subscription.ends_at.date().isoformat() in message.body

    def test_unknown_notification_type(self, active_subscription):
        result = send_subscription_notification(
            str(active_subscription.pk),
            str(active_subscription.user_id),
            "refunded",
        )

        assert result["status"] == "unknown_type"
        assert mail.outbox == []

    def test_missing_subscription(self, user):
        result = send_subscription_notification(
            "00000000-0000-0000-0000-000000000000",
            str(user.pk),
            NotificationType.CANCELLED,
        )

        assert result["status"] == "not_found"

    def test_user_without_email(self, db, plan):
        subscription = SubscriptionFactory(plan=plan, user=UserFactory(email=""))

        result = send_subscription_notification(
            str(subscription.pk),
            str(subscription.user_id),
            NotificationType.EXPIRED,
        )

        assert result["status"] == "no_recipient"
        assert mail.outbox == []


# =============================================================================
# Lapsed Suspensions
# =============================================================================


class TestCancelLapsedSuspensions:
    """Tests for cancel_lapsed_suspensions task."""

    def test_disabled_without_grace_period(self, settings, suspended_subscription):
        settings.BILLING_GRACE_PERIOD_DAYS = None

        assert cancel_lapsed_suspensions() == {"status": "disabled"}
        reloaded = Subscription.objects.get(pk=suspended_subscription.pk)
        assert reloaded.status == SubscriptionStatus.SUSPENDED

    def test_cancels_lapsed_subscription(
        self,
        settings,
        mock_redis,
        mocker,
        suspended_subscription,
        django_capture_on_commit_callbacks,
    ):
        settings.BILLING_GRACE_PERIOD_DAYS = 7
        mock_delay = mocker.patch("billing.tasks.send_subscription_notification.delay")

        with django_capture_on_commit_callbacks(execute=True):
            result = cancel_lapsed_suspensions()

        assert result == {"status": "completed", "cancelled": 1, "skipped": 0}
        reloaded = Subscription.objects.get(pk=suspended_subscription.pk)
        assert reloaded.status == SubscriptionStatus.CANCELLED
        assert reloaded.cancelled_at is not None
        assert reloaded.metadata["cancel_reason"] == "grace_period_expired"
        assert reloaded.version == suspended_subscription.version + 1
        mock_delay.assert_called_once_with(
            str(suspended_subscription.pk),
            str(suspended_subscription.user_id),
            "cancelled",
        )
        mock_redis.eval.assert_called_once()

    def test_leaves_recent_suspensions(self, settings, mock_redis, db, plan):
        settings.BILLING_GRACE_PERIOD_DAYS = 30
        subscription = SubscriptionFactory(
            plan=plan,
            status=SubscriptionStatus.SUSPENDED,
            suspended_at=timezone.now() - timedelta(days=2),
        )

        result = cancel_lapsed_suspensions()

        assert result["cancelled"] == 0
        reloaded = Subscription.objects.get(pk=subscription.pk)
        assert reloaded.status == SubscriptionStatus.SUSPENDED

    def test_ignores_active_subscriptions(self, settings, mock_redis, active_subscription):
        settings.BILLING_GRACE_PERIOD_DAYS = 0

        result = cancel_lapsed_suspensions()

        assert result["cancelled"] == 0
        reloaded = Subscription.objects.get(pk=active_subscription.pk)
        assert reloaded.status == SubscriptionStatus.ACTIVE

    def test_skips_subscription_that_disappeared(
        self, settings, mock_redis, mocker, suspended_subscription
    ):
        settings.BILLING_GRACE_PERIOD_DAYS = 7
        mocker.patch(
            "billing.repositories.SubscriptionRepository.lock",
            side_effect=SubscriptionNotFoundError("gone"),
        )

        result = cancel_lapsed_suspensions()

        assert result == {"status": "completed", "cancelled": 0, "skipped": 1}

    def test_skips_run_when_lock_is_held(self, settings, mock_redis, suspended_subscription):
        settings.BILLING_GRACE_PERIOD_DAYS = 7
        mock_redis.set.return_value = False

        assert cancel_lapsed_suspensions() == {"status": "locked"}
        reloaded = Subscription.objects.get(pk=suspended_subscription.pk)
        assert reloaded.status == SubscriptionStatus.SUSPENDED


# =============================================================================
# Reconciliation Tasks
# =============================================================================


class TestReportUnreconciledWebhooks:
    def test_nothing_pending(self, db):
        WebhookEventFactory()

        assert report_unreconciled_webhooks() == {"count": 0}

    def test_reports_count_and_oldest(self, db):
        with freeze_time("2026-03-01 00:00:00"):
            oldest = WebhookEventFactory(requires_reconciliation=True)
        with freeze_time("2026-03-01 03:00:00"):
            WebhookEventFactory(requires_reconciliation=True)
            WebhookEventFactory(requires_reconciliation=True, reconciled_at=timezone.now())

        with freeze_time("2026-03-01 06:00:00"):
            result = report_unreconciled_webhooks()

        assert result == {
            "count": 2,
            "oldest_event_id": oldest.event_id,
            "oldest_age_hours": 6.0,
        }


class TestReprocessFlaggedWebhooks:
    def test_returns_service_stats(self, mocker):
        mock_reprocess = mocker.patch(
            "billing.tasks.ReconciliationService.reprocess_events",
            return_value=ServiceResult.ok({"reconciled": 1, "processed": 1}),
        )

        result = reprocess_flagged_webhooks(event_ids=["evt_1"], limit=5)

        assert result == {"reconciled": 1, "processed": 1}
        mock_reprocess.assert_called_once_with(event_ids=["evt_1"], limit=5)

    def test_failure_raises(self, mocker):
        mocker.patch(
            "billing.tasks.ReconciliationService.reprocess_events",
            return_value=ServiceResult.failure("boom", error_code="DATABASE_ERROR"),
        )

        with pytest.raises(RuntimeError, match="boom"):
            reprocess_flagged_webhooks()
