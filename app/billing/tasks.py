"""
Celery tasks for billing.

This module provides async tasks for:
- Sending subscription notification emails (queued post-commit)
- Cancelling subscriptions whose grace period has lapsed
- Reporting webhook events awaiting manual reconciliation
- Reprocessing flagged webhook events from their stored payload

Usage:
    from billing.tasks import reprocess_flagged_webhooks

    # Re-run specific flagged events
    reprocess_flagged_webhooks.delay(event_ids=["evt_123"])

Periodic tasks are registered through a django_celery_beat data migration
(see migrations/0002_register_periodic_tasks.py).
"""

from __future__ import annotations

import logging
from datetime import timedelta

from celery import shared_task
from django.conf import settings
from django.contrib.auth import get_user_model
from django.core.mail import send_mail
from django.db import transaction
from django.utils import timezone

from billing.exceptions import (
    LockAcquisitionError,
    StaleRecordError,
    SubscriptionNotFoundError,
)
from billing.locks import DistributedLock
from billing.models import Subscription, WebhookEvent
from billing.notifications import SubscriptionNotifier
from billing.repositories import SubscriptionRepository
from billing.services import REPROCESS_BATCH_SIZE, ReconciliationService
from billing.state_machines import NotificationType, SubscriptionStatus

logger = logging.getLogger(__name__)


# =============================================================================
# Constants
# =============================================================================

CANCEL_LAPSED_LOCK_KEY = "billing:cancel_lapsed_suspensions"
CANCEL_LAPSED_LOCK_TTL = 300

NOTIFICATION_SUBJECTS = {
    NotificationType.ACTIVATED: "Your subscription is active",
    NotificationType.RENEWED: "Your subscription has been renewed",
    NotificationType.PAYMENT_FAILED: "We couldn't process your payment",
    NotificationType.CANCELLED: "Your subscription has been cancelled",
    NotificationType.EXPIRED: "Your subscription could not be started",
}

NOTIFICATION_BODIES = {
    NotificationType.ACTIVATED: (
        "Thanks for subscribing to {plan}. Your subscription is active until {ends_at}."
    ),
    NotificationType.RENEWED: (
        "Your {plan} subscription has been renewed and is now active until {ends_at}."
    ),
    NotificationType.PAYMENT_FAILED: (
        "We couldn't collect the payment for your {plan} subscription. "
        "Please update your payment method to keep your access."
    ),
    NotificationType.CANCELLED: "Your {plan} subscription has been cancelled.",
    NotificationType.EXPIRED: (
        "The first payment for your {plan} subscription did not go through, "
        "so the subscription was not started."
    ),
}


# =============================================================================
# Notification Tasks
# =============================================================================


@shared_task(
    bind=True,
    autoretry_for=(Exception,),
    retry_backoff=True,
    retry_backoff_max=600,
    retry_kwargs={"max_retries": settings.BILLING_NOTIFICATION_MAX_RETRIES},
    acks_late=True,
)
def send_subscription_notification(
    self,
    subscription_id: str,
    user_id: str,
    notification_type: str,
) -> dict:
    """
    Email the subscription owner about a state change.

    Receives identifiers only and loads the rest. Runs after the webhook
    transaction committed, with its own retry policy.

    Args:
        subscription_id: UUID of the Subscription
        user_id: Primary key of the owning user
        notification_type: NotificationType value

    Returns:
        Dict with delivery status
    """
    if notification_type not in NOTIFICATION_SUBJECTS:
        logger.error(
            f"Unknown notification type: {notification_type}",
            extra={"subscription_id": subscription_id},
        )
        return {"status": "unknown_type", "subscription_id": subscription_id}

    subscription = (
        Subscription.objects.select_related("plan").filter(pk=subscription_id).first()
    )
    if subscription is None:
        logger.error(
            "Subscription not found for notification",
            extra={"subscription_id": subscription_id},
        )
        return {"status": "not_found", "subscription_id": subscription_id}

    user = get_user_model().objects.filter(pk=user_id).first()
    email = getattr(user, "email", None) if user is not None else None
    if not email:
        logger.warning(
            "No email address for notification recipient",
            extra={"subscription_id": subscription_id, "user_id": user_id},
        )
        return {"status": "no_recipient", "subscription_id": subscription_id}

    ends_at = subscription.ends_at
    body = NOTIFICATION_BODIES[notification_type].format(
        plan=subscription.plan.name,
        ends_at=ends_at.date().isoformat() if ends_at else "-",
    )
    send_mail(
        subject=NOTIFICATION_SUBJECTS[notification_type],
        message=body,
        from_email=settings.DEFAULT_FROM_EMAIL,
        recipient_list=[email],
        fail_silently=False,
    )

    logger.info(
        f"Sent {notification_type} notification",
        extra={
            "subscription_id": subscription_id,
            "user_id": user_id,
            "attempt": self.request.retries,
        },
    )
    return {
        "status": "sent",
        "subscription_id": subscription_id,
        "notification_type": notification_type,
    }


# =============================================================================
# Periodic Tasks
# =============================================================================


@shared_task
def cancel_lapsed_suspensions() -> dict:
    """
    Cancel subscriptions suspended for longer than the grace period.

    Does nothing unless BILLING_GRACE_PERIOD_DAYS is set. Each subscription
    is cancelled in its own transaction under a row lock, re-checking its
    state, so a renewal webhook racing this job wins or loses cleanly.

    Returns:
        Dict with counts of cancelled and skipped subscriptions
    """
    grace_days = settings.BILLING_GRACE_PERIOD_DAYS
    if grace_days is None:
        logger.debug("No grace period configured, suspended subscriptions stay suspended")
        return {"status": "disabled"}

    try:
        lock = DistributedLock(CANCEL_LAPSED_LOCK_KEY, ttl=CANCEL_LAPSED_LOCK_TTL, blocking=False)
        lock.acquire()
    except LockAcquisitionError:
        logger.warning(
            "Another lapsed-suspension run is in progress",
            extra={"lock_key": CANCEL_LAPSED_LOCK_KEY},
        )
        return {"status": "locked"}

    repository = SubscriptionRepository()
    notifier = SubscriptionNotifier()
    stats = {"status": "completed", "cancelled": 0, "skipped": 0}

    try:
        now = timezone.now()
        cutoff = now - timedelta(days=grace_days)
        candidate_ids = list(
            repository.lapsed_suspensions(cutoff).values_list("pk", flat=True)
        )

        for subscription_id in candidate_ids:
            try:
                with transaction.atomic():
                    subscription = repository.lock(subscription_id)
                    if (
                        subscription.status != SubscriptionStatus.SUSPENDED
                        or subscription.suspended_at is None
                        or subscription.suspended_at >= cutoff
                    ):
                        stats["skipped"] += 1
                        continue

                    subscription.cancel(cancelled_at=now, reason="grace_period_expired")
                    repository.save(
                        subscription,
                        ("status", "cancelled_at", "metadata"),
                    )
                    notifier.notify(subscription, NotificationType.CANCELLED)
            except (SubscriptionNotFoundError, StaleRecordError) as e:
                stats["skipped"] += 1
                logger.warning(
                    f"Skipped lapsed subscription: {e.message}",
                    extra={"subscription_id": str(subscription_id)},
                )
                continue

            stats["cancelled"] += 1
            logger.info(
                "Cancelled subscription after grace period",
                extra={"subscription_id": str(subscription_id), "grace_days": grace_days},
            )
    finally:
        lock.release()

    if stats["cancelled"]:
        logger.info(
            f"Cancelled {stats['cancelled']} lapsed subscriptions",
            extra=stats,
        )
    return stats


@shared_task
def report_unreconciled_webhooks() -> dict:
    """
    Log a warning while flagged webhook events are waiting for an operator.

    Returns:
        Dict with the number of open events and the oldest one's age
    """
    pending = WebhookEvent.objects.needing_reconciliation()
    count = pending.count()
    if not count:
        return {"count": 0}

    oldest = pending.order_by("created_at").first()
    age_hours = round((timezone.now() - oldest.created_at).total_seconds() / 3600, 1)
    logger.warning(
        f"{count} webhook events need manual reconciliation",
        extra={
            "count": count,
            "oldest_event_id": oldest.event_id,
            "oldest_age_hours": age_hours,
        },
    )
    return {"count": count, "oldest_event_id": oldest.event_id, "oldest_age_hours": age_hours}


# =============================================================================
# Operator Tasks
# =============================================================================


@shared_task
def reprocess_flagged_webhooks(
    event_ids: list[str] | None = None,
    limit: int = REPROCESS_BATCH_SIZE,
) -> dict:
    """
    Run flagged webhook events through the pipeline again.

    Triggered by operators (admin action), not scheduled.

    Args:
        event_ids: Restrict to these provider event ids
        limit: Maximum number of events per run

    Returns:
        Dict with counts per resulting status

    Raises:
        RuntimeError: The run failed; Celery records the failure
    """
    result = ReconciliationService.reprocess_events(event_ids=event_ids, limit=limit)
    if not result.success:
        raise RuntimeError(result.error)
    return result.data
