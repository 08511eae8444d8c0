"""
Post-commit notifier for subscription changes.

Handlers call ``notify()`` from inside the webhook transaction. Nothing is
sent there: the Celery task is queued with ``transaction.on_commit`` so a
rolled-back transaction sends nothing, and a slow mail server never holds
a row lock or delays the acknowledgment.

Only identifiers cross the queue. The task loads whatever it needs to
render the email, and never sees payment details.

Usage:
    notifier = SubscriptionNotifier()
    notifier.notify(subscription, NotificationType.RENEWED)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.db import transaction

if TYPE_CHECKING:
    from billing.models import Subscription

logger = logging.getLogger(__name__)


class SubscriptionNotifier:
    """
    Queues user-facing notifications after the surrounding transaction commits.

    Args:
        task: Celery task with a ``delay(subscription_id, user_id, notification_type)``
            signature. Defaults to billing.tasks.send_subscription_notification.
        using: Database alias whose transaction gates the dispatch
    """

    def __init__(self, task=None, using: str = "default") -> None:
        self._task = task
        self.using = using

    @property
    def task(self):
        if self._task is None:
            # Imported lazily: billing.tasks imports the models
            from billing.tasks import send_subscription_notification

            self._task = send_subscription_notification
        return self._task

    def notify(self, subscription: Subscription, notification_type: str) -> None:
        subscription_id = str(subscription.pk)
        user_id = str(subscription.user_id)
        transaction.on_commit(
            lambda: self._dispatch(subscription_id, user_id, str(notification_type)),
            using=self.using,
        )

    def _dispatch(self, subscription_id: str, user_id: str, notification_type: str) -> None:
        try:
            self.task.delay(subscription_id, user_id, notification_type)
        except Exception:
            # The event is already committed; a broker outage must not turn
            # the acknowledgment into a provider retry.
            logger.error(
                "Failed to queue subscription notification",
                extra={
                    "subscription_id": subscription_id,
                    "notification_type": notification_type,
                },
                exc_info=True,
            )
            return

        logger.info(
            f"Queued {notification_type} notification",
            extra={"subscription_id": subscription_id, "user_id": user_id},
        )
