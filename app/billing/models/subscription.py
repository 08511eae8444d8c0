"""
Subscription model for recurring billing state.

A Subscription is created by the purchase flow (outside this app) in the
PENDING state and is mutated afterwards only by webhook handlers and the
grace-period job, always through the django-fsm transitions below.

Usage:
    from billing.models import Subscription
    from billing.state_machines import SubscriptionStatus

    subscription = Subscription.objects.create(user=user, plan=plan)

    # State transitions using django-fsm
    subscription.activate(started_at=timezone.now())  # pending -> active
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from django.conf import settings
from django.db import models
from django.db.models import F

from django_fsm import FSMField, transition

from core.models import BaseModel
from core.model_mixins import MetadataMixin, UUIDPrimaryKeyMixin

from billing.state_machines import SubscriptionStatus

if TYPE_CHECKING:
    from datetime import datetime


class Subscription(UUIDPrimaryKeyMixin, MetadataMixin, BaseModel):
    """
    Tracks a user's subscription to a plan.

    Uses django-fsm for state machine management and optimistic
    locking via version field for concurrency control.

    State Flow:
        PENDING -> ACTIVE (initial payment succeeded)
        PENDING -> EXPIRED (initial payment failed)
        ACTIVE -> SUSPENDED (renewal payment failed, grace period starts)
        SUSPENDED -> ACTIVE (renewal payment recovered, or provider says active)
        PENDING/ACTIVE/SUSPENDED -> CANCELLED

    Fields:
        user: Owner of the subscription
        plan: Plan supplying price and billing interval
        status: Current FSM state
        external_subscription_id: Provider subscription ID (sub_xxx), set once
        external_customer_id: Provider customer ID (cus_xxx)
        started_at: When the first payment was reconciled
        ends_at: End of the paid period, never moves backwards
        suspended_at: When the current suspension began
        cancelled_at: When the subscription was cancelled
        version: Optimistic locking version
        metadata: Flexible JSON storage (failure and cancellation reasons)
    """

    # ==========================================================================
    # Relationships
    # ==========================================================================

    user = models.ForeignKey(
        settings.AUTH_USER_MODEL,
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="User who owns the subscription",
    )

    plan = models.ForeignKey(
        "billing.Plan",
        on_delete=models.PROTECT,
        related_name="subscriptions",
        help_text="Plan supplying the billing interval and price",
    )

    # ==========================================================================
    # State
    # ==========================================================================

    status = FSMField(
        default=SubscriptionStatus.PENDING,
        choices=SubscriptionStatus.choices,
        db_index=True,
        protected=True,
        help_text="Current state of the subscription (managed by FSM)",
    )

    # ==========================================================================
    # Provider Integration
    # ==========================================================================

    external_subscription_id = models.CharField(
        max_length=255,
        unique=True,
        null=True,
        blank=True,
        help_text="Provider subscription ID (sub_xxx), first writer wins",
    )

    external_customer_id = models.CharField(
        max_length=255,
        null=True,
        blank=True,
        db_index=True,
        help_text="Provider customer ID (cus_xxx)",
    )

    # ==========================================================================
    # Billing Period
    # ==========================================================================

    started_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the subscription became active",
    )

    ends_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="End of the current paid period",
    )

    suspended_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the current suspension (grace period) began",
    )

    cancelled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When subscription was cancelled",
    )

    # ==========================================================================
    # Concurrency Control
    # ==========================================================================

    version = models.PositiveIntegerField(
        default=1,
        help_text="Version for optimistic locking - incremented on each save",
    )

    # ==========================================================================
    # Meta & Methods
    # ==========================================================================

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Subscription"
        verbose_name_plural = "Subscriptions"
        indexes = [
            models.Index(fields=["user", "status"], name="billing_sub_user_id_4d2a7b_idx"),
            models.Index(fields=["status", "suspended_at"], name="billing_sub_status_9e3f10_idx"),
        ]

    def __str__(self) -> str:
        return f"Subscription({self.id}, {self.status})"

    def save(self, *args, **kwargs):
        """
        Save with version auto-increment for optimistic locking.
        """
        is_update = not self._state.adding and not kwargs.get("force_insert", False)
        if is_update:
            self.version = F("version") + 1
        super().save(*args, **kwargs)
        if is_update:
            self.refresh_from_db(fields=["version"])

    # ==========================================================================
    # State Transitions (django-fsm)
    # ==========================================================================

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.ACTIVE,
    )
    def activate(self, started_at: datetime):
        """
        Activate after the initial payment succeeded.

        Transition: PENDING -> ACTIVE

        The first paid period runs from ``started_at`` for one interval.
        """
        self.started_at = started_at
        self.ends_at = self.plan.advance(started_at)

    @transition(
        field=status,
        source=SubscriptionStatus.PENDING,
        target=SubscriptionStatus.EXPIRED,
    )
    def expire(self):
        """
        Expire after the initial payment failed.

        Transition: PENDING -> EXPIRED (terminal)
        """

    @transition(
        field=status,
        source=SubscriptionStatus.ACTIVE,
        target=SubscriptionStatus.SUSPENDED,
    )
    def suspend(self, suspended_at: datetime, reason: str | None = None):
        """
        Suspend after a renewal payment failed.

        Transition: ACTIVE -> SUSPENDED

        Starts the grace period. Access rules are the caller's concern.
        """
        self.suspended_at = suspended_at
        if reason:
            self.metadata["suspension_reason"] = reason

    @transition(
        field=status,
        source=[SubscriptionStatus.ACTIVE, SubscriptionStatus.SUSPENDED],
        target=SubscriptionStatus.ACTIVE,
    )
    def renew(self, fallback: datetime):
        """
        Extend the paid period by one interval after a renewal payment.

        Transition: ACTIVE/SUSPENDED -> ACTIVE

        The new end date is computed from the current end date, never from
        the processing time, so a late event does not shift the schedule.
        ``fallback`` is only used when no period has been recorded yet.
        """
        anchor = self.ends_at or fallback
        self.ends_at = self.plan.advance(anchor)
        self.suspended_at = None
        self.metadata.pop("payment_failure_reason", None)
        self.metadata.pop("suspension_reason", None)

    @transition(
        field=status,
        source=SubscriptionStatus.SUSPENDED,
        target=SubscriptionStatus.ACTIVE,
    )
    def reactivate(self):
        """
        Lift a suspension without extending the period.

        Transition: SUSPENDED -> ACTIVE

        Used when the provider reports the subscription active again before
        (or without) the recovering invoice event.
        """
        self.suspended_at = None
        self.metadata.pop("suspension_reason", None)

    @transition(
        field=status,
        source=[
            SubscriptionStatus.PENDING,
            SubscriptionStatus.ACTIVE,
            SubscriptionStatus.SUSPENDED,
        ],
        target=SubscriptionStatus.CANCELLED,
    )
    def cancel(self, cancelled_at: datetime, reason: str | None = None):
        """
        Cancel the subscription.

        Transition: PENDING/ACTIVE/SUSPENDED -> CANCELLED (terminal)

        Can be triggered by:
        - customer.subscription.deleted webhook
        - a provider status sync reporting the subscription canceled
        - the grace-period job for long suspensions
        """
        self.cancelled_at = cancelled_at
        if reason:
            self.metadata["cancel_reason"] = reason

    # ==========================================================================
    # Helper Properties
    # ==========================================================================

    @property
    def is_terminal(self) -> bool:
        return self.status in SubscriptionStatus.terminal()

    @property
    def is_active(self) -> bool:
        return self.status == SubscriptionStatus.ACTIVE

    @property
    def is_suspended(self) -> bool:
        return self.status == SubscriptionStatus.SUSPENDED
