"""
Plan model: immutable pricing reference data.

Handlers read a plan's billing interval to compute renewal dates. Plans are
never edited by the reconciliation engine.

Usage:
    from billing.models import Plan

    plan = Plan.objects.create(
        name="Pro monthly",
        billing_interval=BillingInterval.MONTH,
        price_cents=1500,
    )
    ends_at = plan.advance(subscription.ends_at)
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from dateutil.relativedelta import relativedelta
from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.state_machines import BillingInterval

if TYPE_CHECKING:
    from datetime import datetime


# relativedelta clamps to the last day of the month (Jan 31 + 1 month = Feb 28/29)
INTERVAL_DELTAS = {
    BillingInterval.WEEK: relativedelta(weeks=1),
    BillingInterval.MONTH: relativedelta(months=1),
    BillingInterval.YEAR: relativedelta(years=1),
}


class Plan(UUIDPrimaryKeyMixin, BaseModel):
    """
    A purchasable plan with a fixed price and billing interval.

    Fields:
        name: Display name
        billing_interval: week, month or year
        price_cents: Price in smallest currency unit
        currency: ISO 4217 currency code (lowercase)
        is_active: Whether new subscriptions may use this plan
    """

    name = models.CharField(
        max_length=100,
        help_text="Display name of the plan",
    )

    billing_interval = models.CharField(
        max_length=10,
        choices=BillingInterval.choices,
        default=BillingInterval.MONTH,
        help_text="Recurring billing period",
    )

    price_cents = models.PositiveBigIntegerField(
        help_text="Price per period in smallest currency unit (e.g., cents)",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    is_active = models.BooleanField(
        default=True,
        help_text="Whether new subscriptions can be created on this plan",
    )

    class Meta:
        ordering = ["name"]
        verbose_name = "Plan"
        verbose_name_plural = "Plans"
        constraints = [
            models.CheckConstraint(
                condition=models.Q(price_cents__gt=0),
                name="plan_price_positive",
            ),
        ]

    def __str__(self) -> str:
        price = f"{self.price_cents / 100:.2f} {self.currency.upper()}"
        return f"Plan({self.name}, {price}/{self.billing_interval})"

    @property
    def interval_delta(self) -> relativedelta:
        return INTERVAL_DELTAS[BillingInterval(self.billing_interval)]

    def advance(self, moment: datetime, periods: int = 1) -> datetime:
        """
        Return ``moment`` moved forward by ``periods`` billing intervals.

        Args:
            moment: Aware datetime to start from
            periods: Number of intervals (must be positive)

        Returns:
            A datetime strictly later than ``moment``
        """
        if periods < 1:
            raise ValueError("periods must be a positive integer")
        return moment + self.interval_delta * periods
