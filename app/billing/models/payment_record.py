"""
PaymentRecord model: append-only log of charges reported by the provider.

Rows are written by webhook handlers inside the same transaction as the
subscription change they accompany, and never modified afterwards.

Usage:
    from billing.models import PaymentRecord

    PaymentRecord.objects.create(
        subscription=subscription,
        external_payment_id="in_123",
        kind=PaymentKind.RECURRING,
        amount_cents=1500,
        currency="usd",
        status=PaymentStatus.SUCCEEDED,
        processed_at=timezone.now(),
        source_event_id="evt_123",
    )
"""

from __future__ import annotations

from django.db import models

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.exceptions import PaymentRecordImmutableError
from billing.state_machines import PaymentKind, PaymentStatus


class PaymentRecordQuerySet(models.QuerySet):
    """QuerySet that refuses bulk mutation of ledger rows."""

    def update(self, **kwargs):
        raise PaymentRecordImmutableError("Payment records cannot be updated")

    def delete(self):
        raise PaymentRecordImmutableError("Payment records cannot be deleted")


class PaymentRecord(UUIDPrimaryKeyMixin, BaseModel):
    """
    One charge attempt (succeeded or failed) against a subscription.

    Fields:
        subscription: Subscription the charge belongs to (required)
        external_payment_id: Provider payment intent or invoice ID
        kind: initial or recurring
        amount_cents: Amount in smallest currency unit
        currency: ISO 4217 currency code (lowercase)
        status: succeeded or failed
        failure_code: Provider decline/failure code (failed only)
        failure_reason: Human-readable failure message (failed only)
        processed_at: When the charge was reconciled
        source_event_id: Provider event that produced this row

    Note:
        Unique on (external_payment_id, status): the same charge reported by
        two different events (invoice.paid and invoice.payment_succeeded)
        cannot append twice.
    """

    subscription = models.ForeignKey(
        "billing.Subscription",
        on_delete=models.PROTECT,
        related_name="payments",
        help_text="Subscription this payment belongs to",
    )

    external_payment_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Provider payment intent (pi_xxx) or invoice (in_xxx) ID",
    )

    kind = models.CharField(
        max_length=10,
        choices=PaymentKind.choices,
        help_text="Whether this was the initial or a recurring charge",
    )

    amount_cents = models.PositiveBigIntegerField(
        default=0,
        help_text="Charged amount in smallest currency unit",
    )

    currency = models.CharField(
        max_length=3,
        default="usd",
        help_text="ISO 4217 currency code (lowercase)",
    )

    status = models.CharField(
        max_length=10,
        choices=PaymentStatus.choices,
        db_index=True,
        help_text="Charge outcome",
    )

    failure_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Provider failure code (e.g., card_declined)",
    )

    failure_reason = models.TextField(
        null=True,
        blank=True,
        help_text="Failure message reported by the provider",
    )

    processed_at = models.DateTimeField(
        help_text="When the charge was reconciled",
    )

    source_event_id = models.CharField(
        max_length=255,
        db_index=True,
        help_text="Provider event ID (evt_xxx) that produced this record",
    )

    objects = PaymentRecordQuerySet.as_manager()

    class Meta:
        ordering = ["-processed_at"]
        verbose_name = "Payment Record"
        verbose_name_plural = "Payment Records"
        indexes = [
            models.Index(
                fields=["subscription", "processed_at"],
                name="billing_pay_subscri_5c8e21_idx",
            ),
        ]
        constraints = [
            models.UniqueConstraint(
                fields=["external_payment_id", "status"],
                name="unique_payment_per_outcome",
            ),
        ]

    def __str__(self) -> str:
        amount = f"{self.amount_cents / 100:.2f} {self.currency.upper()}"
        return f"PaymentRecord({self.external_payment_id}, {self.status}, {amount})"

    def save(self, *args, **kwargs):
        """Insert only. Existing rows are immutable."""
        if not self._state.adding:
            raise PaymentRecordImmutableError(
                f"PaymentRecord {self.pk} cannot be modified",
                details={"payment_record_id": str(self.pk)},
            )
        super().save(*args, **kwargs)

    def delete(self, *args, **kwargs):
        raise PaymentRecordImmutableError(
            f"PaymentRecord {self.pk} cannot be deleted",
            details={"payment_record_id": str(self.pk)},
        )

    @property
    def succeeded(self) -> bool:
        return self.status == PaymentStatus.SUCCEEDED
