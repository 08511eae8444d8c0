"""
WebhookEvent model: durable audit record for provider deliveries.

Every delivery that passes signature verification produces (or updates) one
row keyed by the provider event id, whatever the outcome. Rows are written
outside the handler transaction so failures survive the rollback.

Usage:
    from billing.models import WebhookEvent

    record = WebhookEvent.objects.get(event_id="evt_123")
    if record.requires_reconciliation:
        ...
"""

from __future__ import annotations

from django.db import models
from django.utils import timezone

from core.models import BaseModel
from core.model_mixins import UUIDPrimaryKeyMixin

from billing.state_machines import WebhookEventStatus


class WebhookEventQuerySet(models.QuerySet):
    def needing_reconciliation(self):
        """Flagged events an operator has not resolved yet."""
        return self.filter(requires_reconciliation=True, reconciled_at__isnull=True)


class WebhookEvent(UUIDPrimaryKeyMixin, BaseModel):
    """
    Audit trail entry for one provider event.

    Fields:
        event_id: Provider event ID (evt_xxx), unique and indexed
        event_type: Provider event type
        payload: Parsed payload of the most recent delivery
        status: Last recorded outcome
        attempt_count: Number of deliveries (and manual reprocess runs)
        last_attempt_at: When the most recent attempt started
        processed_at: When an attempt last completed with an acknowledged outcome
        error_code: Machine-readable cause of the last failure
        error_message: Human-readable cause of the last failure
        requires_reconciliation: Needs operator attention
        reconciled_at: When an operator resolved the flag
        source_ip: Address the delivery came from
    """

    # ==========================================================================
    # Event Identification
    # ==========================================================================

    event_id = models.CharField(
        max_length=255,
        unique=True,
        db_index=True,
        help_text="Provider event ID (evt_xxx)",
    )

    event_type = models.CharField(
        max_length=100,
        db_index=True,
        help_text="Provider event type (e.g., 'invoice.payment_failed')",
    )

    payload = models.JSONField(
        default=dict,
        help_text="Event payload as received",
    )

    source_ip = models.GenericIPAddressField(
        null=True,
        blank=True,
        help_text="Client address of the most recent delivery",
    )

    # ==========================================================================
    # Processing Status
    # ==========================================================================

    status = models.CharField(
        max_length=20,
        choices=WebhookEventStatus.choices,
        default=WebhookEventStatus.RECEIVED,
        db_index=True,
        help_text="Last recorded outcome",
    )

    attempt_count = models.PositiveIntegerField(
        default=0,
        help_text="Number of processing attempts",
    )

    last_attempt_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the most recent attempt started",
    )

    processed_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When the event was last acknowledged",
    )

    # ==========================================================================
    # Error Handling
    # ==========================================================================

    error_code = models.CharField(
        max_length=100,
        null=True,
        blank=True,
        help_text="Machine-readable failure cause",
    )

    error_message = models.TextField(
        null=True,
        blank=True,
        help_text="Error message if processing failed",
    )

    # ==========================================================================
    # Reconciliation
    # ==========================================================================

    requires_reconciliation = models.BooleanField(
        default=False,
        db_index=True,
        help_text="Flagged for manual reconciliation",
    )

    reconciled_at = models.DateTimeField(
        null=True,
        blank=True,
        help_text="When an operator resolved the flag",
    )

    objects = WebhookEventQuerySet.as_manager()

    class Meta:
        ordering = ["-created_at"]
        verbose_name = "Webhook Event"
        verbose_name_plural = "Webhook Events"
        indexes = [
            models.Index(fields=["status", "created_at"], name="billing_web_status_6f0c2e_idx"),
            models.Index(fields=["event_type", "created_at"], name="billing_web_event_t_3b9d41_idx"),
            models.Index(
                fields=["requires_reconciliation", "reconciled_at"],
                name="billing_web_require_a81e5c_idx",
            ),
        ]

    def __str__(self) -> str:
        return f"WebhookEvent({self.event_id}, {self.event_type})"

    # ==========================================================================
    # Properties
    # ==========================================================================

    @property
    def is_processed(self) -> bool:
        return self.status == WebhookEventStatus.PROCESSED

    @property
    def is_failed(self) -> bool:
        return self.status == WebhookEventStatus.FAILED

    # ==========================================================================
    # Helper Methods
    # ==========================================================================

    def mark_attempt(self) -> None:
        """
        Record the start of a processing attempt.

        Note: Does not save - caller must save after calling.
        """
        self.attempt_count += 1
        self.last_attempt_at = timezone.now()

    def mark_outcome(
        self,
        status: str,
        *,
        requires_reconciliation: bool = False,
    ) -> None:
        """
        Record an acknowledged outcome and clear any previous error.

        A flag raised by an earlier attempt stays set until an operator
        resolves it. Raising a new flag reopens a resolved one.

        Note: Does not save - caller must save after calling.
        """
        self.status = status
        self.processed_at = timezone.now()
        self.error_code = None
        self.error_message = None
        if requires_reconciliation:
            self.requires_reconciliation = True
            self.reconciled_at = None

    def mark_failed(self, status: str, error_code: str, error_message: str) -> None:
        """
        Record a failed or rejected attempt.

        Note: Does not save - caller must save after calling.
        """
        self.status = status
        self.error_code = error_code
        self.error_message = error_message

    def mark_reconciled(self) -> None:
        """
        Clear the reconciliation flag.

        Note: Does not save - caller must save after calling.
        """
        self.reconciled_at = timezone.now()

    def get_object_id(self) -> str | None:
        """Primary object ID from the payload (payload.data.object.id)."""
        try:
            return self.payload.get("data", {}).get("object", {}).get("id")
        except (AttributeError, TypeError):
            return None
