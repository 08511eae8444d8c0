"""
ProcessedEvent model: the idempotency ledger.

One row per provider event id, written in the same transaction as the
handler's side effects. The unique constraint on event_id, not an
application check, is what makes concurrent duplicate deliveries safe.
"""

from __future__ import annotations

from django.db import models

from billing.state_machines import EventOutcome


class ProcessedEvent(models.Model):
    """
    Marks a provider event as applied.

    Fields:
        event_id: Provider event ID (evt_xxx), unique
        event_type: Provider event type
        outcome: processed, ignored or deferred
        summary: Small JSON description of what the handler did
        processed_at: Commit time of the handling transaction
    """

    event_id = models.CharField(
        max_length=255,
        unique=True,
        help_text="Provider event ID (evt_xxx) - unique constraint for idempotency",
    )

    event_type = models.CharField(
        max_length=100,
        help_text="Provider event type (e.g., 'invoice.paid')",
    )

    outcome = models.CharField(
        max_length=20,
        choices=EventOutcome.choices,
        help_text="What the handler concluded",
    )

    summary = models.JSONField(
        default=dict,
        blank=True,
        help_text="Handler result summary",
    )

    processed_at = models.DateTimeField(
        auto_now_add=True,
        help_text="When the event was applied",
    )

    class Meta:
        ordering = ["-processed_at"]
        verbose_name = "Processed Event"
        verbose_name_plural = "Processed Events"

    def __str__(self) -> str:
        return f"ProcessedEvent({self.event_id}, {self.outcome})"
