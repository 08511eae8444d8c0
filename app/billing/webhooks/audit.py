"""
Audit recorder: durable outcome log for every authenticated delivery.

Writes happen outside the executor transaction (autocommit), so a failed
attempt is still on record after its transaction rolls back. Records are
keyed by provider event id; repeated deliveries update the same row.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from billing.state_machines import EventOutcome, WebhookEventStatus

if TYPE_CHECKING:
    from typing import Any

    from billing.models import WebhookEvent
    from billing.repositories import WebhookEventRepository
    from billing.webhooks.events import ProviderEvent

logger = logging.getLogger(__name__)

# Ledger outcome -> audit status
STATUS_FOR_OUTCOME = {
    EventOutcome.PROCESSED: WebhookEventStatus.PROCESSED,
    EventOutcome.IGNORED: WebhookEventStatus.IGNORED,
    EventOutcome.DEFERRED: WebhookEventStatus.DEFERRED,
}


class AuditRecorder:
    def __init__(self, events: WebhookEventRepository) -> None:
        self.events = events

    def lookup(self, event_id: str) -> WebhookEvent | None:
        return self.events.get(event_id)

    def record_received(
        self,
        event: ProviderEvent,
        source_ip: str | None = None,
    ) -> tuple[WebhookEvent, bool]:
        """
        Create or refresh the audit row at the start of an attempt.

        Returns:
            (record, created)
        """
        record, created = self.events.get_or_create(
            event.event_id,
            defaults={
                "event_type": event.event_type[:100],
                "payload": event.payload,
                "status": WebhookEventStatus.RECEIVED,
            },
        )
        if not created:
            record.payload = event.payload
        if source_ip:
            record.source_ip = source_ip
        record.mark_attempt()
        record.save()
        return record, created

    def record_outcome(
        self,
        record: WebhookEvent,
        outcome: str,
        *,
        requires_reconciliation: bool = False,
    ) -> WebhookEvent:
        """Store an acknowledged ledger outcome (processed, ignored, deferred)."""
        record.mark_outcome(
            STATUS_FOR_OUTCOME[outcome],
            requires_reconciliation=requires_reconciliation,
        )
        record.save()
        return record

    def record_replay(self, record: WebhookEvent, *, first_seen: bool) -> WebhookEvent:
        """
        Store a redelivery of an already-applied event.

        A row that already holds an outcome keeps it; only a row created by
        this very delivery is marked as replayed.
        """
        if first_seen or record.status in (
            WebhookEventStatus.RECEIVED,
            WebhookEventStatus.FAILED,
        ):
            record.mark_outcome(WebhookEventStatus.REPLAYED)
        record.save()
        return record

    def record_deferred(
        self,
        record: WebhookEvent,
        error_code: str,
        message: str,
    ) -> WebhookEvent:
        """Store an acknowledged delivery that needs manual reconciliation."""
        record.mark_outcome(WebhookEventStatus.DEFERRED, requires_reconciliation=True)
        record.error_code = error_code
        record.error_message = message
        record.save()
        return record

    def record_failure(
        self,
        record: WebhookEvent,
        error_code: str,
        message: str,
        *,
        permanent: bool = False,
        requires_reconciliation: bool = False,
    ) -> WebhookEvent:
        """Store a failed (retryable) or rejected (permanent) attempt."""
        status = WebhookEventStatus.REJECTED if permanent else WebhookEventStatus.FAILED
        record.mark_failed(status, error_code, message)
        if requires_reconciliation:
            record.requires_reconciliation = True
            record.reconciled_at = None
        record.save()
        return record

    def record_rejection(
        self,
        payload: Any,
        error_code: str,
        message: str,
        source_ip: str | None = None,
    ) -> WebhookEvent | None:
        """
        Store an authenticated payload that failed validation.

        Only possible when the payload at least names an event id; without
        one the rejection is logged and nothing is stored.
        """
        event_id = payload.get("id") if isinstance(payload, dict) else None
        if not isinstance(event_id, str) or not event_id:
            logger.warning(
                "Rejected webhook payload without an event id",
                extra={"error_code": error_code},
            )
            return None

        event_type = payload.get("type")
        record, _ = self.events.get_or_create(
            event_id,
            defaults={
                "event_type": event_type[:100] if isinstance(event_type, str) else "",
                "payload": payload,
            },
        )
        if source_ip:
            record.source_ip = source_ip
        record.mark_attempt()
        return self.record_failure(record, error_code, message, permanent=True)
