"""
Reconciliation service for webhook events flagged for an operator.

Used by the admin actions and the reprocess task. The webhook pipeline
itself lives in billing.webhooks.

Usage:
    from billing.services import ReconciliationService

    result = ReconciliationService.reprocess_events(["evt_123"])
    if result.success:
        print(result.data["reconciled"])
"""

from __future__ import annotations

from typing import TYPE_CHECKING

from core.services import BaseService, ServiceResult

from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus

if TYPE_CHECKING:
    from collections.abc import Iterable

REPROCESS_BATCH_SIZE = 100


class ReconciliationService(BaseService):
    @classmethod
    def reprocess_events(
        cls,
        event_ids: Iterable[str] | None = None,
        limit: int = REPROCESS_BATCH_SIZE,
    ) -> ServiceResult[dict[str, int]]:
        """
        Run flagged events through the webhook pipeline again.

        Events that now apply cleanly are marked reconciled. Everything else
        stays flagged with the new outcome recorded on the audit row.

        Args:
            event_ids: Restrict to these provider event ids
            limit: Maximum number of events per run

        Returns:
            ServiceResult with counts per resulting status
        """
        from billing.webhooks.service import get_webhook_processor

        processor = get_webhook_processor()
        queryset = WebhookEvent.objects.needing_reconciliation().order_by("created_at")
        if event_ids is not None:
            queryset = queryset.filter(event_id__in=list(event_ids))

        stats: dict[str, int] = {"reconciled": 0}
        try:
            for record in queryset[:limit]:
                result = processor.reprocess(record)
                status = str(result.status)
                stats[status] = stats.get(status, 0) + 1

                if result.status == WebhookEventStatus.PROCESSED:
                    record.refresh_from_db()
                    record.mark_reconciled()
                    record.save(update_fields=["reconciled_at", "updated_at"])
                    stats["reconciled"] += 1

                cls.get_logger().info(
                    f"Reprocessed flagged webhook: {result.status}",
                    extra={"event_id": record.event_id, "error_code": result.error_code},
                )
        except Exception as e:
            return cls.handle_exception(e, "Reprocessing flagged webhooks failed")

        return ServiceResult.ok(stats)

    @classmethod
    def mark_reconciled(cls, event_ids: Iterable[str]) -> ServiceResult[int]:
        """
        Resolve the reconciliation flag on the given events.

        Events that are not flagged (or already resolved) are left alone.

        Returns:
            ServiceResult with the number of events resolved
        """
        event_ids = list(event_ids)
        if not event_ids:
            return ServiceResult.failure("No events selected", error_code="NO_EVENTS")

        count = 0
        with cls.atomic():
            records = WebhookEvent.objects.needing_reconciliation().filter(
                event_id__in=event_ids
            )
            for record in records.select_for_update():
                record.mark_reconciled()
                record.save(update_fields=["reconciled_at", "updated_at"])
                count += 1

        cls.get_logger().info(
            f"Marked {count} webhook events as reconciled",
            extra={"count": count},
        )
        return ServiceResult.ok(count)
