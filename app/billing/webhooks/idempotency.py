"""
Idempotency guard over the ProcessedEvent ledger.

Both calls must run inside the executor's transaction. The pre-check is an
optimization; the unique constraint on ProcessedEvent.event_id is what
stops two concurrent deliveries of the same event from both committing.
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from billing.models import ProcessedEvent
    from billing.repositories import ProcessedEventRepository
    from billing.webhooks.events import ProviderEvent
    from billing.webhooks.handlers import HandlerOutcome

logger = logging.getLogger(__name__)


class IdempotencyGuard:
    def __init__(self, ledger: ProcessedEventRepository) -> None:
        self.ledger = ledger

    def has_processed(self, event_id: str) -> bool:
        return self.ledger.exists(event_id)

    def previous_outcome(self, event_id: str) -> ProcessedEvent | None:
        return self.ledger.get(event_id)

    def record_processed(
        self,
        event: ProviderEvent,
        outcome: HandlerOutcome,
    ) -> ProcessedEvent:
        """
        Write the ledger row for ``event``.

        Raises:
            IntegrityError: A concurrent delivery recorded it first. The
                caller's transaction must roll back.
        """
        entry = self.ledger.create(
            event_id=event.event_id,
            event_type=event.event_type,
            outcome=outcome.outcome,
            summary=outcome.summary,
        )
        logger.debug(
            "Recorded processed event",
            extra={**event.log_context(), "outcome": outcome.outcome},
        )
        return entry
