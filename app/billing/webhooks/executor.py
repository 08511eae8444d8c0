"""
Transactional executor: guard check + handler + ledger write, atomically.

Sequence inside one transaction:
    1. Apply statement/lock timeouts (PostgreSQL)
    2. Idempotency pre-check; a recorded event short-circuits as a replay
    3. Handler
    4. Ledger write
    5. Commit, then post-commit callbacks (notifications) run

Any exception rolls back subscription changes, payment records and the
ledger row together. A unique-constraint race on the ledger means another
delivery of the same event committed first; that is reported as a replay.
Everything else surfaces as TransientProcessingError unless it is one of
the billing errors the processor already knows how to classify.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from django.db import DatabaseError, IntegrityError, connections, transaction

from billing.exceptions import TransientProcessingError

if TYPE_CHECKING:
    from typing import Any

    from billing.webhooks.events import ProviderEvent
    from billing.webhooks.handlers import EventHandler
    from billing.webhooks.idempotency import IdempotencyGuard

logger = logging.getLogger(__name__)


@dataclass
class ExecutionResult:
    """
    Result of running one event through the executor.

    Attributes:
        outcome: EventOutcome value (the previous one on replays)
        summary: Handler summary (the recorded one on replays)
        replayed: The event was already in the ledger
        requires_reconciliation: Handler asked for operator attention
    """

    outcome: str
    summary: dict[str, Any] = field(default_factory=dict)
    replayed: bool = False
    requires_reconciliation: bool = False


class TransactionalExecutor:
    """
    Args:
        guard: Idempotency guard over the ledger
        statement_timeout_ms: Per-statement limit inside the transaction
        lock_timeout_ms: Limit on waiting for row locks
        using: Database alias
    """

    def __init__(
        self,
        guard: IdempotencyGuard,
        statement_timeout_ms: int | None = None,
        lock_timeout_ms: int | None = None,
        using: str = "default",
    ) -> None:
        self.guard = guard
        self.statement_timeout_ms = statement_timeout_ms
        self.lock_timeout_ms = lock_timeout_ms
        self.using = using

    def execute(self, event: ProviderEvent, handler: EventHandler) -> ExecutionResult:
        """
        Apply ``event`` with ``handler`` exactly once.

        Raises:
            TransientProcessingError: Database failure, timeout or constraint race
            BillingError subclasses raised by the handler, after rollback
        """
        try:
            with transaction.atomic(using=self.using):
                self._apply_timeouts()

                previous = self.guard.previous_outcome(event.event_id)
                if previous is not None:
                    logger.info(
                        "Event already processed, skipping handler",
                        extra=event.log_context(),
                    )
                    return ExecutionResult(
                        outcome=previous.outcome,
                        summary=previous.summary,
                        replayed=True,
                    )

                outcome = handler.handle(event)
                self.guard.record_processed(event, outcome)

        except IntegrityError as e:
            previous = self.guard.previous_outcome(event.event_id)
            if previous is not None:
                logger.info(
                    "Concurrent delivery recorded the event first",
                    extra=event.log_context(),
                )
                return ExecutionResult(
                    outcome=previous.outcome,
                    summary=previous.summary,
                    replayed=True,
                )
            logger.warning(
                f"Constraint violation while processing event: {e}",
                extra=event.log_context(),
            )
            raise TransientProcessingError(
                "Constraint violation while applying event",
                error_code="CONSTRAINT_VIOLATION",
                details={"event_id": event.event_id},
            ) from e

        except DatabaseError as e:
            logger.warning(
                f"Database error while processing event: {type(e).__name__}",
                extra=event.log_context(),
                exc_info=True,
            )
            raise TransientProcessingError(
                "Database error while applying event",
                error_code="DATABASE_ERROR",
                details={"event_id": event.event_id, "error": type(e).__name__},
            ) from e

        return ExecutionResult(
            outcome=outcome.outcome,
            summary=outcome.summary,
            requires_reconciliation=outcome.requires_reconciliation,
        )

    def _apply_timeouts(self) -> None:
        """Bound how long the transaction may wait, on backends that support it."""
        connection = connections[self.using]
        if connection.vendor != "postgresql":
            return
        with connection.cursor() as cursor:
            if self.statement_timeout_ms:
                cursor.execute(
                    f"SET LOCAL statement_timeout = {int(self.statement_timeout_ms)}"
                )
            if self.lock_timeout_ms:
                cursor.execute(f"SET LOCAL lock_timeout = {int(self.lock_timeout_ms)}")
