"""
Webhook processor: the single entry point of the reconciliation engine.

    raw bytes + signature
        -> SignatureValidator      (400 on failure, nothing stored)
        -> ProviderEvent.from_payload (400, rejection recorded)
        -> AuditRecorder.record_received
        -> EventRouter.resolve     (unmodelled type: 200, ignored)
        -> TransactionalExecutor   (guard + handler + ledger)
        -> AuditRecorder outcome
        -> ProcessingResult (HTTP status + body)

Status codes: 2xx tells the provider the event is done, anything else asks
for redelivery. So replays, ignored events and deferred events are 200;
authentication and validation failures are 400; every retryable failure
is 503.

The processor is built once by BillingConfig.ready() from settings and
holds all of its collaborators. Tests build their own with
build_webhook_processor(...).
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import TYPE_CHECKING

from django.conf import settings

from core.exceptions import BaseApplicationError
from core.helpers import hash_bytes
from core.services import BaseService

from billing.exceptions import (
    SubscriptionNotFoundError,
    WebhookAuthenticationError,
    WebhookValidationError,
)
from billing.notifications import SubscriptionNotifier
from billing.repositories import (
    PaymentRecordRepository,
    ProcessedEventRepository,
    SubscriptionRepository,
    WebhookEventRepository,
)
from billing.state_machines import WebhookEventStatus
from billing.webhooks.audit import STATUS_FOR_OUTCOME, AuditRecorder
from billing.webhooks.events import ProviderEvent
from billing.webhooks.executor import TransactionalExecutor
from billing.webhooks.handlers import HandlerDependencies, build_handlers
from billing.webhooks.idempotency import IdempotencyGuard
from billing.webhooks.router import EventRouter
from billing.webhooks.signature import SignatureValidator

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any

    from billing.models import WebhookEvent


@dataclass
class ProcessingResult:
    """
    Outcome of one delivery, ready to be turned into an HTTP response.

    Attributes:
        status_code: 200, 400 or 503
        status: WebhookEventStatus value describing what happened
        event_id: Provider event id, when known
        event_type: Provider event type, when known
        error_code: Machine-readable cause for non-200 results
        message: Short human-readable description
    """

    status_code: int
    status: str
    event_id: str | None = None
    event_type: str | None = None
    error_code: str | None = None
    message: str = ""

    @property
    def acknowledged(self) -> bool:
        return 200 <= self.status_code < 300

    def to_dict(self) -> dict[str, Any]:
        data: dict[str, Any] = {
            "received": self.acknowledged,
            "status": self.status,
        }
        if self.event_id:
            data["event_id"] = self.event_id
        if self.event_type:
            data["event_type"] = self.event_type
        if self.error_code:
            data["error_code"] = self.error_code
        if self.message:
            data["message"] = self.message
        return data


class WebhookProcessor(BaseService):
    """
    Authenticates, applies and audits provider deliveries.

    Args:
        validator: Signature validator for the endpoint
        router: Event router with all handlers registered
        executor: Transactional executor
        audit: Audit recorder
    """

    def __init__(
        self,
        validator: SignatureValidator,
        router: EventRouter,
        executor: TransactionalExecutor,
        audit: AuditRecorder,
    ) -> None:
        self.validator = validator
        self.router = router
        self.executor = executor
        self.audit = audit

    # -------------------------------------------------------------------------
    # Entry points
    # -------------------------------------------------------------------------

    def handle(
        self,
        payload: bytes,
        signature_header: str,
        source_ip: str | None = None,
    ) -> ProcessingResult:
        """Process one HTTP delivery. Never raises."""
        logger = self.get_logger()

        try:
            raw = self.validator.verify(payload, signature_header)
        except WebhookAuthenticationError as e:
            # Unauthenticated bytes are never parsed, stored or echoed
            logger.warning(
                f"Webhook signature verification failed: {e.message}",
                extra={
                    "error_code": e.error_code,
                    "source_ip": source_ip,
                    "payload_sha256": hash_bytes(payload),
                },
            )
            return ProcessingResult(
                status_code=400,
                status=WebhookEventStatus.REJECTED,
                error_code=e.error_code,
                message=e.message,
            )
        except WebhookValidationError as e:
            logger.warning(
                f"Webhook payload rejected: {e.message}",
                extra={"error_code": e.error_code},
            )
            return ProcessingResult(
                status_code=400,
                status=WebhookEventStatus.REJECTED,
                error_code=e.error_code,
                message=e.message,
            )

        try:
            event = ProviderEvent.from_payload(raw)
        except WebhookValidationError as e:
            logger.warning(
                f"Webhook payload rejected: {e.message}",
                extra={"error_code": e.error_code, **e.details},
            )
            self.audit.record_rejection(raw, e.error_code, e.message, source_ip=source_ip)
            return ProcessingResult(
                status_code=400,
                status=WebhookEventStatus.REJECTED,
                event_id=e.details.get("event_id"),
                error_code=e.error_code,
                message=e.message,
            )

        logger.info(f"Received webhook: {event.event_type}", extra=event.log_context())
        return self.process(event, source_ip=source_ip)

    def process(self, event: ProviderEvent, source_ip: str | None = None) -> ProcessingResult:
        """
        Apply an authenticated event and record the outcome.

        Also used to reprocess stored events flagged for reconciliation.
        """
        logger = self.get_logger()
        record, first_seen = self.audit.record_received(event, source_ip=source_ip)

        handler = self.router.resolve(event)
        if handler is None:
            self.audit.record_outcome(record, "ignored")
            return self._ack(event, WebhookEventStatus.IGNORED, "Event type not handled")

        try:
            result = self.executor.execute(event, handler)

        except SubscriptionNotFoundError as e:
            logger.warning(
                f"Deferring event: {e.message}",
                extra={**event.log_context(), **e.details},
            )
            self.audit.record_deferred(record, e.error_code, e.message)
            return self._ack(event, WebhookEventStatus.DEFERRED, e.message)

        except WebhookValidationError as e:
            logger.warning(
                f"Event rejected by handler: {e.message}",
                extra={**event.log_context(), "error_code": e.error_code},
            )
            self.audit.record_failure(record, e.error_code, e.message, permanent=True)
            return self._error(event, 400, WebhookEventStatus.REJECTED, e)

        except BaseApplicationError as e:
            return self._handle_business_error(event, record, e)

        except Exception as e:
            logger.exception(
                f"Unexpected error processing webhook: {type(e).__name__}",
                extra=event.log_context(),
            )
            self.audit.record_failure(record, "UNEXPECTED_ERROR", f"{type(e).__name__}: {e}")
            return ProcessingResult(
                status_code=503,
                status=WebhookEventStatus.FAILED,
                event_id=event.event_id,
                event_type=event.event_type,
                error_code="UNEXPECTED_ERROR",
                message="Processing failed, please retry",
            )

        if result.replayed:
            self.audit.record_replay(record, first_seen=first_seen)
            return self._ack(event, WebhookEventStatus.REPLAYED, "Event already processed")

        self.audit.record_outcome(
            record,
            result.outcome,
            requires_reconciliation=result.requires_reconciliation,
        )
        logger.info(
            f"Webhook {result.outcome}",
            extra={**event.log_context(), "summary": result.summary},
        )
        return self._ack(event, STATUS_FOR_OUTCOME[result.outcome])

    def reprocess(self, record: WebhookEvent) -> ProcessingResult:
        """Run a stored event through the pipeline again (operator action)."""
        try:
            event = ProviderEvent.from_payload(record.payload)
        except WebhookValidationError as e:
            self.audit.record_failure(record, e.error_code, e.message, permanent=True)
            return ProcessingResult(
                status_code=400,
                status=WebhookEventStatus.REJECTED,
                event_id=record.event_id,
                error_code=e.error_code,
                message=e.message,
            )
        return self.process(event)

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _handle_business_error(
        self,
        event: ProviderEvent,
        record: WebhookEvent,
        error: BaseApplicationError,
    ) -> ProcessingResult:
        retryable = getattr(error, "is_retryable", True)
        if retryable:
            self.get_logger().warning(
                f"Retryable error processing webhook: {error.message}",
                extra={**event.log_context(), "error_code": error.error_code},
            )
            self.audit.record_failure(record, error.error_code, error.message)
            return self._error(event, 503, WebhookEventStatus.FAILED, error)

        # Permanent business errors are acknowledged so the provider stops
        # redelivering, and handed to an operator instead.
        self.get_logger().error(
            f"Permanent error processing webhook: {error.message}",
            extra={**event.log_context(), "error_code": error.error_code},
        )
        self.audit.record_failure(
            record,
            error.error_code,
            error.message,
            permanent=True,
            requires_reconciliation=True,
        )
        return ProcessingResult(
            status_code=200,
            status=WebhookEventStatus.REJECTED,
            event_id=event.event_id,
            event_type=event.event_type,
            error_code=error.error_code,
            message=error.message,
        )

    @staticmethod
    def _ack(event: ProviderEvent, status: str, message: str = "") -> ProcessingResult:
        return ProcessingResult(
            status_code=200,
            status=status,
            event_id=event.event_id,
            event_type=event.event_type,
            message=message,
        )

    @staticmethod
    def _error(
        event: ProviderEvent,
        status_code: int,
        status: str,
        error: BaseApplicationError,
    ) -> ProcessingResult:
        return ProcessingResult(
            status_code=status_code,
            status=status,
            event_id=event.event_id,
            event_type=event.event_type,
            error_code=error.error_code,
            message=error.message,
        )


def build_webhook_processor(
    *,
    secret: str | None = None,
    tolerance: int | None = None,
    statement_timeout_ms: int | None = None,
    lock_timeout_ms: int | None = None,
    metadata_key: str | None = None,
    clock: Callable[[], datetime] | None = None,
    notifier: SubscriptionNotifier | None = None,
    using: str = "default",
) -> WebhookProcessor:
    """
    Wire a processor from settings, with keyword overrides.

    Raises:
        ImproperlyConfigured: An EventKind has no handler
    """
    deps = HandlerDependencies(
        subscriptions=SubscriptionRepository(using=using),
        payments=PaymentRecordRepository(using=using),
        notifier=notifier or SubscriptionNotifier(using=using),
        metadata_key=metadata_key or settings.BILLING_SUBSCRIPTION_METADATA_KEY,
    )
    if clock is not None:
        deps.clock = clock

    router = EventRouter()
    for handler in build_handlers(deps):
        router.register(handler)
    router.verify_complete()

    executor = TransactionalExecutor(
        IdempotencyGuard(ProcessedEventRepository(using=using)),
        statement_timeout_ms=(
            statement_timeout_ms
            if statement_timeout_ms is not None
            else settings.BILLING_WEBHOOK_STATEMENT_TIMEOUT_MS
        ),
        lock_timeout_ms=(
            lock_timeout_ms
            if lock_timeout_ms is not None
            else settings.BILLING_WEBHOOK_LOCK_TIMEOUT_MS
        ),
        using=using,
    )

    validator = SignatureValidator(
        secret=settings.STRIPE_WEBHOOK_SECRET if secret is None else secret,
        tolerance=(
            tolerance
            if tolerance is not None
            else settings.BILLING_WEBHOOK_TOLERANCE_SECONDS
        ),
    )

    return WebhookProcessor(
        validator=validator,
        router=router,
        executor=executor,
        audit=AuditRecorder(WebhookEventRepository(using=using)),
    )


def get_webhook_processor() -> WebhookProcessor:
    """The processor built at startup by BillingConfig.ready()."""
    from django.apps import apps

    return apps.get_app_config("billing").webhook_processor
