"""
Webhook event handlers.

One handler class per EventKind. Handlers run inside the executor's
transaction: they lock the subscription row, apply at most one FSM
transition, append PaymentRecords and queue post-commit notifications.
They never do network I/O.

Every handler is idempotent by construction, beyond the event-id guard:
a different event describing a fact that is already applied (the same
invoice reported by both invoice.paid and invoice.payment_succeeded, a
status sync that matches the current status) is a no-op.

Raising is how a handler asks for redelivery:
    SubscriptionNotFoundError    -> acknowledged, flagged for reconciliation
    InvalidStateTransitionError  -> retryable unless marked permanent
    WebhookValidationError       -> permanent rejection
"""

from __future__ import annotations

import abc
import logging
from dataclasses import dataclass, field
from typing import TYPE_CHECKING, ClassVar

from django.utils import timezone

from django_fsm import TransitionNotAllowed, can_proceed

from billing.exceptions import InvalidStateTransitionError
from billing.state_machines import (
    EventOutcome,
    NotificationType,
    PaymentKind,
    PaymentStatus,
    SubscriptionStatus,
)
from billing.webhooks.events import EventKind

if TYPE_CHECKING:
    from collections.abc import Callable
    from datetime import datetime
    from typing import Any

    from billing.models import Subscription
    from billing.notifications import SubscriptionNotifier
    from billing.repositories import PaymentRecordRepository, SubscriptionRepository
    from billing.webhooks.events import ProviderEvent


logger = logging.getLogger(__name__)


# Fields any handler may change on a subscription
SUBSCRIPTION_MUTABLE_FIELDS = (
    "status",
    "external_subscription_id",
    "external_customer_id",
    "started_at",
    "ends_at",
    "suspended_at",
    "cancelled_at",
    "metadata",
)

# Provider subscription statuses mapped onto ours. Anything else is a no-op.
PROVIDER_STATUS_MAP: dict[str, str] = {
    "active": SubscriptionStatus.ACTIVE,
    "trialing": SubscriptionStatus.ACTIVE,
    "past_due": SubscriptionStatus.SUSPENDED,
    "unpaid": SubscriptionStatus.SUSPENDED,
    "canceled": SubscriptionStatus.CANCELLED,
    "incomplete_expired": SubscriptionStatus.EXPIRED,
    "incomplete": SubscriptionStatus.PENDING,
}

# Which FSM transitions can move a subscription into each status, in order
# of preference.
TRANSITIONS_INTO: dict[str, tuple[str, ...]] = {
    SubscriptionStatus.ACTIVE: ("activate", "reactivate"),
    SubscriptionStatus.SUSPENDED: ("suspend",),
    SubscriptionStatus.CANCELLED: ("cancel",),
    SubscriptionStatus.EXPIRED: ("expire",),
    SubscriptionStatus.PENDING: (),
}

NOTIFICATION_FOR_STATUS: dict[str, str] = {
    SubscriptionStatus.ACTIVE: NotificationType.ACTIVATED,
    SubscriptionStatus.SUSPENDED: NotificationType.PAYMENT_FAILED,
    SubscriptionStatus.CANCELLED: NotificationType.CANCELLED,
    SubscriptionStatus.EXPIRED: NotificationType.EXPIRED,
}

INITIAL_INVOICE_REASON = "subscription_create"


# =============================================================================
# Outcome & Dependencies
# =============================================================================


@dataclass
class HandlerOutcome:
    """
    What a handler concluded about an event.

    Attributes:
        outcome: EventOutcome value stored in the ledger
        summary: JSON-serializable description for the ledger and logs
        requires_reconciliation: Flag the audit record for an operator
    """

    outcome: str
    summary: dict[str, Any] = field(default_factory=dict)
    requires_reconciliation: bool = False

    @classmethod
    def processed(cls, **summary: Any) -> HandlerOutcome:
        return cls(outcome=EventOutcome.PROCESSED, summary=summary)

    @classmethod
    def ignored(cls, reason: str, **summary: Any) -> HandlerOutcome:
        return cls(outcome=EventOutcome.IGNORED, summary={"reason": reason, **summary})

    @classmethod
    def deferred(cls, reason: str, **summary: Any) -> HandlerOutcome:
        return cls(
            outcome=EventOutcome.DEFERRED,
            summary={"reason": reason, **summary},
            requires_reconciliation=True,
        )


@dataclass
class HandlerDependencies:
    """Collaborators injected into every handler."""

    subscriptions: SubscriptionRepository
    payments: PaymentRecordRepository
    notifier: SubscriptionNotifier
    clock: Callable[[], datetime] = timezone.now
    metadata_key: str = "subscription_id"


# =============================================================================
# Payload Helpers
# =============================================================================


def _object_id(value: Any) -> str | None:
    """Provider references are either an id string or an expanded object."""
    if isinstance(value, dict):
        value = value.get("id")
    return value or None


def invoice_subscription_id(invoice: dict[str, Any]) -> str | None:
    """Provider subscription id of an invoice, across API versions."""
    subscription_id = _object_id(invoice.get("subscription"))
    if subscription_id:
        return subscription_id
    parent = invoice.get("parent") or {}
    details = parent.get("subscription_details") or {}
    return _object_id(details.get("subscription"))


def failure_details(obj: dict[str, Any]) -> tuple[str | None, str]:
    """(failure code, failure message) reported on a payment intent or invoice."""
    error = obj.get("last_payment_error") or {}
    code = error.get("decline_code") or error.get("code")
    message = error.get("message")
    if not message:
        attempts = obj.get("attempt_count")
        message = (
            f"Payment failed (attempt {attempts})" if attempts else "Payment failed"
        )
    return code, message


def _iso(value: datetime | None) -> str | None:
    return value.isoformat() if value else None


# =============================================================================
# Base Handler
# =============================================================================


class EventHandler(abc.ABC):
    """
    Base class for handlers. Subclasses declare ``kind`` and implement handle().
    """

    kind: ClassVar[EventKind]

    def __init__(self, deps: HandlerDependencies) -> None:
        self.subscriptions = deps.subscriptions
        self.payments = deps.payments
        self.notifier = deps.notifier
        self.clock = deps.clock
        self.metadata_key = deps.metadata_key

    @abc.abstractmethod
    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        """Apply the event. Runs inside the executor transaction."""

    # -------------------------------------------------------------------------
    # Shared steps
    # -------------------------------------------------------------------------

    def _subscription_from_metadata(self, event: ProviderEvent) -> Subscription | None:
        """
        Lock the subscription named in the object's metadata.

        Returns None when the object carries no reference (not ours).

        Raises:
            SubscriptionNotFoundError: The reference points nowhere
        """
        subscription_id = event.metadata_value(self.metadata_key)
        if subscription_id is None:
            return None
        return self.subscriptions.lock(subscription_id)

    def _transition(self, subscription: Subscription, name: str, *args, **kwargs) -> None:
        method = getattr(subscription, name)
        try:
            method(*args, **kwargs)
        except TransitionNotAllowed as e:
            raise InvalidStateTransitionError(
                f"Cannot {name} subscription from '{subscription.status}' state",
                details={
                    "subscription_id": str(subscription.pk),
                    "current_state": subscription.status,
                    "transition": name,
                },
            ) from e

    def _save(self, subscription: Subscription) -> None:
        self.subscriptions.save(subscription, SUBSCRIPTION_MUTABLE_FIELDS)

    def _append_payment(
        self,
        event: ProviderEvent,
        subscription: Subscription,
        *,
        external_payment_id: str,
        kind: str,
        status: str,
        amount_cents: int,
        failure_code: str | None = None,
        failure_reason: str | None = None,
    ) -> bool:
        """Append a PaymentRecord unless this charge outcome is already recorded."""
        if self.payments.exists(external_payment_id, status):
            return False
        self.payments.append(
            subscription=subscription,
            external_payment_id=external_payment_id,
            kind=kind,
            status=status,
            amount_cents=amount_cents or 0,
            currency=(event.data_object.get("currency") or subscription.plan.currency).lower(),
            failure_code=failure_code,
            failure_reason=failure_reason,
            processed_at=self.clock(),
            source_event_id=event.event_id,
        )
        return True


# =============================================================================
# Initial Payment Handlers
# =============================================================================


class InitialPaymentSucceededHandler(EventHandler):
    """
    payment_intent.succeeded: pending -> active.

    The first period starts now and lasts one plan interval. When a status
    sync activated the subscription before this event arrived, the charge
    is recorded and nothing else changes. A second distinct first charge,
    or one landing on a terminal subscription, is recorded and flagged:
    money moved but there is nothing left to activate.
    """

    kind = EventKind.INITIAL_PAYMENT_SUCCEEDED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        subscription = self._subscription_from_metadata(event)
        if subscription is None:
            return HandlerOutcome.ignored("no_subscription_reference")

        payment_id = event.require("id")
        amount = event.data_object.get("amount_received") or event.data_object.get("amount")

        if self.payments.exists(payment_id, PaymentStatus.SUCCEEDED):
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="payment_already_recorded",
            )

        if subscription.status == SubscriptionStatus.PENDING:
            self._transition(subscription, "activate", started_at=self.clock())
            self._append_payment(
                event,
                subscription,
                external_payment_id=payment_id,
                kind=PaymentKind.INITIAL,
                status=PaymentStatus.SUCCEEDED,
                amount_cents=amount,
            )
            self._save(subscription)
            self.notifier.notify(subscription, NotificationType.ACTIVATED)
            logger.info(
                "Subscription activated",
                extra={**event.log_context(), "subscription_id": str(subscription.pk)},
            )
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                transition="pending->active",
                ends_at=_iso(subscription.ends_at),
            )

        first_charge = not subscription.is_terminal and not self.payments.has_succeeded_initial(
            subscription
        )
        self._append_payment(
            event,
            subscription,
            external_payment_id=payment_id,
            kind=PaymentKind.INITIAL,
            status=PaymentStatus.SUCCEEDED,
            amount_cents=amount,
        )
        if first_charge:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop=f"already_{subscription.status}",
            )

        # Needs a human, likely a refund.
        logger.warning(
            f"Initial payment for subscription in '{subscription.status}' state",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.deferred(
            "unexpected_initial_payment",
            subscription_id=str(subscription.pk),
            status=subscription.status,
        )


class InitialPaymentFailedHandler(EventHandler):
    """
    payment_intent.payment_failed: pending -> expired.

    Failure events for a subscription that already left pending only
    append the failed record.
    """

    kind = EventKind.INITIAL_PAYMENT_FAILED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        subscription = self._subscription_from_metadata(event)
        if subscription is None:
            return HandlerOutcome.ignored("no_subscription_reference")

        payment_id = event.require("id")
        code, reason = failure_details(event.data_object)
        amount = event.data_object.get("amount")

        if subscription.status != SubscriptionStatus.PENDING:
            self._append_payment(
                event,
                subscription,
                external_payment_id=payment_id,
                kind=PaymentKind.INITIAL,
                status=PaymentStatus.FAILED,
                amount_cents=amount,
                failure_code=code,
                failure_reason=reason,
            )
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop=f"subscription_{subscription.status}",
            )

        self._transition(subscription, "expire")
        subscription.metadata["payment_failure_reason"] = reason
        self._append_payment(
            event,
            subscription,
            external_payment_id=payment_id,
            kind=PaymentKind.INITIAL,
            status=PaymentStatus.FAILED,
            amount_cents=amount,
            failure_code=code,
            failure_reason=reason,
        )
        self._save(subscription)
        self.notifier.notify(subscription, NotificationType.EXPIRED)
        logger.info(
            "Subscription expired after failed initial payment",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            transition="pending->expired",
            failure_code=code,
        )


# =============================================================================
# Recurring Payment Handlers
# =============================================================================


class _InvoiceHandler(EventHandler):
    def _locate(self, event: ProviderEvent) -> tuple[Subscription | None, HandlerOutcome | None]:
        invoice = event.data_object
        if invoice.get("billing_reason") == INITIAL_INVOICE_REASON:
            return None, HandlerOutcome.ignored("initial_invoice")
        external_id = invoice_subscription_id(invoice)
        if not external_id:
            return None, HandlerOutcome.ignored("not_a_subscription_invoice")
        return self.subscriptions.lock_by_external_id(external_id), None

    def _require_started(self, subscription: Subscription, transition: str) -> None:
        if subscription.status == SubscriptionStatus.PENDING:
            # The initial payment has not been reconciled yet; redelivery
            # will find the subscription active.
            raise InvalidStateTransitionError(
                "Recurring payment for a subscription that is still pending",
                details={
                    "subscription_id": str(subscription.pk),
                    "current_state": subscription.status,
                    "transition": transition,
                },
            )


class RecurringPaymentSucceededHandler(_InvoiceHandler):
    """
    invoice.payment_succeeded / invoice.paid: active|suspended -> active.

    Extends ends_at by one interval from the current ends_at. A charge on a
    terminal subscription is recorded and flagged for reconciliation.
    """

    kind = EventKind.RECURRING_PAYMENT_SUCCEEDED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        subscription, short_circuit = self._locate(event)
        if short_circuit is not None:
            return short_circuit

        invoice_id = event.require("id")
        amount = event.data_object.get("amount_paid")
        if self.payments.exists(invoice_id, PaymentStatus.SUCCEEDED):
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="payment_already_recorded",
            )

        self._require_started(subscription, "renew")

        if subscription.is_terminal:
            self._append_payment(
                event,
                subscription,
                external_payment_id=invoice_id,
                kind=PaymentKind.RECURRING,
                status=PaymentStatus.SUCCEEDED,
                amount_cents=amount,
            )
            logger.warning(
                f"Renewal payment for {subscription.status} subscription",
                extra={**event.log_context(), "subscription_id": str(subscription.pk)},
            )
            return HandlerOutcome.deferred(
                "payment_on_terminal_subscription",
                subscription_id=str(subscription.pk),
                status=subscription.status,
            )

        previous_status = subscription.status
        previous_ends_at = subscription.ends_at
        self._transition(subscription, "renew", fallback=self.clock())
        self._append_payment(
            event,
            subscription,
            external_payment_id=invoice_id,
            kind=PaymentKind.RECURRING,
            status=PaymentStatus.SUCCEEDED,
            amount_cents=amount,
        )
        self._save(subscription)
        self.notifier.notify(subscription, NotificationType.RENEWED)
        logger.info(
            "Subscription renewed",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            transition=f"{previous_status}->active",
            previous_ends_at=_iso(previous_ends_at),
            ends_at=_iso(subscription.ends_at),
        )


class RecurringPaymentFailedHandler(_InvoiceHandler):
    """
    invoice.payment_failed: active -> suspended.

    Suspension starts the grace period; it is not a cancellation. Failures
    for an invoice that has since been paid only append the failed record.
    """

    kind = EventKind.RECURRING_PAYMENT_FAILED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        subscription, short_circuit = self._locate(event)
        if short_circuit is not None:
            return short_circuit

        invoice_id = event.require("id")
        self._require_started(subscription, "suspend")

        code, reason = failure_details(event.data_object)
        self._append_payment(
            event,
            subscription,
            external_payment_id=invoice_id,
            kind=PaymentKind.RECURRING,
            status=PaymentStatus.FAILED,
            amount_cents=event.data_object.get("amount_due"),
            failure_code=code,
            failure_reason=reason,
        )

        if self.payments.exists(invoice_id, PaymentStatus.SUCCEEDED):
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="invoice_already_paid",
            )
        if subscription.status != SubscriptionStatus.ACTIVE:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop=f"subscription_{subscription.status}",
            )

        self._transition(
            subscription,
            "suspend",
            suspended_at=self.clock(),
            reason="payment_failed",
        )
        subscription.metadata["payment_failure_reason"] = reason
        self._save(subscription)
        self.notifier.notify(subscription, NotificationType.PAYMENT_FAILED)
        logger.info(
            "Subscription suspended after failed renewal",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            transition="active->suspended",
            failure_code=code,
        )


# =============================================================================
# Provider Subscription Handlers
# =============================================================================


class ExternalSubscriptionLinkedHandler(EventHandler):
    """
    customer.subscription.created: attach the provider subscription id.

    First writer wins. A subscription already linked to a different id keeps
    it; a provider id already linked to a different subscription is flagged.
    """

    kind = EventKind.EXTERNAL_SUBSCRIPTION_LINKED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        subscription = self._subscription_from_metadata(event)
        if subscription is None:
            return HandlerOutcome.ignored("no_subscription_reference")

        external_id = event.require("id")
        current = subscription.external_subscription_id

        if current == external_id:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="already_linked",
            )
        if current:
            logger.warning(
                "Subscription already linked to a different provider subscription",
                extra={
                    **event.log_context(),
                    "subscription_id": str(subscription.pk),
                    "linked_to": current,
                },
            )
            return HandlerOutcome.ignored(
                "linked_to_other_external_subscription",
                subscription_id=str(subscription.pk),
                linked_to=current,
            )

        owner = self.subscriptions.external_id_owner(external_id)
        if owner is not None:
            return HandlerOutcome.deferred(
                "external_subscription_linked_elsewhere",
                subscription_id=str(subscription.pk),
                owner_subscription_id=str(owner),
            )

        subscription.external_subscription_id = external_id
        customer_id = _object_id(event.data_object.get("customer"))
        if customer_id:
            subscription.external_customer_id = customer_id
        self._save(subscription)
        logger.info(
            "Linked provider subscription",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            external_subscription_id=external_id,
        )


class ExternalSubscriptionStatusSyncedHandler(EventHandler):
    """
    customer.subscription.updated: follow the provider's status.

    Only forward edges of the state machine are applied. A mapped status
    that is not reachable from the current one is a stale snapshot and is
    acknowledged as ignored.
    """

    kind = EventKind.EXTERNAL_SUBSCRIPTION_STATUS_SYNCED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        external_id = event.require("id")
        provider_status = event.require("status")
        subscription = self.subscriptions.lock_by_external_id(external_id)

        target = PROVIDER_STATUS_MAP.get(provider_status)
        if target is None:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="unmapped_provider_status",
                provider_status=provider_status,
            )
        if target == subscription.status:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop="status_unchanged",
            )

        transition = next(
            (
                name
                for name in TRANSITIONS_INTO[target]
                if can_proceed(getattr(subscription, name))
            ),
            None,
        )
        previous_status = subscription.status
        if transition is None:
            logger.info(
                f"Ignoring stale status sync {previous_status} -> {target}",
                extra={**event.log_context(), "subscription_id": str(subscription.pk)},
            )
            return HandlerOutcome.ignored(
                "stale_status",
                subscription_id=str(subscription.pk),
                current_status=previous_status,
                provider_status=provider_status,
            )

        now = self.clock()
        reason = f"provider_status_{provider_status}"
        if transition == "activate":
            self._transition(subscription, transition, started_at=now)
        elif transition == "suspend":
            self._transition(subscription, transition, suspended_at=now, reason=reason)
        elif transition == "cancel":
            self._transition(subscription, transition, cancelled_at=now, reason=reason)
        else:
            self._transition(subscription, transition)

        self._save(subscription)
        self.notifier.notify(subscription, NOTIFICATION_FOR_STATUS[target])
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            transition=f"{previous_status}->{target}",
            provider_status=provider_status,
        )


class ExternalSubscriptionTerminatedHandler(EventHandler):
    """customer.subscription.deleted: any non-terminal state -> cancelled."""

    kind = EventKind.EXTERNAL_SUBSCRIPTION_TERMINATED

    def handle(self, event: ProviderEvent) -> HandlerOutcome:
        external_id = event.require("id")
        subscription = self.subscriptions.lock_by_external_id(external_id)

        if subscription.is_terminal:
            return HandlerOutcome.processed(
                subscription_id=str(subscription.pk),
                noop=f"subscription_{subscription.status}",
            )

        previous_status = subscription.status
        self._transition(
            subscription,
            "cancel",
            cancelled_at=self.clock(),
            reason="provider_subscription_deleted",
        )
        self._save(subscription)
        self.notifier.notify(subscription, NotificationType.CANCELLED)
        logger.info(
            "Subscription cancelled by provider",
            extra={**event.log_context(), "subscription_id": str(subscription.pk)},
        )
        return HandlerOutcome.processed(
            subscription_id=str(subscription.pk),
            transition=f"{previous_status}->cancelled",
        )


HANDLER_CLASSES: tuple[type[EventHandler], ...] = (
    InitialPaymentSucceededHandler,
    InitialPaymentFailedHandler,
    RecurringPaymentSucceededHandler,
    RecurringPaymentFailedHandler,
    ExternalSubscriptionLinkedHandler,
    ExternalSubscriptionStatusSyncedHandler,
    ExternalSubscriptionTerminatedHandler,
)


def build_handlers(deps: HandlerDependencies) -> list[EventHandler]:
    """Instantiate one handler per EventKind."""
    return [handler_class(deps) for handler_class in HANDLER_CLASSES]
