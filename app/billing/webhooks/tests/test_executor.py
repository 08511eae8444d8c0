"""
Tests for TransactionalExecutor.

Covers the ledger short-circuit, atomic rollback of handler work, the
unique-constraint race between concurrent deliveries and the mapping of
database failures onto TransientProcessingError.
"""

import pytest
from django.db import IntegrityError, OperationalError

from billing.exceptions import InvalidStateTransitionError, TransientProcessingError
from billing.models import PaymentRecord, ProcessedEvent, Subscription
from billing.notifications import SubscriptionNotifier
from billing.repositories import (
    PaymentRecordRepository,
    ProcessedEventRepository,
    SubscriptionRepository,
)
from billing.state_machines import EventOutcome
from billing.tests.factories import PaymentRecordFactory, ProcessedEventFactory
from billing.webhooks.events import EventKind, ProviderEvent
from billing.webhooks.executor import TransactionalExecutor
from billing.webhooks.handlers import (
    EventHandler,
    HandlerDependencies,
    HandlerOutcome,
    RecurringPaymentSucceededHandler,
)
from billing.webhooks.idempotency import IdempotencyGuard
from billing.webhooks.tests.conftest import FIXED_NOW, invoice_payload


class ExplodingHandler(EventHandler):
    """Writes a payment record, then fails with the configured error."""

    kind = EventKind.RECURRING_PAYMENT_SUCCEEDED

    def __init__(self, subscription, error):
        self.subscription = subscription
        self.error = error

    def handle(self, event):
        PaymentRecordFactory(subscription=self.subscription, external_payment_id="in_partial")
        raise self.error


@pytest.fixture
def guard(db):
    return IdempotencyGuard(ProcessedEventRepository())


@pytest.fixture
def executor(guard):
    return TransactionalExecutor(guard, statement_timeout_ms=5000, lock_timeout_ms=2000)


@pytest.fixture
def renewal_handler(notification_task):
    return RecurringPaymentSucceededHandler(
        HandlerDependencies(
            subscriptions=SubscriptionRepository(),
            payments=PaymentRecordRepository(),
            notifier=SubscriptionNotifier(task=notification_task),
            clock=lambda: FIXED_NOW,
        )
    )


@pytest.fixture
def renewal_event():
    return ProviderEvent.from_payload(
        invoice_payload("invoice.paid", "sub_active_123", event_id="evt_renewal_1")
    )


class TestExecute:
    def test_applies_handler_and_records_ledger(
        self, executor, renewal_handler, renewal_event, active_subscription
    ):
        result = executor.execute(renewal_event, renewal_handler)

        assert result.outcome == EventOutcome.PROCESSED
        assert result.replayed is False
        assert result.summary["transition"] == "active->active"
        entry = ProcessedEvent.objects.get(event_id="evt_renewal_1")
        assert entry.event_type == "invoice.paid"
        assert entry.summary == result.summary
        assert PaymentRecord.objects.count() == 1

    def test_recorded_event_is_replayed_without_handler(
        self, executor, renewal_event, mocker, db
    ):
        ProcessedEventFactory(
            event_id="evt_renewal_1",
            outcome=EventOutcome.IGNORED,
            summary={"reason": "initial_invoice"},
        )
        handler = mocker.MagicMock()

        result = executor.execute(renewal_event, handler)

        assert result.replayed is True
        assert result.outcome == EventOutcome.IGNORED
        assert result.summary == {"reason": "initial_invoice"}
        handler.handle.assert_not_called()

    def test_deferred_outcome_carries_reconciliation_flag(
        self, executor, renewal_handler, cancelled_subscription
    ):
        event = ProviderEvent.from_payload(invoice_payload("invoice.paid", "sub_cancelled_123"))

        result = executor.execute(event, renewal_handler)

        assert result.outcome == EventOutcome.DEFERRED
        assert result.requires_reconciliation is True
        assert ProcessedEvent.objects.filter(event_id=event.event_id).exists()

    def test_handler_error_rolls_back_everything(
        self, executor, renewal_event, active_subscription
    ):
        handler = ExplodingHandler(
            active_subscription,
            InvalidStateTransitionError("Cannot renew subscription"),
        )

        with pytest.raises(InvalidStateTransitionError):
            executor.execute(renewal_event, handler)

        assert not PaymentRecord.objects.exists()
        assert not ProcessedEvent.objects.exists()

    def test_notifications_wait_for_commit(
        self,
        executor,
        renewal_handler,
        renewal_event,
        active_subscription,
        notification_task,
        django_capture_on_commit_callbacks,
    ):
        with django_capture_on_commit_callbacks(execute=True) as callbacks:
            executor.execute(renewal_event, renewal_handler)
            notification_task.delay.assert_not_called()

        assert len(callbacks) == 1
        notification_task.delay.assert_called_once_with(
            str(active_subscription.pk),
            str(active_subscription.user_id),
            "renewed",
        )


class TestConcurrentDelivery:
    def test_losing_the_ledger_race_is_a_replay(
        self, executor, guard, renewal_handler, renewal_event, active_subscription, mocker
    ):
        """
        Two deliveries pass the pre-check; the second one to insert the
        ledger row rolls back its own changes and reports a replay.
        """
        winner = ProcessedEventFactory(
            event_id="evt_renewal_1",
            event_type="invoice.paid",
            summary={"transition": "active->active"},
        )
        real_previous_outcome = guard.previous_outcome
        mocker.patch.object(
            guard,
            "previous_outcome",
            side_effect=[None, real_previous_outcome("evt_renewal_1")],
        )

        result = executor.execute(renewal_event, renewal_handler)

        assert result.replayed is True
        assert result.summary == winner.summary
        assert ProcessedEvent.objects.filter(event_id="evt_renewal_1").count() == 1
        assert not PaymentRecord.objects.exists()
        subscription = Subscription.objects.get(pk=active_subscription.pk)
        assert subscription.ends_at == active_subscription.ends_at
        assert subscription.version == 1

    def test_other_constraint_violation_is_transient(
        self, executor, renewal_event, active_subscription
    ):
        handler = ExplodingHandler(active_subscription, IntegrityError("duplicate key"))

        with pytest.raises(TransientProcessingError) as exc_info:
            executor.execute(renewal_event, handler)

        assert exc_info.value.error_code == "CONSTRAINT_VIOLATION"
        assert exc_info.value.is_retryable is True
        assert not PaymentRecord.objects.exists()

    def test_database_error_is_transient(self, executor, renewal_event, active_subscription):
        handler = ExplodingHandler(active_subscription, OperationalError("lock timeout"))

        with pytest.raises(TransientProcessingError) as exc_info:
            executor.execute(renewal_event, handler)

        assert exc_info.value.error_code == "DATABASE_ERROR"
        assert exc_info.value.details["error"] == "OperationalError"
        assert not PaymentRecord.objects.exists()


class TestTimeouts:
    def test_sets_local_timeouts_on_postgresql(self, executor, mocker):
        connection = mocker.MagicMock(vendor="postgresql")
        cursor = connection.cursor.return_value.__enter__.return_value
        mocker.patch(
            "billing.webhooks.executor.connections",
            {"default": connection},
        )

        executor._apply_timeouts()

        cursor.execute.assert_has_calls(
            [
                mocker.call("SET LOCAL statement_timeout = 5000"),
                mocker.call("SET LOCAL lock_timeout = 2000"),
            ]
        )

    def test_skipped_on_other_backends(self, executor, mocker):
        connection = mocker.MagicMock(vendor="sqlite")
        mocker.patch(
            "billing.webhooks.executor.connections",
            {"default": connection},
        )

        executor._apply_timeouts()

        connection.cursor.assert_not_called()


def test_ignored_outcome_is_still_recorded(executor, db):
    """Ignored events go into the ledger so replays stay cheap."""

    class IgnoringHandler(EventHandler):
        kind = EventKind.RECURRING_PAYMENT_SUCCEEDED

        def __init__(self):
            pass

        def handle(self, event):
            return HandlerOutcome.ignored("initial_invoice")

    event = ProviderEvent.from_payload(invoice_payload("invoice.paid", "sub_x"))

    result = executor.execute(event, IgnoringHandler())

    assert result.outcome == EventOutcome.IGNORED
    assert ProcessedEvent.objects.get(event_id=event.event_id).outcome == EventOutcome.IGNORED
