"""
Tests for the event router.
"""

import pytest
from django.core.exceptions import ImproperlyConfigured

from billing.webhooks.events import EventKind, ProviderEvent
from billing.webhooks.handlers import (
    EventHandler,
    HandlerOutcome,
    InitialPaymentSucceededHandler,
)
from billing.webhooks.router import EventRouter


class StubHandler(EventHandler):
    kind = EventKind.INITIAL_PAYMENT_SUCCEEDED

    def __init__(self):
        pass

    def handle(self, event):
        return HandlerOutcome.processed()


def _event(event_type):
    return ProviderEvent.from_payload(
        {"id": "evt_1", "type": event_type, "data": {"object": {"id": "x"}}}
    )


class TestEventRouter:
    def test_resolve_registered_kind(self):
        router = EventRouter()
        handler = router.register(StubHandler())

        assert router.resolve(_event("payment_intent.succeeded")) is handler

    def test_resolve_unmodelled_type_returns_none(self):
        router = EventRouter()
        router.register(StubHandler())

        assert router.resolve(_event("charge.refunded")) is None

    def test_resolve_modelled_type_without_handler_returns_none(self):
        router = EventRouter()

        assert router.resolve(_event("invoice.paid")) is None

    def test_duplicate_registration_rejected(self):
        router = EventRouter()
        router.register(StubHandler())

        with pytest.raises(ImproperlyConfigured):
            router.register(StubHandler())

    def test_verify_complete_lists_missing_kinds(self):
        router = EventRouter()
        router.register(StubHandler())

        with pytest.raises(ImproperlyConfigured) as exc_info:
            router.verify_complete()

        assert "INITIAL_PAYMENT_FAILED" in str(exc_info.value)
        assert "INITIAL_PAYMENT_SUCCEEDED" not in str(exc_info.value)

    def test_supported_event_types(self):
        router = EventRouter()
        router.register(StubHandler())

        assert router.supported_event_types() == ["payment_intent.succeeded"]
        assert router.registered_kinds == frozenset({EventKind.INITIAL_PAYMENT_SUCCEEDED})

    def test_built_processor_routes_every_kind(self, processor):
        router = processor.router

        router.verify_complete()
        assert router.registered_kinds == frozenset(EventKind)
        assert isinstance(
            router.resolve(_event("payment_intent.succeeded")),
            InitialPaymentSucceededHandler,
        )
        assert len(router.supported_event_types()) == 8
