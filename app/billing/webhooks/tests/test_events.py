"""
Tests for ProviderEvent parsing and the event vocabulary.
"""

import pytest

from billing.exceptions import WebhookValidationError
from billing.webhooks.events import (
    EVENT_TYPE_DESCRIPTIONS,
    PROVIDER_EVENT_TYPES,
    EventKind,
    ProviderEvent,
)


def _payload(**overrides):
    payload = {
        "id": "evt_1",
        "type": "invoice.payment_failed",
        "created": 1_770_000_000,
        "livemode": True,
        "data": {"object": {"id": "in_1", "metadata": {"subscription_id": "abc"}}},
    }
    payload.update(overrides)
    return payload


class TestProviderEventFromPayload:
    def test_parses_envelope(self):
        event = ProviderEvent.from_payload(_payload())

        assert event.event_id == "evt_1"
        assert event.event_type == "invoice.payment_failed"
        assert event.kind is EventKind.RECURRING_PAYMENT_FAILED
        assert event.object_id == "in_1"
        assert event.created == 1_770_000_000
        assert event.livemode is True

    def test_unknown_type_has_no_kind(self):
        event = ProviderEvent.from_payload(_payload(type="charge.refunded"))

        assert event.kind is None

    @pytest.mark.parametrize(
        ("payload", "field"),
        [
            ([], "<root>"),
            (_payload(id=None), "id"),
            (_payload(id=""), "id"),
            (_payload(type=None), "type"),
            (_payload(data=None), "data.object"),
            (_payload(data={"object": "in_1"}), "data.object"),
        ],
    )
    def test_rejects_malformed_payload(self, payload, field):
        with pytest.raises(WebhookValidationError) as exc_info:
            ProviderEvent.from_payload(payload)

        assert exc_info.value.details["field"] == field
        assert exc_info.value.error_code == "INVALID_WEBHOOK_PAYLOAD"

    def test_non_integer_created_is_dropped(self):
        assert ProviderEvent.from_payload(_payload(created="yesterday")).created is None


class TestProviderEventAccessors:
    def test_metadata_value(self):
        event = ProviderEvent.from_payload(_payload())

        assert event.metadata_value("subscription_id") == "abc"
        assert event.metadata_value("missing") is None

    def test_metadata_value_without_metadata(self):
        event = ProviderEvent.from_payload(_payload(data={"object": {"id": "in_1"}}))

        assert event.metadata_value("subscription_id") is None

    def test_require(self):
        event = ProviderEvent.from_payload(_payload())

        assert event.require("id") == "in_1"
        with pytest.raises(WebhookValidationError) as exc_info:
            event.require("status")

        assert exc_info.value.details["field"] == "data.object.status"


class TestVocabulary:
    def test_every_kind_has_a_provider_type(self):
        assert set(PROVIDER_EVENT_TYPES.values()) == set(EventKind)

    def test_every_provider_type_is_described(self):
        assert set(EVENT_TYPE_DESCRIPTIONS) == set(PROVIDER_EVENT_TYPES)

    def test_both_invoice_paid_types_are_recurring_success(self):
        assert PROVIDER_EVENT_TYPES["invoice.paid"] is EventKind.RECURRING_PAYMENT_SUCCEEDED
        assert (
            PROVIDER_EVENT_TYPES["invoice.payment_succeeded"]
            is EventKind.RECURRING_PAYMENT_SUCCEEDED
        )
