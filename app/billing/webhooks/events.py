"""
Provider event vocabulary and the parsed event envelope.

EventKind is the closed set of facts the reconciliation engine models.
PROVIDER_EVENT_TYPES maps the provider's type strings onto it; any other
type string parses fine but has no kind and is acknowledged as ignored.
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import TYPE_CHECKING

from billing.exceptions import WebhookValidationError

if TYPE_CHECKING:
    from typing import Any


class EventKind(enum.Enum):
    INITIAL_PAYMENT_SUCCEEDED = "initial_payment_succeeded"
    INITIAL_PAYMENT_FAILED = "initial_payment_failed"
    RECURRING_PAYMENT_SUCCEEDED = "recurring_payment_succeeded"
    RECURRING_PAYMENT_FAILED = "recurring_payment_failed"
    EXTERNAL_SUBSCRIPTION_LINKED = "external_subscription_linked"
    EXTERNAL_SUBSCRIPTION_STATUS_SYNCED = "external_subscription_status_synced"
    EXTERNAL_SUBSCRIPTION_TERMINATED = "external_subscription_terminated"


PROVIDER_EVENT_TYPES: dict[str, EventKind] = {
    "payment_intent.succeeded": EventKind.INITIAL_PAYMENT_SUCCEEDED,
    "payment_intent.payment_failed": EventKind.INITIAL_PAYMENT_FAILED,
    "invoice.payment_succeeded": EventKind.RECURRING_PAYMENT_SUCCEEDED,
    "invoice.paid": EventKind.RECURRING_PAYMENT_SUCCEEDED,
    "invoice.payment_failed": EventKind.RECURRING_PAYMENT_FAILED,
    "customer.subscription.created": EventKind.EXTERNAL_SUBSCRIPTION_LINKED,
    "customer.subscription.updated": EventKind.EXTERNAL_SUBSCRIPTION_STATUS_SYNCED,
    "customer.subscription.deleted": EventKind.EXTERNAL_SUBSCRIPTION_TERMINATED,
}


# Category and description per provider type, served by the events listing.
EVENT_TYPE_DESCRIPTIONS: dict[str, tuple[str, str]] = {
    "payment_intent.succeeded": (
        "payment",
        "First payment for a subscription succeeded; activates it",
    ),
    "payment_intent.payment_failed": (
        "payment",
        "First payment for a subscription failed; expires it",
    ),
    "invoice.payment_succeeded": (
        "invoice",
        "Renewal invoice paid; extends the subscription by one interval",
    ),
    "invoice.paid": (
        "invoice",
        "Renewal invoice paid (alias of invoice.payment_succeeded)",
    ),
    "invoice.payment_failed": (
        "invoice",
        "Renewal invoice payment failed; suspends the subscription",
    ),
    "customer.subscription.created": (
        "subscription",
        "Provider subscription created; links its id to ours",
    ),
    "customer.subscription.updated": (
        "subscription",
        "Provider subscription status changed; synchronizes status",
    ),
    "customer.subscription.deleted": (
        "subscription",
        "Provider subscription ended; cancels the subscription",
    ),
}


@dataclass(frozen=True)
class ProviderEvent:
    """
    An authenticated, structurally valid provider event.

    Attributes:
        event_id: Provider event ID (evt_xxx)
        event_type: Provider type string
        data_object: The ``data.object`` the event is about
        payload: Full parsed payload, kept for the audit record
        created: Provider creation timestamp (epoch seconds), if present
        livemode: Whether the event came from live mode
    """

    event_id: str
    event_type: str
    data_object: dict[str, Any]
    payload: dict[str, Any] = field(repr=False)
    created: int | None = None
    livemode: bool = False

    @classmethod
    def from_payload(cls, payload: Any) -> ProviderEvent:
        """
        Build an event from a parsed payload.

        Raises:
            WebhookValidationError: Missing id, type or data.object
        """
        if not isinstance(payload, dict):
            raise WebhookValidationError(
                "Event payload must be a JSON object",
                details={"field": "<root>"},
            )

        event_id = payload.get("id")
        event_type = payload.get("type")
        if not isinstance(event_id, str) or not event_id:
            raise WebhookValidationError(
                "Event payload is missing id",
                details={"field": "id"},
            )
        if not isinstance(event_type, str) or not event_type:
            raise WebhookValidationError(
                "Event payload is missing type",
                details={"field": "type", "event_id": event_id},
            )

        data = payload.get("data")
        data_object = data.get("object") if isinstance(data, dict) else None
        if not isinstance(data_object, dict):
            raise WebhookValidationError(
                "Event payload is missing data.object",
                details={"field": "data.object", "event_id": event_id},
            )

        created = payload.get("created")
        return cls(
            event_id=event_id,
            event_type=event_type,
            data_object=data_object,
            payload=payload,
            created=created if isinstance(created, int) else None,
            livemode=bool(payload.get("livemode", False)),
        )

    @property
    def kind(self) -> EventKind | None:
        return PROVIDER_EVENT_TYPES.get(self.event_type)

    @property
    def object_id(self) -> str | None:
        return self.data_object.get("id")

    def metadata_value(self, key: str) -> str | None:
        """Value stored in the object's metadata, if any."""
        metadata = self.data_object.get("metadata")
        if not isinstance(metadata, dict):
            return None
        value = metadata.get(key)
        return str(value) if value else None

    def require(self, name: str) -> Any:
        """
        Read a required attribute of ``data.object``.

        Raises:
            WebhookValidationError: The attribute is absent or empty
        """
        value = self.data_object.get(name)
        if value in (None, ""):
            raise WebhookValidationError(
                f"{self.event_type} payload is missing data.object.{name}",
                details={"field": f"data.object.{name}", "event_id": self.event_id},
            )
        return value

    def log_context(self) -> dict[str, Any]:
        return {"event_id": self.event_id, "event_type": self.event_type}
