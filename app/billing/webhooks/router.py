"""
Event router: EventKind -> handler.

Handlers are registered explicitly when the processor is built. Dispatching
an event type the engine does not model is not an error; the processor
acknowledges it as ignored so the provider stops redelivering it.

Usage:
    router = EventRouter()
    router.register(InitialPaymentSucceededHandler(...))
    router.verify_complete()

    handler = router.resolve(event)
"""

from __future__ import annotations

import logging
from typing import TYPE_CHECKING

from django.core.exceptions import ImproperlyConfigured

from billing.webhooks.events import PROVIDER_EVENT_TYPES, EventKind

if TYPE_CHECKING:
    from billing.webhooks.events import ProviderEvent
    from billing.webhooks.handlers import EventHandler

logger = logging.getLogger(__name__)


class EventRouter:
    def __init__(self) -> None:
        self._handlers: dict[EventKind, EventHandler] = {}

    def register(self, handler: EventHandler) -> EventHandler:
        """
        Register a handler for its declared kind.

        Raises:
            ImproperlyConfigured: A handler is already registered for the kind
        """
        kind = handler.kind
        if kind in self._handlers:
            raise ImproperlyConfigured(
                f"A handler for {kind.name} is already registered "
                f"({type(self._handlers[kind]).__name__})"
            )
        self._handlers[kind] = handler
        logger.debug(f"Registered webhook handler for {kind.name}")
        return handler

    def verify_complete(self) -> None:
        """
        Check every EventKind has a handler.

        Raises:
            ImproperlyConfigured: Listing the kinds without one
        """
        missing = [kind.name for kind in EventKind if kind not in self._handlers]
        if missing:
            raise ImproperlyConfigured(
                f"No webhook handler registered for: {', '.join(missing)}"
            )

    def resolve(self, event: ProviderEvent) -> EventHandler | None:
        """Handler for the event, or None when its type is not modelled."""
        kind = event.kind
        handler = self._handlers.get(kind) if kind is not None else None
        if handler is None:
            logger.info(
                f"No handler registered for event type: {event.event_type}",
                extra=event.log_context(),
            )
        return handler

    @property
    def registered_kinds(self) -> frozenset[EventKind]:
        return frozenset(self._handlers)

    def supported_event_types(self) -> list[str]:
        """Provider type strings that reach a registered handler."""
        return sorted(
            event_type
            for event_type, kind in PROVIDER_EVENT_TYPES.items()
            if kind in self._handlers
        )
