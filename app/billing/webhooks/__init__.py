"""
Webhook reconciliation engine for provider payment events.

Deliveries are authenticated, deduplicated, routed to a handler and applied
inside one transaction, then recorded in the audit log.

Usage:
    from billing.webhooks import build_webhook_processor

    processor = build_webhook_processor(secret="whsec_...")
    result = processor.handle(request.body, signature_header)
"""

from billing.webhooks.events import EventKind, ProviderEvent
from billing.webhooks.service import (
    ProcessingResult,
    WebhookProcessor,
    build_webhook_processor,
    get_webhook_processor,
)

__all__ = [
    "EventKind",
    "ProcessingResult",
    "ProviderEvent",
    "WebhookProcessor",
    "build_webhook_processor",
    "get_webhook_processor",
]
