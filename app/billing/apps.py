"""
Billing app configuration.

This app provides the subscription reconciliation engine:
- Plans, subscriptions and append-only payment history
- Provider webhook pipeline (signature, idempotency, routing, handlers, audit)
- Post-commit notifications and periodic maintenance tasks
"""

from django.apps import AppConfig


class BillingConfig(AppConfig):
    """Configuration for the billing application."""

    default_auto_field = "django.db.models.BigAutoField"
    name = "billing"
    verbose_name = "Billing"

    def ready(self) -> None:
        from billing.webhooks.service import build_webhook_processor

        # Built once; fails startup if an event kind has no handler
        self.webhook_processor = build_webhook_processor()
