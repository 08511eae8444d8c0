"""
URL configuration for the billing app.

Routes:
    - POST /webhooks/stripe/          - Provider webhook endpoint
    - GET  /webhooks/events/          - Supported event types
    - GET  /webhooks/stats/           - Webhook statistics (admin)
    - GET  /webhooks/reconciliation/  - Flagged events (admin)
    - GET  /webhooks/health/          - Webhook health check

All routes are prefixed with /api/v1/billing/ when included in the main URLconf.
"""

from django.urls import path

from billing.views import (
    ReconciliationQueueView,
    SupportedEventsView,
    WebhookHealthView,
    WebhookStatsView,
)
from billing.webhooks.views import provider_webhook

app_name = "billing"

urlpatterns = [
    # Provider webhook
    path("webhooks/stripe/", provider_webhook, name="provider_webhook"),
    # Operator endpoints
    path("webhooks/events/", SupportedEventsView.as_view(), name="webhook_events"),
    path("webhooks/stats/", WebhookStatsView.as_view(), name="webhook_stats"),
    path(
        "webhooks/reconciliation/",
        ReconciliationQueueView.as_view(),
        name="webhook_reconciliation",
    ),
    path("webhooks/health/", WebhookHealthView.as_view(), name="webhook_health"),
]
