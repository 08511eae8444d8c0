"""
Webhook endpoint view for the payment provider.

The view reads the raw body and signature header and hands both to the
WebhookProcessor, which does everything else synchronously: the response
code is the processing verdict, so the provider's redelivery schedule is
our retry mechanism.

Usage:
    # In urls.py
    from billing.webhooks.views import provider_webhook

    urlpatterns = [
        path("webhooks/stripe/", provider_webhook, name="provider_webhook"),
    ]
"""

from __future__ import annotations

import logging

from django.http import HttpRequest, JsonResponse
from django.views.decorators.csrf import csrf_exempt
from django.views.decorators.http import require_POST

from core.helpers import get_client_ip

from billing.webhooks.service import get_webhook_processor
from billing.webhooks.signature import SIGNATURE_HEADER

logger = logging.getLogger(__name__)


@csrf_exempt
@require_POST
def provider_webhook(request: HttpRequest) -> JsonResponse:
    """
    Receive one provider event.

    Returns:
        JsonResponse with status:
        - 200: Event applied, replayed, ignored or deferred
        - 400: Invalid signature or payload (not retried usefully)
        - 503: Transient failure, provider should redeliver

    Example Stripe-Signature header:
        t=1614556800,v1=xxx
    """
    result = get_webhook_processor().handle(
        request.body,
        request.headers.get(SIGNATURE_HEADER, ""),
        source_ip=get_client_ip(request) or None,
    )
    if result.status_code >= 500:
        logger.info(
            "Asking provider to redeliver webhook",
            extra={"event_id": result.event_id, "error_code": result.error_code},
        )
    return JsonResponse(result.to_dict(), status=result.status_code)
