"""
Operator API for the webhook reconciliation engine.

Endpoints:
    GET /api/v1/billing/webhooks/events/         - Supported provider event types
    GET /api/v1/billing/webhooks/stats/          - Audit counts per outcome (admin)
    GET /api/v1/billing/webhooks/reconciliation/ - Events awaiting an operator (admin)
    GET /api/v1/billing/webhooks/health/         - Secret configured + database reachable

The provider-facing endpoint lives in billing.webhooks.views.
"""

from __future__ import annotations

import logging

from django.db import DatabaseError, connection
from django.db.models import Count
from django_filters.rest_framework import DjangoFilterBackend
from drf_spectacular.utils import OpenApiResponse, extend_schema
from rest_framework import generics, status
from rest_framework.permissions import AllowAny, IsAdminUser
from rest_framework.response import Response
from rest_framework.views import APIView

from billing.filters import WebhookEventFilter
from billing.models import ProcessedEvent, WebhookEvent
from billing.serializers import (
    SupportedEventsResponseSerializer,
    WebhookEventSerializer,
    WebhookHealthSerializer,
    WebhookStatsSerializer,
)
from billing.webhooks.events import EVENT_TYPE_DESCRIPTIONS
from billing.webhooks.service import get_webhook_processor

logger = logging.getLogger(__name__)


class SupportedEventsView(APIView):
    """Provider event types that reach a handler."""

    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="list_supported_webhook_events",
        summary="List supported webhook events",
        description="Provider event types the engine handles, with category and description.",
        tags=["Billing Webhooks"],
        responses={200: SupportedEventsResponseSerializer},
    )
    def get(self, request):
        events = []
        for event_type in get_webhook_processor().router.supported_event_types():
            category, description = EVENT_TYPE_DESCRIPTIONS[event_type]
            events.append(
                {
                    "event_type": event_type,
                    "category": category,
                    "description": description,
                }
            )
        serializer = SupportedEventsResponseSerializer({"events": events, "total": len(events)})
        return Response(serializer.data)


class WebhookStatsView(APIView):
    permission_classes = [IsAdminUser]

    @extend_schema(
        operation_id="webhook_stats",
        summary="Webhook statistics",
        description="Audit record counts per status and event type.",
        tags=["Billing Webhooks"],
        responses={200: WebhookStatsSerializer},
    )
    def get(self, request):
        by_status = dict(
            WebhookEvent.objects.order_by()
            .values_list("status")
            .annotate(count=Count("id"))
        )
        by_event_type = dict(
            WebhookEvent.objects.order_by()
            .values_list("event_type")
            .annotate(count=Count("id"))
        )
        data = {
            "total": sum(by_status.values()),
            "by_status": by_status,
            "by_event_type": by_event_type,
            "requires_reconciliation": WebhookEvent.objects.needing_reconciliation().count(),
            "processed_events": ProcessedEvent.objects.count(),
        }
        return Response(WebhookStatsSerializer(data).data)


@extend_schema(
    operation_id="list_unreconciled_webhooks",
    summary="List events awaiting reconciliation",
    description=(
        "Webhook events flagged for manual reconciliation that no operator "
        "has resolved yet. Filterable by status, event type and date."
    ),
    tags=["Billing Webhooks"],
)
class ReconciliationQueueView(generics.ListAPIView):
    permission_classes = [IsAdminUser]
    serializer_class = WebhookEventSerializer
    filter_backends = [DjangoFilterBackend]
    filterset_class = WebhookEventFilter

    def get_queryset(self):
        return WebhookEvent.objects.needing_reconciliation().order_by("created_at")


class WebhookHealthView(APIView):
    permission_classes = [AllowAny]

    @extend_schema(
        operation_id="webhook_health",
        summary="Webhook endpoint health",
        description="Reports whether the signing secret is configured and the database reachable.",
        tags=["Billing Webhooks"],
        responses={
            200: WebhookHealthSerializer,
            503: OpenApiResponse(WebhookHealthSerializer, description="Unhealthy"),
        },
    )
    def get(self, request):
        processor = get_webhook_processor()
        data = {
            "status": "healthy",
            "webhook_secret": "configured",
            "database": "connected",
            "supported_event_types": len(processor.router.supported_event_types()),
        }

        if not processor.validator.is_configured:
            data["webhook_secret"] = "missing"
            data["status"] = "unhealthy"

        try:
            with connection.cursor() as cursor:
                cursor.execute("SELECT 1")
                cursor.fetchone()
        except DatabaseError:
            logger.exception("Webhook health check database probe failed")
            data["database"] = "disconnected"
            data["status"] = "unhealthy"

        if data["status"] == "healthy":
            code = status.HTTP_200_OK
        else:
            code = status.HTTP_503_SERVICE_UNAVAILABLE
        return Response(WebhookHealthSerializer(data).data, status=code)
