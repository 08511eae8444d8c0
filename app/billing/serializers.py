"""
DRF serializers for the billing operator API.

This module provides serializers for:
- Webhook audit records (flagged-event listing)
- Supported event type listing
- Webhook statistics and health responses

Usage:
    serializer = WebhookEventSerializer(queryset, many=True)
    data = serializer.data
"""

from __future__ import annotations

from rest_framework import serializers

from billing.models import WebhookEvent


class WebhookEventSerializer(serializers.ModelSerializer):
    """
    Audit record for one provider event.

    The stored payload is left out; operators read it in the admin.
    """

    object_id = serializers.SerializerMethodField()

    class Meta:
        model = WebhookEvent
        fields = [
            "id",
            "event_id",
            "event_type",
            "object_id",
            "status",
            "attempt_count",
            "last_attempt_at",
            "processed_at",
            "error_code",
            "error_message",
            "requires_reconciliation",
            "reconciled_at",
            "created_at",
        ]
        read_only_fields = fields

    def get_object_id(self, obj: WebhookEvent) -> str | None:
        return obj.get_object_id()


class SupportedEventSerializer(serializers.Serializer):
    event_type = serializers.CharField(read_only=True)
    category = serializers.CharField(read_only=True)
    description = serializers.CharField(read_only=True)


class SupportedEventsResponseSerializer(serializers.Serializer):
    events = SupportedEventSerializer(many=True, read_only=True)
    total = serializers.IntegerField(read_only=True)


class WebhookStatsSerializer(serializers.Serializer):
    """Counts of audit records per status, plus reconciliation backlog."""

    total = serializers.IntegerField(read_only=True)
    by_status = serializers.DictField(child=serializers.IntegerField(), read_only=True)
    by_event_type = serializers.DictField(child=serializers.IntegerField(), read_only=True)
    requires_reconciliation = serializers.IntegerField(read_only=True)
    processed_events = serializers.IntegerField(read_only=True)


class WebhookHealthSerializer(serializers.Serializer):
    status = serializers.CharField(read_only=True)
    webhook_secret = serializers.CharField(read_only=True)
    database = serializers.CharField(read_only=True)
    supported_event_types = serializers.IntegerField(read_only=True)
