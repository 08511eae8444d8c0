import django_filters as filters

from billing.models import WebhookEvent
from billing.state_machines import WebhookEventStatus


class WebhookEventFilter(filters.FilterSet):
    status = filters.ChoiceFilter(choices=WebhookEventStatus.choices)
    event_type = filters.CharFilter(field_name="event_type")
    start_date = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="gte")
    end_date = filters.IsoDateTimeFilter(field_name="created_at", lookup_expr="lte")

    class Meta:
        model = WebhookEvent
        fields = ["status", "event_type", "start_date", "end_date"]
