"""
Billing admin configuration.

Registers plans, subscriptions, payment records, the processed-event ledger
and the webhook audit log. Subscription status and payment history change
only through webhooks, so those fields are read-only here. Flagged webhook
events can be reprocessed or marked reconciled from the changelist.
"""

from django.contrib import admin, messages

from billing.models import Plan, PaymentRecord, ProcessedEvent, Subscription, WebhookEvent
from billing.services import ReconciliationService


@admin.register(Plan)
class PlanAdmin(admin.ModelAdmin):
    list_display = ["name", "billing_interval", "price_display", "is_active", "created_at"]
    list_filter = ["billing_interval", "is_active", "currency"]
    search_fields = ["name"]
    readonly_fields = ["created_at", "updated_at"]
    ordering = ["name"]

    def price_display(self, obj: Plan) -> str:
        """Display the price formatted as currency."""
        return f"{obj.price_cents / 100:.2f} {obj.currency.upper()}"

    price_display.short_description = "Price"


class PaymentRecordInline(admin.TabularInline):
    """Read-only payment history of a subscription."""

    model = PaymentRecord
    extra = 0
    can_delete = False
    fields = ["external_payment_id", "kind", "status", "amount_cents", "currency", "processed_at"]
    readonly_fields = fields
    ordering = ["-processed_at"]

    def has_add_permission(self, request, obj=None) -> bool:
        return False


@admin.register(Subscription)
class SubscriptionAdmin(admin.ModelAdmin):
    """
    Admin configuration for Subscription.

    State changes happen through webhook handlers, not admin.
    """

    list_display = [
        "id",
        "user",
        "plan",
        "status",
        "external_subscription_id",
        "ends_at",
        "created_at",
    ]
    list_filter = ["status", "plan", "created_at"]
    search_fields = ["id", "external_subscription_id", "external_customer_id", "user__email"]
    readonly_fields = [
        "id",
        "status",
        "started_at",
        "ends_at",
        "suspended_at",
        "cancelled_at",
        "version",
        "created_at",
        "updated_at",
    ]
    raw_id_fields = ["user"]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    inlines = [PaymentRecordInline]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "user", "plan", "status"),
            },
        ),
        (
            "Provider",
            {
                "fields": ("external_subscription_id", "external_customer_id"),
            },
        ),
        (
            "Period",
            {
                "fields": ("started_at", "ends_at", "suspended_at", "cancelled_at"),
            },
        ),
        (
            "Metadata",
            {
                "fields": ("metadata", "version"),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for subscriptions (payment history references them)."""
        return False


@admin.register(PaymentRecord)
class PaymentRecordAdmin(admin.ModelAdmin):
    """Append-only payment history. Nothing here is editable."""

    list_display = [
        "external_payment_id",
        "subscription",
        "kind",
        "status",
        "amount_display",
        "failure_code",
        "processed_at",
    ]
    list_filter = ["kind", "status", "currency", "processed_at"]
    search_fields = ["external_payment_id", "source_event_id", "subscription__id"]
    date_hierarchy = "processed_at"
    ordering = ["-processed_at"]

    def amount_display(self, obj: PaymentRecord) -> str:
        """Display the amount formatted as currency."""
        return f"{obj.amount_cents / 100:.2f} {obj.currency.upper()}"

    amount_display.short_description = "Amount"

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        return False


@admin.register(ProcessedEvent)
class ProcessedEventAdmin(admin.ModelAdmin):
    list_display = ["event_id", "event_type", "outcome", "processed_at"]
    list_filter = ["outcome", "event_type"]
    search_fields = ["event_id"]
    ordering = ["-processed_at"]

    def has_add_permission(self, request) -> bool:
        return False

    def has_change_permission(self, request, obj=None) -> bool:
        return False

    def has_delete_permission(self, request, obj=None) -> bool:
        """Deleting a ledger row would let the event apply twice."""
        return False


@admin.register(WebhookEvent)
class WebhookEventAdmin(admin.ModelAdmin):
    """
    Admin configuration for WebhookEvent.

    Provides visibility into webhook processing and the reconciliation queue.
    """

    list_display = [
        "event_id",
        "event_type",
        "status",
        "attempt_count",
        "requires_reconciliation",
        "reconciled_at",
        "processed_at",
        "created_at",
    ]
    list_filter = ["status", "requires_reconciliation", "event_type", "created_at"]
    search_fields = ["event_id", "event_type", "error_code"]
    readonly_fields = [
        "id",
        "event_id",
        "event_type",
        "payload",
        "source_ip",
        "status",
        "attempt_count",
        "last_attempt_at",
        "processed_at",
        "error_code",
        "error_message",
        "requires_reconciliation",
        "reconciled_at",
        "created_at",
        "updated_at",
    ]
    date_hierarchy = "created_at"
    ordering = ["-created_at"]
    actions = ["reprocess_events", "mark_reconciled"]

    fieldsets = (
        (
            None,
            {
                "fields": ("id", "event_id", "event_type", "status", "source_ip"),
            },
        ),
        (
            "Processing",
            {
                "fields": ("attempt_count", "last_attempt_at", "processed_at"),
            },
        ),
        (
            "Reconciliation",
            {
                "fields": ("requires_reconciliation", "reconciled_at"),
            },
        ),
        (
            "Error Info",
            {
                "fields": ("error_code", "error_message"),
                "classes": ("collapse",),
            },
        ),
        (
            "Payload",
            {
                "fields": ("payload",),
                "classes": ("collapse",),
            },
        ),
        (
            "Timestamps",
            {
                "fields": ("created_at", "updated_at"),
            },
        ),
    )

    @admin.action(description="Reprocess selected flagged events")
    def reprocess_events(self, request, queryset):
        from billing.tasks import reprocess_flagged_webhooks

        event_ids = list(
            queryset.needing_reconciliation().values_list("event_id", flat=True)
        )
        if not event_ids:
            self.message_user(request, "No selected events are awaiting reconciliation.")
            return
        reprocess_flagged_webhooks.delay(event_ids=event_ids, limit=len(event_ids))
        self.message_user(request, f"Queued {len(event_ids)} events for reprocessing.")

    @admin.action(description="Mark selected events as reconciled")
    def mark_reconciled(self, request, queryset):
        result = ReconciliationService.mark_reconciled(
            queryset.values_list("event_id", flat=True)
        )
        if not result.success:
            self.message_user(request, result.error, level=messages.WARNING)
            return
        self.message_user(request, f"Marked {result.data} events as reconciled.")

    def has_delete_permission(self, request, obj=None) -> bool:
        """Disable delete for webhook events (audit trail)."""
        return False

    def has_add_permission(self, request) -> bool:
        """Disable adding webhook events through admin."""
        return False
