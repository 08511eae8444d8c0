import uuid

import django.db.models.deletion
import django_fsm
from django.conf import settings
from django.db import migrations, models


class Migration(migrations.Migration):
    initial = True

    dependencies = [
        migrations.swappable_dependency(settings.AUTH_USER_MODEL),
    ]

    operations = [
        migrations.CreateModel(
            name="Plan",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                ("name", models.CharField(help_text="Display name of the plan", max_length=100)),
                (
                    "billing_interval",
                    models.CharField(
                        choices=[("week", "Weekly"), ("month", "Monthly"), ("year", "Yearly")],
                        default="month",
                        help_text="Recurring billing period",
                        max_length=10,
                    ),
                ),
                (
                    "price_cents",
                    models.PositiveBigIntegerField(
                        help_text="Price per period in smallest currency unit (e.g., cents)"
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "is_active",
                    models.BooleanField(
                        default=True,
                        help_text="Whether new subscriptions can be created on this plan",
                    ),
                ),
            ],
            options={
                "verbose_name": "Plan",
                "verbose_name_plural": "Plans",
                "ordering": ["name"],
                "constraints": [
                    models.CheckConstraint(
                        condition=models.Q(("price_cents__gt", 0)),
                        name="plan_price_positive",
                    )
                ],
            },
        ),
        migrations.CreateModel(
            name="ProcessedEvent",
            fields=[
                (
                    "id",
                    models.BigAutoField(
                        auto_created=True, primary_key=True, serialize=False, verbose_name="ID"
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        help_text="Provider event ID (evt_xxx) - unique constraint for idempotency",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        help_text="Provider event type (e.g., 'invoice.paid')",
                        max_length=100,
                    ),
                ),
                (
                    "outcome",
                    models.CharField(
                        choices=[
                            ("processed", "Processed"),
                            ("ignored", "Ignored"),
                            ("deferred", "Deferred"),
                        ],
                        help_text="What the handler concluded",
                        max_length=20,
                    ),
                ),
                (
                    "summary",
                    models.JSONField(blank=True, default=dict, help_text="Handler result summary"),
                ),
                (
                    "processed_at",
                    models.DateTimeField(auto_now_add=True, help_text="When the event was applied"),
                ),
            ],
            options={
                "verbose_name": "Processed Event",
                "verbose_name_plural": "Processed Events",
                "ordering": ["-processed_at"],
            },
        ),
        migrations.CreateModel(
            name="WebhookEvent",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "event_id",
                    models.CharField(
                        db_index=True,
                        help_text="Provider event ID (evt_xxx)",
                        max_length=255,
                        unique=True,
                    ),
                ),
                (
                    "event_type",
                    models.CharField(
                        db_index=True,
                        help_text="Provider event type (e.g., 'invoice.payment_failed')",
                        max_length=100,
                    ),
                ),
                (
                    "payload",
                    models.JSONField(default=dict, help_text="Event payload as received"),
                ),
                (
                    "source_ip",
                    models.GenericIPAddressField(
                        blank=True,
                        help_text="Client address of the most recent delivery",
                        null=True,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[
                            ("received", "Received"),
                            ("processed", "Processed"),
                            ("replayed", "Replayed"),
                            ("ignored", "Ignored"),
                            ("deferred", "Deferred"),
                            ("rejected", "Rejected"),
                            ("failed", "Failed"),
                        ],
                        db_index=True,
                        default="received",
                        help_text="Last recorded outcome",
                        max_length=20,
                    ),
                ),
                (
                    "attempt_count",
                    models.PositiveIntegerField(
                        default=0, help_text="Number of processing attempts"
                    ),
                ),
                (
                    "last_attempt_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the most recent attempt started",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the event was last acknowledged",
                        null=True,
                    ),
                ),
                (
                    "error_code",
                    models.CharField(
                        blank=True,
                        help_text="Machine-readable failure cause",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "error_message",
                    models.TextField(
                        blank=True,
                        help_text="Error message if processing failed",
                        null=True,
                    ),
                ),
                (
                    "requires_reconciliation",
                    models.BooleanField(
                        db_index=True,
                        default=False,
                        help_text="Flagged for manual reconciliation",
                    ),
                ),
                (
                    "reconciled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When an operator resolved the flag",
                        null=True,
                    ),
                ),
            ],
            options={
                "verbose_name": "Webhook Event",
                "verbose_name_plural": "Webhook Events",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["status", "created_at"],
                        name="billing_web_status_6f0c2e_idx",
                    ),
                    models.Index(
                        fields=["event_type", "created_at"],
                        name="billing_web_event_t_3b9d41_idx",
                    ),
                    models.Index(
                        fields=["requires_reconciliation", "reconciled_at"],
                        name="billing_web_require_a81e5c_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="Subscription",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "metadata",
                    models.JSONField(
                        blank=True,
                        default=dict,
                        help_text="Flexible key-value metadata storage",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "status",
                    django_fsm.FSMField(
                        choices=[
                            ("pending", "Pending"),
                            ("active", "Active"),
                            ("suspended", "Suspended"),
                            ("cancelled", "Cancelled"),
                            ("expired", "Expired"),
                        ],
                        db_index=True,
                        default="pending",
                        help_text="Current state of the subscription (managed by FSM)",
                        max_length=50,
                        protected=True,
                    ),
                ),
                (
                    "external_subscription_id",
                    models.CharField(
                        blank=True,
                        help_text="Provider subscription ID (sub_xxx), first writer wins",
                        max_length=255,
                        null=True,
                        unique=True,
                    ),
                ),
                (
                    "external_customer_id",
                    models.CharField(
                        blank=True,
                        db_index=True,
                        help_text="Provider customer ID (cus_xxx)",
                        max_length=255,
                        null=True,
                    ),
                ),
                (
                    "started_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the subscription became active",
                        null=True,
                    ),
                ),
                (
                    "ends_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="End of the current paid period",
                        null=True,
                    ),
                ),
                (
                    "suspended_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When the current suspension (grace period) began",
                        null=True,
                    ),
                ),
                (
                    "cancelled_at",
                    models.DateTimeField(
                        blank=True,
                        help_text="When subscription was cancelled",
                        null=True,
                    ),
                ),
                (
                    "version",
                    models.PositiveIntegerField(
                        default=1,
                        help_text="Version for optimistic locking - incremented on each save",
                    ),
                ),
                (
                    "plan",
                    models.ForeignKey(
                        help_text="Plan supplying the billing interval and price",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to="billing.plan",
                    ),
                ),
                (
                    "user",
                    models.ForeignKey(
                        help_text="User who owns the subscription",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="subscriptions",
                        to=settings.AUTH_USER_MODEL,
                    ),
                ),
            ],
            options={
                "verbose_name": "Subscription",
                "verbose_name_plural": "Subscriptions",
                "ordering": ["-created_at"],
                "indexes": [
                    models.Index(
                        fields=["user", "status"],
                        name="billing_sub_user_id_4d2a7b_idx",
                    ),
                    models.Index(
                        fields=["status", "suspended_at"],
                        name="billing_sub_status_9e3f10_idx",
                    ),
                ],
            },
        ),
        migrations.CreateModel(
            name="PaymentRecord",
            fields=[
                (
                    "created_at",
                    models.DateTimeField(
                        auto_now_add=True,
                        db_index=True,
                        help_text="Timestamp when this record was created",
                    ),
                ),
                (
                    "updated_at",
                    models.DateTimeField(
                        auto_now=True,
                        help_text="Timestamp when this record was last modified",
                    ),
                ),
                (
                    "id",
                    models.UUIDField(
                        default=uuid.uuid4,
                        editable=False,
                        help_text="Unique identifier for this record",
                        primary_key=True,
                        serialize=False,
                    ),
                ),
                (
                    "external_payment_id",
                    models.CharField(
                        db_index=True,
                        help_text="Provider payment intent (pi_xxx) or invoice (in_xxx) ID",
                        max_length=255,
                    ),
                ),
                (
                    "kind",
                    models.CharField(
                        choices=[("initial", "Initial"), ("recurring", "Recurring")],
                        help_text="Whether this was the initial or a recurring charge",
                        max_length=10,
                    ),
                ),
                (
                    "amount_cents",
                    models.PositiveBigIntegerField(
                        default=0,
                        help_text="Charged amount in smallest currency unit",
                    ),
                ),
                (
                    "currency",
                    models.CharField(
                        default="usd",
                        help_text="ISO 4217 currency code (lowercase)",
                        max_length=3,
                    ),
                ),
                (
                    "status",
                    models.CharField(
                        choices=[("succeeded", "Succeeded"), ("failed", "Failed")],
                        db_index=True,
                        help_text="Charge outcome",
                        max_length=10,
                    ),
                ),
                (
                    "failure_code",
                    models.CharField(
                        blank=True,
                        help_text="Provider failure code (e.g., card_declined)",
                        max_length=100,
                        null=True,
                    ),
                ),
                (
                    "failure_reason",
                    models.TextField(
                        blank=True,
                        help_text="Failure message reported by the provider",
                        null=True,
                    ),
                ),
                (
                    "processed_at",
                    models.DateTimeField(help_text="When the charge was reconciled"),
                ),
                (
                    "source_event_id",
                    models.CharField(
                        db_index=True,
                        help_text="Provider event ID (evt_xxx) that produced this record",
                        max_length=255,
                    ),
                ),
                (
                    "subscription",
                    models.ForeignKey(
                        help_text="Subscription this payment belongs to",
                        on_delete=django.db.models.deletion.PROTECT,
                        related_name="payments",
                        to="billing.subscription",
                    ),
                ),
            ],
            options={
                "verbose_name": "Payment Record",
                "verbose_name_plural": "Payment Records",
                "ordering": ["-processed_at"],
                "indexes": [
                    models.Index(
                        fields=["subscription", "processed_at"],
                        name="billing_pay_subscri_5c8e21_idx",
                    ),
                ],
                "constraints": [
                    models.UniqueConstraint(
                        fields=("external_payment_id", "status"),
                        name="unique_payment_per_outcome",
                    )
                ],
            },
        ),
    ]
