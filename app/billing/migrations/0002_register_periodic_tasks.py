"""
Add celery-beat schedules for billing maintenance tasks.

- cancel_lapsed_suspensions: hourly, cancels subscriptions suspended
  for longer than BILLING_GRACE_PERIOD_DAYS (no-op when unset)
- report_unreconciled_webhooks: daily, warns while flagged webhook
  events await an operator
"""

from django.db import migrations

PERIODIC_TASKS = [
    {
        "name": "Cancel Lapsed Subscription Suspensions",
        "task": "billing.tasks.cancel_lapsed_suspensions",
        "every": 1,
        "period": "hours",
        "description": (
            "Cancels subscriptions that stayed suspended past the configured "
            "grace period."
        ),
    },
    {
        "name": "Report Unreconciled Webhook Events",
        "task": "billing.tasks.report_unreconciled_webhooks",
        "every": 1,
        "period": "days",
        "description": "Logs a warning while webhook events await manual reconciliation.",
    },
]


def create_periodic_tasks(apps, schema_editor):
    """Create the periodic tasks for billing maintenance."""
    IntervalSchedule = apps.get_model("django_celery_beat", "IntervalSchedule")
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    for spec in PERIODIC_TASKS:
        schedule, _ = IntervalSchedule.objects.get_or_create(
            every=spec["every"],
            period=spec["period"],
        )
        PeriodicTask.objects.get_or_create(
            name=spec["name"],
            defaults={
                "task": spec["task"],
                "interval": schedule,
                "enabled": True,
                "description": spec["description"],
            },
        )


def remove_periodic_tasks(apps, schema_editor):
    """Remove the periodic tasks on migration rollback."""
    PeriodicTask = apps.get_model("django_celery_beat", "PeriodicTask")

    PeriodicTask.objects.filter(
        name__in=[spec["name"] for spec in PERIODIC_TASKS],
    ).delete()


class Migration(migrations.Migration):
    dependencies = [
        ("billing", "0001_initial"),
        ("django_celery_beat", "0019_alter_periodictasks_options"),
    ]

    operations = [
        migrations.RunPython(create_periodic_tasks, remove_periodic_tasks),
    ]
