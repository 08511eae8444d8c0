"""
Celery configuration for the billing service.

Celery runs the work that must not hold up a webhook acknowledgment:
- Subscription notification emails, queued after the webhook transaction commits
- Periodic maintenance (lapsed suspensions, reconciliation backlog report)
- Operator-triggered reprocessing of flagged webhook events

Redis is both the message broker and result backend. Periodic schedules
live in the database (django-celery-beat DatabaseScheduler).

Usage:
    celery -A config worker -l info
    celery -A config beat -l info

For more information, see:
https://docs.celeryq.dev/en/stable/django/first-steps-with-django.html
"""

import os

from celery import Celery

# Set the default Django settings module for the Celery worker
os.environ.setdefault("DJANGO_SETTINGS_MODULE", "config.settings")

app = Celery("config")

# All Celery settings are prefixed with CELERY_ in settings.py
app.config_from_object("django.conf:settings", namespace="CELERY")

# Looks for a tasks.py module in each installed app
app.autodiscover_tasks()
