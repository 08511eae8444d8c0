"""
Subscription billing and webhook reconciliation.

Usage:
    from billing.models import Subscription
    from billing.webhooks import get_webhook_processor
"""
