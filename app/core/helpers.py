"""
Helper functions for common infrastructure operations.

This module provides domain-agnostic utility functions for:
- Payload hashing
- HTTP request helpers (client IP extraction)

These utilities are pure infrastructure - they have no knowledge
of domain concepts like subscriptions, payments, or webhooks.

Usage:
    from core.helpers import hash_bytes, get_client_ip

    digest = hash_bytes(request.body)
    ip = get_client_ip(request)
"""

from __future__ import annotations

import hashlib
from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from django.http import HttpRequest


def hash_bytes(value: bytes | str, algorithm: str = "sha256") -> str:
    """
    Hash raw bytes (or a string, encoded as UTF-8).

    Args:
        value: Bytes or string to hash
        algorithm: Hash algorithm (sha256, sha512, etc.)

    Returns:
        Hexadecimal hash string

    Example:
        digest = hash_bytes(b'{"id": "evt_1"}')
    """
    if isinstance(value, str):
        value = value.encode("utf-8")
    hasher = hashlib.new(algorithm)
    hasher.update(value)
    return hasher.hexdigest()


def get_client_ip(request: HttpRequest) -> str:
    """
    Extract client IP from request, handling proxies.

    Checks X-Forwarded-For header for proxy chains.

    Args:
        request: Django HTTP request

    Returns:
        Client IP address string (empty when unknown)
    """
    x_forwarded_for = request.META.get("HTTP_X_FORWARDED_FOR")
    if x_forwarded_for:
        # First IP in the chain is the original client
        return x_forwarded_for.split(",")[0].strip()
    return request.META.get("REMOTE_ADDR", "")
