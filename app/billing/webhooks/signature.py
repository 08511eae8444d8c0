"""
Signature verification for provider deliveries.

Verification runs on the raw request body before anything parses it. The
provider signs ``"{timestamp}.{body}"`` with HMAC-SHA256 and sends
``t=<timestamp>,v1=<hex digest>[,v1=...]`` in the Stripe-Signature header.
The comparison itself is delegated to the Stripe SDK, which uses a
constant-time compare and rejects timestamps older than the tolerance.
Timestamps too far in the future are rejected here as well.

Usage:
    validator = SignatureValidator(secret=settings.STRIPE_WEBHOOK_SECRET)
    payload = validator.verify(request.body, request.headers["Stripe-Signature"])
"""

from __future__ import annotations

import json
import logging
import time
from typing import TYPE_CHECKING

import stripe

from billing.exceptions import WebhookAuthenticationError, WebhookValidationError

if TYPE_CHECKING:
    from collections.abc import Callable
    from typing import Any

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "Stripe-Signature"
DEFAULT_TOLERANCE_SECONDS = 300


def _header_timestamp(header: str) -> int | None:
    for item in header.split(","):
        key, _, value = item.strip().partition("=")
        if key == "t":
            try:
                return int(value)
            except ValueError:
                return None
    return None


def verify_signature(
    payload: bytes,
    header: str,
    secret: str,
    tolerance: int = DEFAULT_TOLERANCE_SECONDS,
    now: float | None = None,
) -> dict[str, Any]:
    """
    Authenticate a raw payload and parse it.

    Args:
        payload: Request body, byte-for-byte as received
        header: Stripe-Signature header value
        secret: Endpoint signing secret (whsec_...)
        tolerance: Allowed clock skew in seconds, both directions
        now: Current epoch seconds (defaults to time.time())

    Returns:
        The parsed JSON payload

    Raises:
        WebhookAuthenticationError: Missing secret or header, bad signature,
            timestamp outside tolerance, or a body that is not UTF-8
        WebhookValidationError: Authentic body that is not valid JSON
    """
    if not secret:
        raise WebhookAuthenticationError(
            "Webhook signing secret is not configured",
            error_code="WEBHOOK_SECRET_MISSING",
        )
    if not header:
        raise WebhookAuthenticationError(
            f"Missing {SIGNATURE_HEADER} header",
            error_code="MISSING_SIGNATURE",
        )

    try:
        text = payload.decode("utf-8")
    except UnicodeDecodeError as e:
        raise WebhookAuthenticationError(
            "Payload is not valid UTF-8 and cannot be verified",
        ) from e

    current = time.time() if now is None else now
    timestamp = _header_timestamp(header)
    if timestamp is not None and timestamp > current + tolerance:
        raise WebhookAuthenticationError(
            "Signature timestamp is in the future beyond tolerance",
            error_code="SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE",
            details={"tolerance_seconds": tolerance},
        )
    if timestamp is not None and timestamp < current - tolerance:
        raise WebhookAuthenticationError(
            "Signature timestamp is older than tolerance",
            error_code="SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE",
            details={"tolerance_seconds": tolerance},
        )

    try:
        # The explicit checks above own the tolerance window
        stripe.WebhookSignature.verify_header(text, header, secret, tolerance=None)
    except stripe.SignatureVerificationError as e:
        raise WebhookAuthenticationError(
            "Invalid webhook signature",
            details={"reason": str(e)},
        ) from e

    try:
        return json.loads(text)
    except json.JSONDecodeError as e:
        raise WebhookValidationError(
            "Payload is not valid JSON",
            error_code="INVALID_JSON",
            details={"position": e.pos},
        ) from e


class SignatureValidator:
    """
    Holds the verification configuration for one endpoint.

    Args:
        secret: Endpoint signing secret
        tolerance: Allowed timestamp skew in seconds
        clock: Returns current epoch seconds
    """

    def __init__(
        self,
        secret: str,
        tolerance: int = DEFAULT_TOLERANCE_SECONDS,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.secret = secret
        self.tolerance = tolerance
        self.clock = clock

    @property
    def is_configured(self) -> bool:
        return bool(self.secret)

    def verify(self, payload: bytes, header: str) -> dict[str, Any]:
        return verify_signature(
            payload,
            header,
            self.secret,
            tolerance=self.tolerance,
            now=self.clock(),
        )
