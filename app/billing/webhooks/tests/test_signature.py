"""
Tests for webhook signature verification.

Signatures are built locally with the test secret; ``now`` is passed
explicitly so tolerance checks are deterministic.
"""

import pytest

from billing.exceptions import WebhookAuthenticationError, WebhookValidationError
from billing.webhooks.signature import SignatureValidator, verify_signature
from billing.webhooks.tests.conftest import WEBHOOK_SECRET, encode, sign

NOW = 1_770_000_000
BODY = encode({"id": "evt_1", "type": "invoice.paid", "data": {"object": {}}})


class TestVerifySignature:
    """Tests for verify_signature function."""

    def test_valid_signature_returns_payload(self):
        header = sign(BODY, timestamp=NOW)

        payload = verify_signature(BODY, header, WEBHOOK_SECRET, now=NOW)

        assert payload["id"] == "evt_1"

    def test_missing_secret(self):
        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, sign(BODY, timestamp=NOW), "", now=NOW)

        assert exc_info.value.error_code == "WEBHOOK_SECRET_MISSING"

    def test_missing_header(self):
        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, "", WEBHOOK_SECRET, now=NOW)

        assert exc_info.value.error_code == "MISSING_SIGNATURE"

    def test_wrong_secret(self):
        header = sign(BODY, secret="whsec_other", timestamp=NOW)

        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, header, WEBHOOK_SECRET, now=NOW)

        assert exc_info.value.error_code == "INVALID_SIGNATURE"

    def test_tampered_body(self):
        header = sign(BODY, timestamp=NOW)
        tampered = BODY.replace(b"invoice.paid", b"invoice.void")

        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(tampered, header, WEBHOOK_SECRET, now=NOW)

        assert exc_info.value.error_code == "INVALID_SIGNATURE"

    def test_whitespace_change_breaks_signature(self):
        """The signature covers the raw bytes, not the parsed JSON."""
        header = sign(BODY, timestamp=NOW)

        with pytest.raises(WebhookAuthenticationError):
            verify_signature(BODY + b" ", header, WEBHOOK_SECRET, now=NOW)

    def test_malformed_header(self):
        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, "garbage", WEBHOOK_SECRET, now=NOW)

        assert exc_info.value.error_code == "INVALID_SIGNATURE"

    def test_any_matching_v1_signature_is_accepted(self):
        """Secret rotation sends one signature per active secret."""
        valid = sign(BODY, timestamp=NOW)
        header = f"t={NOW},v1={'0' * 64},{valid.split(',')[1]}"

        assert verify_signature(BODY, header, WEBHOOK_SECRET, now=NOW)["id"] == "evt_1"

    def test_stale_timestamp(self):
        header = sign(BODY, timestamp=NOW - 301)

        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, header, WEBHOOK_SECRET, tolerance=300, now=NOW)

        assert exc_info.value.error_code == "SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE"

    def test_timestamp_at_tolerance_boundary(self):
        header = sign(BODY, timestamp=NOW - 300)

        assert verify_signature(BODY, header, WEBHOOK_SECRET, tolerance=300, now=NOW)

    def test_future_timestamp(self):
        header = sign(BODY, timestamp=NOW + 301)

        with pytest.raises(WebhookAuthenticationError) as exc_info:
            verify_signature(BODY, header, WEBHOOK_SECRET, tolerance=300, now=NOW)

        assert exc_info.value.error_code == "SIGNATURE_TIMESTAMP_OUT_OF_TOLERANCE"

    def test_non_utf8_body(self):
        body = b"\xff\xfe\x00"

        with pytest.raises(WebhookAuthenticationError):
            verify_signature(body, sign(body, timestamp=NOW), WEBHOOK_SECRET, now=NOW)

    def test_authentic_body_that_is_not_json(self):
        body = b"not json"

        with pytest.raises(WebhookValidationError) as exc_info:
            verify_signature(body, sign(body, timestamp=NOW), WEBHOOK_SECRET, now=NOW)

        assert exc_info.value.error_code == "INVALID_JSON"


class TestSignatureValidator:
    def test_uses_clock(self):
        validator = SignatureValidator(WEBHOOK_SECRET, tolerance=60, clock=lambda: NOW + 120)

        with pytest.raises(WebhookAuthenticationError):
            validator.verify(BODY, sign(BODY, timestamp=NOW))

    def test_verify(self):
        validator = SignatureValidator(WEBHOOK_SECRET, clock=lambda: NOW)

        assert validator.verify(BODY, sign(BODY, timestamp=NOW))["type"] == "invoice.paid"

    def test_is_configured(self):
        assert SignatureValidator(WEBHOOK_SECRET).is_configured
        assert not SignatureValidator("").is_configured
