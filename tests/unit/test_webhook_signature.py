"""Tests for webhook HMAC verification."""

import pytest

from src.vc_common.errors import InvalidWebhookSignatureError
from src.vc_transaction.infrastructure.signature import (
    compute_signature,
    verify_webhook_signature,
)

SECRET = "whsec-test"
BODY = b'{"txnId":"s-1","billAmt":"8.50"}'
NOW = 1_760_000_000


class TestComputeSignature:
    def test_timestamp_changes_signature(self) -> None:
        assert compute_signature(SECRET, BODY) != compute_signature(SECRET, BODY, str(NOW))

    def test_is_hex_sha256(self) -> None:
        sig = compute_signature(SECRET, BODY)
        assert len(sig) == 64
        int(sig, 16)


class TestVerify:
    def test_valid_with_timestamp(self) -> None:
        sig = compute_signature(SECRET, BODY, str(NOW))
        verify_webhook_signature(SECRET, BODY, sig, str(NOW), now=NOW + 10)

    def test_valid_without_timestamp_and_prefixed(self) -> None:
        sig = compute_signature(SECRET, BODY)
        verify_webhook_signature(SECRET, BODY, f"sha256={sig.upper()}", None)

    def test_tampered_body(self) -> None:
        sig = compute_signature(SECRET, BODY, str(NOW))
        with pytest.raises(InvalidWebhookSignatureError):
            verify_webhook_signature(SECRET, BODY + b" ", sig, str(NOW), now=NOW)

    def test_wrong_secret(self) -> None:
        sig = compute_signature("other", BODY)
        with pytest.raises(InvalidWebhookSignatureError):
            verify_webhook_signature(SECRET, BODY, sig, None)

    def test_stale_timestamp(self) -> None:
        sig = compute_signature(SECRET, BODY, str(NOW))
        with pytest.raises(InvalidWebhookSignatureError) as exc_info:
            verify_webhook_signature(SECRET, BODY, sig, str(NOW), max_skew_seconds=300, now=NOW + 301)
        assert "window" in exc_info.value.message

    def test_malformed_timestamp(self) -> None:
        with pytest.raises(InvalidWebhookSignatureError):
            verify_webhook_signature(SECRET, BODY, "abc", "yesterday", now=NOW)

    def test_missing_signature(self) -> None:
        with pytest.raises(InvalidWebhookSignatureError) as exc_info:
            verify_webhook_signature(SECRET, BODY, None, None)
        assert exc_info.value.http_status == 401

    def test_enabled_without_secret(self) -> None:
        with pytest.raises(InvalidWebhookSignatureError):
            verify_webhook_signature("", BODY, "abc", None)
