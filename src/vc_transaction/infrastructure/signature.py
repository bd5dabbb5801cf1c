"""HMAC-SHA256 verification for provider webhooks.

signature = hex(HMAC-SHA256(secret, f"{timestamp}.{raw_body}"))  when a timestamp is sent
          = hex(HMAC-SHA256(secret, raw_body))                   otherwise
A leading "sha256=" on the header value is tolerated.
"""

import hashlib
import hmac
import logging
import time

from src.vc_common.errors import InvalidWebhookSignatureError

logger = logging.getLogger(__name__)


def compute_signature(secret: str, body: bytes, timestamp: str | None = None) -> str:
    message = f"{timestamp}.".encode() + body if timestamp else body
    return hmac.new(secret.encode("utf-8"), message, hashlib.sha256).hexdigest()


def verify_webhook_signature(
    secret: str,
    body: bytes,
    signature: str | None,
    timestamp: str | None,
    max_skew_seconds: int = 300,
    now: float | None = None,
) -> None:
    """Raise InvalidWebhookSignatureError unless the request is authentic and fresh."""
    if not secret:
        raise InvalidWebhookSignatureError("verification enabled without a secret")
    if not signature:
        raise InvalidWebhookSignatureError("missing signature")

    if timestamp:
        try:
            sent_at = int(timestamp)
        except ValueError:
            raise InvalidWebhookSignatureError("malformed timestamp") from None
        current = time.time() if now is None else now
        if abs(current - sent_at) > max_skew_seconds:
            logger.warning("Webhook timestamp %s outside the %ss window", timestamp, max_skew_seconds)
            raise InvalidWebhookSignatureError("timestamp outside allowed window")

    provided = signature.strip()
    if provided.startswith("sha256="):
        provided = provided[len("sha256="):]
    expected = compute_signature(secret, body, timestamp)
    if not hmac.compare_digest(provided.lower(), expected):
        logger.warning("Webhook signature mismatch")
        raise InvalidWebhookSignatureError()
