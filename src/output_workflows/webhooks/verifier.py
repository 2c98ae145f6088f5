"""HMAC-SHA256 verification of inbound webhooks."""

from __future__ import annotations

import hashlib
import hmac

from output_workflows.errors import MissingSecretError, VerificationError


def compute_signature(secret: str | bytes, payload: str | bytes) -> str:
    """Hex-encoded HMAC-SHA256 of ``payload`` keyed by ``secret``."""

    key = secret.encode("utf-8") if isinstance(secret, str) else secret
    body = payload.encode("utf-8") if isinstance(payload, str) else payload
    return hmac.new(key, body, hashlib.sha256).hexdigest()


def secure_compare(a: str, b: str) -> bool:
    left = a.encode("utf-8")
    right = b.encode("utf-8")
    if len(left) != len(right):
        return False
    return hmac.compare_digest(left, right)


class WebhookVerifier:
    """Verify webhook signatures against a shared secret.

    Fails closed: construction requires a non-empty secret.
    """

    def __init__(self, secret: str | bytes | None) -> None:
        if not secret:
            raise MissingSecretError("Webhook secret is required")
        self._secret = secret

    def __repr__(self) -> str:
        return "WebhookVerifier(secret=***)"

    def verify(self, payload: str | bytes, signature: str | None) -> bool:
        """Return True if ``signature`` matches ``payload``.

        Raises:
            VerificationError: The signature is missing or does not match.
        """

        if not signature:
            raise VerificationError("Missing webhook signature")
        expected = compute_signature(self._secret, payload)
        if not secure_compare(expected, signature):
            raise VerificationError("Invalid webhook signature")
        return True
