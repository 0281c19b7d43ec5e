"""LINE webhook signature verification.

LINE signs every delivery with ``x-line-signature``: the base64-encoded
HMAC-SHA256 of the raw request body keyed with the channel secret. The digest
must be computed over the bytes exactly as received; re-serializing parsed
JSON changes whitespace and key order and therefore the digest.
"""

from __future__ import annotations

import base64
import binascii
import hashlib
import hmac
import logging

from src.webhook.models import _MINT, VerifiedBody, WebhookRequest

logger = logging.getLogger(__name__)

SIGNATURE_HEADER = "x-line-signature"


class AuthenticationError(Exception):
    """Raised when a delivery's signature is missing, malformed or wrong."""

    def __init__(self, reason: str) -> None:
        self.reason = reason
        super().__init__(f"Webhook authentication failed: {reason}")


def compute_signature(channel_secret: str, body: bytes) -> str:
    """Return the base64 HMAC-SHA256 of ``body`` as LINE would send it."""
    digest = hmac.new(channel_secret.encode(), body, hashlib.sha256).digest()
    return base64.b64encode(digest).decode()


class SignatureVerifier:
    """Verifies ``x-line-signature`` against the channel secret."""

    def __init__(self, channel_secret: str) -> None:
        if not channel_secret:
            raise ValueError("channel secret must not be empty")
        self._secret = channel_secret.encode()

    def is_valid(self, body: bytes, signature: str | None) -> bool:
        """Return True if ``signature`` matches ``body``; never raises."""
        try:
            self._check(body, signature)
        except AuthenticationError:
            return False
        return True

    def verify(self, request: WebhookRequest) -> VerifiedBody:
        """Return the body tagged as verified, or raise AuthenticationError."""
        self._check(request.body, request.signature)
        return VerifiedBody(request.body, _token=_MINT)

    def _check(self, body: bytes, signature: str | None) -> None:
        if not signature:
            raise AuthenticationError("missing signature header")
        try:
            provided = base64.b64decode(signature, validate=True)
        except (binascii.Error, ValueError):
            raise AuthenticationError("signature is not valid base64") from None

        expected = hmac.new(self._secret, body, hashlib.sha256).digest()
        # Constant-time comparison
        if not hmac.compare_digest(provided, expected):
            raise AuthenticationError("signature mismatch")
