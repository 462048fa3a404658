"""Webhook signature verification (HMAC-SHA256 over the raw request body)."""

from __future__ import annotations

import hashlib
import hmac

import structlog

from app.shared.core.exceptions import ConfigurationError

logger = structlog.get_logger()


class SignatureVerifier:
    """
    Authenticates gateway webhook payloads with a shared secret.

    The digest is computed over the exact bytes received. Parsing and
    re-serialising JSON first changes whitespace and key order and breaks
    otherwise valid signatures.
    """

    def __init__(self, secret: str | None):
        if not secret:
            raise ConfigurationError("Webhook signing secret is not configured")
        self._secret = secret.encode()

    def sign(self, payload: bytes) -> str:
        return hmac.new(self._secret, payload, hashlib.sha256).hexdigest()

    def verify(self, payload: bytes, signature: str) -> bool:
        if payload is None or signature is None:
            raise ValueError("payload and signature are required")

        # Header values arrive latin-1 decoded; non-ASCII can never be a hex digest.
        candidate = signature.strip().lower()
        is_valid = candidate.isascii() and hmac.compare_digest(
            self.sign(payload), candidate
        )
        if not is_valid:
            logger.warning("webhook_signature_mismatch", payload_len=len(payload))
        return is_valid
