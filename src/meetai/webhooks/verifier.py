"""Webhook signature verification.

The provider signs the exact request body with HMAC-SHA256 keyed by the
API secret and sends the hex digest in ``x-signature``. Verification must
run over the raw bytes before any JSON parsing.
"""

from __future__ import annotations

import hashlib
import hmac


def compute_signature(raw_body: bytes, secret: str) -> str:
    """Hex HMAC-SHA256 of ``raw_body`` keyed by ``secret``."""
    return hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_signature(raw_body: bytes, signature: str, secret: str) -> bool:
    """Return True iff ``signature`` authenticates ``raw_body``.

    An empty secret or signature never verifies.
    """
    if not secret or not signature:
        return False
    expected = compute_signature(raw_body, secret)
    return hmac.compare_digest(expected, signature.strip().lower())
