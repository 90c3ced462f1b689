"""Webhook signature verification."""

from __future__ import annotations

import hashlib
import hmac


def is_valid_signature(secret: str, payload: bytes, received_signature: str, algorithm: str = "sha256") -> bool:
    """Check a hex HMAC of `payload` in constant time.

    Compared as bytes: header values may carry non-ASCII characters, which
    never match a hex digest.
    """
    if algorithm not in ("sha256", "sha512"):
        raise ValueError(f"Unsupported algorithm: {algorithm}")
    computed = hmac.new(secret.encode("utf-8"), payload, getattr(hashlib, algorithm)).hexdigest()
    received = received_signature.strip().lower().encode("utf-8", "surrogateescape")
    return hmac.compare_digest(computed.encode("ascii"), received)
