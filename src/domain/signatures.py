from __future__ import annotations

import hashlib
import hmac


def compute_vapi_signature(raw_body: bytes, public_key: str) -> str:
    return hmac.new(public_key.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()


def verify_vapi_signature(raw_body: bytes, signature_header: str | None, public_key: str | None) -> bool:
    """Check a hex HMAC-SHA256 of the raw body keyed by the tenant public key.

    Every failure mode returns False so callers cannot tell them apart.
    """
    if not public_key or not signature_header or raw_body is None:
        return False
    candidate = signature_header.strip().lower()
    if candidate.startswith("sha256="):
        candidate = candidate[len("sha256="):]
    try:
        expected = compute_vapi_signature(bytes(raw_body), public_key)
        return hmac.compare_digest(expected, candidate)
    except (TypeError, ValueError):
        return False
