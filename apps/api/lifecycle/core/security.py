"""Shared-secret verification for internal endpoints."""

import hmac


def verify_secret(provided: str | None, expected: str | None) -> bool:
    """Constant-time comparison that rejects empty values."""
    if not provided or not expected:
        return False
    return hmac.compare_digest(provided.encode(), expected.encode())
