# authguard/app/security/crypto.py
"""
Low-level cryptographic helpers.

This module handles:
- Constant-time comparison (codes, CSRF tokens)
- Unguessable token generation (sessions, API keys)
- Keyed HMAC digests (API key storage)
- Non-reversible fingerprints for binding tokens to secrets
"""
import hashlib
import hmac
import secrets
from typing import Union


def constant_time_compare(a: str, b: str) -> bool:
    """
    Compare two strings in constant time to prevent timing attacks.

    Args:
        a: First string (expected value)
        b: Second string (provided value)

    Returns:
        True if strings match, False otherwise
    """
    if not isinstance(a, str) or not isinstance(b, str):
        return False
    a_bytes = a.encode("utf-8")
    b_bytes = b.encode("utf-8")
    if len(a_bytes) != len(b_bytes):
        # Still do the comparison to maintain constant time
        # but ensure we return False
        secrets.compare_digest(a_bytes, a_bytes)
        return False
    return secrets.compare_digest(a_bytes, b_bytes)


def generate_secure_token(nbytes: int = 32) -> str:
    """
    Generate a URL-safe random token.

    Returns:
        Base64url string carrying `nbytes` bytes of entropy
    """
    return secrets.token_urlsafe(nbytes)


def fingerprint(value: str, length: int = 16) -> str:
    """SHA-256 hex prefix of a value; identifies a secret without revealing it."""
    return hashlib.sha256(value.encode("utf-8")).hexdigest()[:length]


def compute_hmac_signature(
    payload: Union[str, bytes],
    secret: str,
    digestmod: str = "sha256",
) -> str:
    """Hex HMAC of a payload."""
    if isinstance(payload, str):
        payload = payload.encode("utf-8")
    return hmac.new(secret.encode("utf-8"), payload, digestmod).hexdigest()

