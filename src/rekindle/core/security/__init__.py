# src/rekindle/core/security/__init__.py
"""Security utilities for rekindle.

Exports:
- get_signing_key: Resolve the token signing key (argument or environment)
- sign / verify_signature: HMAC-SHA256 over token bodies
- key_fingerprint: Displayable identifier for a key
"""

from rekindle.core.security.signing import (
    get_signing_key,
    key_fingerprint,
    sign,
    verify_signature,
)

__all__ = [
    "get_signing_key",
    "key_fingerprint",
    "sign",
    "verify_signature",
]
