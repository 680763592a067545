# src/rekindle/core/security/signing.py
"""HMAC-SHA256 signing for transferable checkpoint tokens.

Tokens leave the process (another device, another session), so their
contents are signed and verified before any state is trusted.

Usage:
    from rekindle.core.security import sign, verify_signature

    signature = sign(body, key=signing_key)
    verify_signature(body, signature, key=signing_key)  # bool

    # With environment variable (REKINDLE_TOKEN_KEY)
    key = get_signing_key()
"""

from __future__ import annotations

import hashlib
import hmac
import os

_ENV_VAR = "REKINDLE_TOKEN_KEY"


def get_signing_key(explicit: bytes | str | None = None) -> bytes:
    """Resolve the token signing key.

    Resolution order:
    1. Explicit key argument
    2. REKINDLE_TOKEN_KEY environment variable (read on every call)

    Returns:
        The signing key as bytes

    Raises:
        ValueError: If no key is available or the key is empty
    """
    if explicit is not None:
        key = explicit.encode("utf-8") if isinstance(explicit, str) else explicit
        if not key:
            raise ValueError("Token signing key must not be empty")
        return key

    env_key = os.environ.get(_ENV_VAR)
    if env_key:
        return env_key.encode("utf-8")

    raise ValueError(f"Token signing key not configured. Pass key= explicitly or set {_ENV_VAR}.")


def sign(message: bytes, *, key: bytes) -> bytes:
    """Compute the HMAC-SHA256 digest of a message."""
    return hmac.new(key=key, msg=message, digestmod=hashlib.sha256).digest()


def verify_signature(message: bytes, signature: bytes, *, key: bytes) -> bool:
    """Constant-time check that signature matches message under key."""
    return hmac.compare_digest(sign(message, key=key), signature)


def key_fingerprint(key: bytes) -> str:
    """Short, non-reversible identifier for a key, safe to log or display."""
    return hashlib.sha256(key).hexdigest()[:16]
