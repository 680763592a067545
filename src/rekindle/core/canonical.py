# src/rekindle/core/canonical.py
"""Deterministic hashing of operation state.

Every checkpoint stores stable_hash(state); the manager recomputes it on
load, so a snapshot damaged in the store is reported as corrupt instead of
being resumed from.

Hashing runs over RFC 8785 (JCS) JSON produced by the rfc8785 package,
after a normalization pass that maps the extra types operation state may
carry onto JSON values:

    datetime       -> ISO-8601 string in UTC (naive values are taken as UTC)
    bytes          -> {"__bytes__": "<base64>"}
    Decimal        -> its string form
    int beyond 2^53 -> its decimal string (JCS cannot represent it exactly)

The normalized form exists only for hashing; stored state keeps the
original values. NaN and Infinity are rejected rather than coerced.
"""

from __future__ import annotations

import base64
import hashlib
import math
from datetime import UTC, datetime
from decimal import Decimal
from typing import Any

import rfc8785

# Stored next to hashes so a future algorithm change is detectable
CANONICAL_VERSION = "sha256-rfc8785-v1"

_MAX_SAFE_INTEGER = 2**53 - 1


def _non_finite(value: float | Decimal) -> ValueError:
    return ValueError(f"Cannot hash non-finite number {value!r}; store None for a missing value")


def _normalize(value: Any) -> Any:
    """Map a state value onto JSON types accepted by rfc8785.

    Raises:
        ValueError: On NaN or Infinity anywhere in the structure
    """
    if isinstance(value, dict):
        return {key: _normalize(item) for key, item in value.items()}
    if isinstance(value, list | tuple):
        return [_normalize(item) for item in value]

    # bool before int: True is an int
    if value is None or isinstance(value, str | bool):
        return value
    if isinstance(value, int):
        return value if abs(value) <= _MAX_SAFE_INTEGER else str(value)
    if isinstance(value, float):
        if not math.isfinite(value):
            raise _non_finite(value)
        return value
    if isinstance(value, Decimal):
        if not value.is_finite():
            raise _non_finite(value)
        return str(value)
    if isinstance(value, datetime):
        aware = value if value.tzinfo is not None else value.replace(tzinfo=UTC)
        return aware.astimezone(UTC).isoformat()
    if isinstance(value, bytes):
        return {"__bytes__": base64.b64encode(value).decode("ascii")}

    # Anything else is left for rfc8785 to accept or reject with TypeError
    return value


def canonical_json(obj: Any) -> str:
    """Return the canonical JSON text for obj (sorted keys, no whitespace).

    Raises:
        ValueError: If obj contains NaN or Infinity
        TypeError: If obj contains a type rfc8785 cannot encode
    """
    encoded: bytes = rfc8785.dumps(_normalize(obj))
    return encoded.decode("utf-8")


def stable_hash(obj: Any) -> str:
    """SHA-256 hex digest of canonical_json(obj)."""
    return hashlib.sha256(canonical_json(obj).encode("utf-8")).hexdigest()
