# src/rekindle/core/checkpoint/serialization.py
"""Type-preserving JSON for stored checkpoint state.

Operation state is caller-owned and routinely holds values plain JSON
cannot round-trip, mainly timestamps and binary blobs such as witness data
or partial proofs. They are stored as tagged envelopes:

    {"__rekindle_type__": "datetime",       "__rekindle_value__": "<iso-8601 with offset>"}
    {"__rekindle_type__": "naive_datetime", "__rekindle_value__": "<iso-8601>"}
    {"__rekindle_type__": "bytes",          "__rekindle_value__": "<base64>"}

A caller dict that already contains ``__rekindle_type__`` is wrapped in an
``escaped_dict`` envelope so it is never mistaken for a tag on the way back.

Unlike canonical_json(), which flattens values for hashing, this format
must restore exactly what was saved. Tuples come back as lists, and NaN or
Infinity are refused.
"""

from __future__ import annotations

import base64
import json
import math
from datetime import datetime
from typing import Any

_TYPE_KEY = "__rekindle_type__"
_VALUE_KEY = "__rekindle_value__"


def _envelope(kind: str, value: Any) -> dict[str, Any]:
    return {_TYPE_KEY: kind, _VALUE_KEY: value}


def _wrap(obj: Any) -> Any:
    """Turn state into plain JSON values, tagging datetime and bytes.

    Raises:
        ValueError: On NaN or Infinity
        TypeError: On a value with no JSON or envelope form
    """
    if isinstance(obj, dict):
        wrapped = {key: _wrap(value) for key, value in obj.items()}
        return _envelope("escaped_dict", wrapped) if _TYPE_KEY in obj else wrapped
    if isinstance(obj, list | tuple):
        return [_wrap(value) for value in obj]
    if isinstance(obj, float):
        if not math.isfinite(obj):
            raise ValueError(f"Cannot store non-finite float {obj!r}; use None for a missing value")
        return obj
    if obj is None or isinstance(obj, str | int):
        return obj
    if isinstance(obj, datetime):
        kind = "datetime" if obj.tzinfo is not None else "naive_datetime"
        return _envelope(kind, obj.isoformat())
    if isinstance(obj, bytes):
        return _envelope("bytes", base64.b64encode(obj).decode("ascii"))
    raise TypeError(f"Object of type {type(obj).__name__} cannot be stored in a checkpoint")


def _unwrap(obj: Any) -> Any:
    if isinstance(obj, list):
        return [_unwrap(value) for value in obj]
    if not isinstance(obj, dict):
        return obj

    if obj.keys() == {_TYPE_KEY, _VALUE_KEY}:
        kind, value = obj[_TYPE_KEY], obj[_VALUE_KEY]
        if kind == "datetime" and isinstance(value, str):
            return datetime.fromisoformat(value)
        if kind == "naive_datetime" and isinstance(value, str):
            restored = datetime.fromisoformat(value)
            if restored.tzinfo is not None:
                raise ValueError(f"naive_datetime envelope carries an offset: {value!r}")
            return restored
        if kind == "bytes" and isinstance(value, str):
            return base64.b64decode(value.encode("ascii"), validate=True)
        if kind == "escaped_dict" and isinstance(value, dict):
            return {key: _unwrap(item) for key, item in value.items()}

    return {key: _unwrap(value) for key, value in obj.items()}


def checkpoint_dumps(obj: Any) -> str:
    """Serialize state to JSON text with datetime and bytes tagged.

    Raises:
        ValueError: If state contains NaN or Infinity
        TypeError: If state contains a value with no stored form
    """
    return json.dumps(_wrap(obj), allow_nan=False)


def checkpoint_loads(s: str | bytes) -> Any:
    """Restore state written by checkpoint_dumps().

    Raises:
        json.JSONDecodeError: If s is not valid JSON
        binascii.Error: If a bytes envelope is not valid base64
    """
    return _unwrap(json.loads(s))
