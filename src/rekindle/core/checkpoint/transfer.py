# src/rekindle/core/checkpoint/transfer.py
"""Transferable checkpoint tokens.

A token is a self-contained, signed and expiring encoding of an operation's
state that can leave the process (another device, a later session):

    rk1.<base64url body>.<base64url HMAC-SHA256 signature>

The body is the checkpoint serializer's JSON for
``{operation_id, state, created_at, expires_at, metadata}``. The signature
covers the version prefix and the encoded body, so neither can be swapped.

Encoding and decoding are pure: nothing here touches a checkpoint store.
"""

import base64
import binascii
import copy
import json
from collections.abc import Mapping
from datetime import datetime, timedelta
from typing import Any, Self

import structlog

from rekindle.contracts import (
    CheckpointKind,
    TokenExpiredError,
    TokenInvalidError,
    TransferredCheckpoint,
)
from rekindle.core.checkpoint.serialization import checkpoint_dumps, checkpoint_loads
from rekindle.core.clock import DEFAULT_CLOCK, Clock
from rekindle.core.config import DEFAULT_EXPIRY_MS, TransferSettings
from rekindle.core.security import get_signing_key, sign, verify_signature

logger = structlog.get_logger(__name__)

TOKEN_VERSION = "rk1"


def _b64encode(data: bytes) -> str:
    return base64.urlsafe_b64encode(data).rstrip(b"=").decode("ascii")


def _b64decode(text: str) -> bytes:
    padding = "=" * (-len(text) % 4)
    return base64.urlsafe_b64decode((text + padding).encode("ascii"))


def _split_token(token: str) -> tuple[str, str, str]:
    """Split a token into (version, body, signature) segments.

    Raises:
        TokenInvalidError: If the token does not have three non-empty segments
            or carries an unknown version prefix
    """
    if not isinstance(token, str) or not token:
        raise TokenInvalidError("Checkpoint token must be a non-empty string")
    parts = token.split(".")
    if len(parts) != 3 or not all(parts):
        raise TokenInvalidError("Checkpoint token is malformed: expected <version>.<body>.<signature>")
    version, body, signature = parts
    if version != TOKEN_VERSION:
        raise TokenInvalidError(f"Unsupported checkpoint token version '{version}'")
    return version, body, signature


def _decode_body(body: str) -> dict[str, Any]:
    try:
        payload = checkpoint_loads(_b64decode(body))
    except (binascii.Error, json.JSONDecodeError, UnicodeDecodeError, ValueError) as e:
        raise TokenInvalidError(f"Checkpoint token body cannot be decoded: {e}") from e
    if not isinstance(payload, dict):
        raise TokenInvalidError("Checkpoint token body is not an object")
    return payload


def peek_token(token: str) -> dict[str, Any]:
    """Decode a token body WITHOUT verifying its signature or expiry.

    For inspection and diagnostics only; never resume from the result.

    Raises:
        TokenInvalidError: If the token is structurally malformed
    """
    _, body, _ = _split_token(token)
    return _decode_body(body)


class TransferCodec:
    """Creates and verifies transferable checkpoint tokens with one key.

    Example:
        >>> codec = TransferCodec(b"shared-secret")
        >>> token = codec.create("proof-42", {"round": 3})
        >>> codec.resume(token).state
        {'round': 3}
    """

    def __init__(
        self,
        key: bytes | str | None,
        *,
        default_expiry_ms: int | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize with a signing key.

        Args:
            key: HMAC key shared by token producers and consumers;
                None reads REKINDLE_TOKEN_KEY
            default_expiry_ms: Token lifetime when create() is not given one (24 h)
            clock: Time source (SystemClock if omitted)

        Raises:
            ValueError: If no key is available or the default expiry is not positive
        """
        self._key = get_signing_key(key)
        self._default_expiry_ms = DEFAULT_EXPIRY_MS if default_expiry_ms is None else default_expiry_ms
        if self._default_expiry_ms <= 0:
            raise ValueError(f"default_expiry_ms must be > 0, got {self._default_expiry_ms}")
        self._clock = clock or DEFAULT_CLOCK

    @classmethod
    def from_settings(cls, settings: TransferSettings, *, clock: Clock | None = None) -> Self:
        """Build a codec from the transfer settings section.

        settings.signing_key wins; without it REKINDLE_TOKEN_KEY is read.

        Raises:
            ValueError: If neither source provides a key
        """
        return cls(settings.signing_key, default_expiry_ms=settings.expiry_time_ms, clock=clock)

    def create(
        self,
        operation_id: str,
        state: Mapping[str, Any],
        *,
        expiry_time_ms: int | None = None,
        kind: CheckpointKind | str = CheckpointKind.TRANSFERABLE,
        context: Mapping[str, Any] | None = None,
    ) -> str:
        """Encode a snapshot of state into a signed token.

        Raises:
            ValueError: If operation_id is empty, state is None, the expiry is
                not positive, or state holds values the serializer rejects
        """
        if not operation_id:
            raise ValueError("operation_id must be a non-empty string")
        if state is None:
            raise ValueError("state must be a mapping, got None")
        lifetime_ms = self._default_expiry_ms if expiry_time_ms is None else expiry_time_ms
        if lifetime_ms <= 0:
            raise ValueError(f"expiry_time_ms must be > 0, got {lifetime_ms}")

        created_at = self._clock.now()
        payload = {
            "operation_id": operation_id,
            "state": copy.deepcopy(dict(state)),
            "created_at": created_at,
            "expires_at": created_at + timedelta(milliseconds=lifetime_ms),
            "metadata": {
                "kind": CheckpointKind(kind).value,
                "context": dict(context or {}),
            },
        }
        body = _b64encode(checkpoint_dumps(payload).encode("utf-8"))
        signature = _b64encode(sign(f"{TOKEN_VERSION}.{body}".encode("utf-8"), key=self._key))
        logger.debug("Created transferable checkpoint", operation_id=operation_id, expiry_time_ms=lifetime_ms)
        return f"{TOKEN_VERSION}.{body}.{signature}"

    def resume(self, token: str) -> TransferredCheckpoint:
        """Verify a token and return its contents.

        Checks run in order: structure, version, signature, payload shape,
        expiry. Expiry is only reported for authentic tokens.

        Raises:
            TokenInvalidError: Malformed, tampered with, or signed with another key
            TokenExpiredError: Authentic but past its expiry
        """
        version, body, signature = _split_token(token)
        try:
            signature_bytes = _b64decode(signature)
        except (binascii.Error, ValueError) as e:
            raise TokenInvalidError("Checkpoint token signature is not valid base64") from e
        if not verify_signature(f"{version}.{body}".encode("utf-8"), signature_bytes, key=self._key):
            raise TokenInvalidError("Checkpoint token signature mismatch (tampered or signed with another key)")

        payload = _decode_body(body)
        operation_id = payload.get("operation_id")
        state = payload.get("state")
        created_at = payload.get("created_at")
        expires_at = payload.get("expires_at")
        metadata = payload.get("metadata", {})
        if not isinstance(operation_id, str) or not operation_id:
            raise TokenInvalidError("Checkpoint token has no operation_id")
        if not isinstance(state, dict):
            raise TokenInvalidError("Checkpoint token state is not an object")
        if not isinstance(created_at, datetime) or not isinstance(expires_at, datetime):
            raise TokenInvalidError("Checkpoint token timestamps are missing or invalid")
        if not isinstance(metadata, dict):
            raise TokenInvalidError("Checkpoint token metadata is not an object")

        if self._clock.now() > expires_at:
            raise TokenExpiredError(operation_id, expires_at.isoformat())

        logger.debug("Resumed transferable checkpoint", operation_id=operation_id)
        return TransferredCheckpoint(
            operation_id=operation_id,
            state=state,
            created_at=created_at,
            expires_at=expires_at,
            metadata=metadata,
        )
