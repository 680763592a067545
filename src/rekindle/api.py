# src/rekindle/api.py
"""Module-level convenience API.

Each function builds a short-lived engine around the objects it is given.
Nothing here holds global state: the checkpoint store is always passed in
explicitly, and the token signing key comes from the argument or the
REKINDLE_TOKEN_KEY environment variable.
"""

from collections.abc import Mapping
from typing import Any

from rekindle.contracts import TransferredCheckpoint
from rekindle.core.checkpoint import CheckpointManager, CheckpointStore, TransferCodec, with_checkpointing
from rekindle.core.config import CheckpointSettings
from rekindle.engine.batch import process_batch
from rekindle.engine.retry import with_retry

__all__ = [
    "create_transferable_checkpoint",
    "get_checkpoint",
    "process_batch",
    "remove_checkpoint",
    "resume_from_transferable_checkpoint",
    "with_checkpointing",
    "with_retry",
]


async def get_checkpoint(
    operation_id: str,
    *,
    store: CheckpointStore,
    settings: CheckpointSettings | None = None,
) -> dict[str, Any] | None:
    """Last persisted state for operation_id, or None."""
    return await CheckpointManager(store, settings=settings).get_checkpoint(operation_id)


async def remove_checkpoint(
    operation_id: str,
    *,
    store: CheckpointStore,
    settings: CheckpointSettings | None = None,
) -> bool:
    """Delete the checkpoint for operation_id. Returns True if one existed."""
    return await CheckpointManager(store, settings=settings).remove_checkpoint(operation_id)


def create_transferable_checkpoint(
    operation_id: str,
    state: Mapping[str, Any],
    *,
    expiry_time_ms: int | None = None,
    key: bytes | str | None = None,
    context: Mapping[str, Any] | None = None,
) -> str:
    """Encode state as a signed, expiring token.

    Raises:
        ValueError: If no signing key is available, operation_id is empty or
            state is None
    """
    return TransferCodec(key).create(
        operation_id,
        state,
        expiry_time_ms=expiry_time_ms,
        context=context,
    )


def resume_from_transferable_checkpoint(token: str, *, key: bytes | str | None = None) -> TransferredCheckpoint:
    """Verify a token and return its contents. Never writes to a store.

    Raises:
        TokenInvalidError: Malformed, tampered with, or signed with another key
        TokenExpiredError: Authentic but past its expiry
        ValueError: If no signing key is available
    """
    return TransferCodec(key).resume(token)
