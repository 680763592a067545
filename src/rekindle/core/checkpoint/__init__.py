# src/rekindle/core/checkpoint/__init__.py
"""Checkpoint subsystem for crash recovery and hand-off.

Provides:
- CheckpointManager: Run operations under checkpointing; manage stored checkpoints
- with_checkpointing: One-shot checkpointed run around an explicit store
- CheckpointStore: Async key-value protocol, with in-memory and SQL backends
- TransferCodec: Signed, expiring transferable checkpoint tokens
- checkpoint_dumps/checkpoint_loads: Type-preserving JSON serialization for operation state
"""

from rekindle.core.checkpoint.manager import (
    CheckpointManager,
    decode_checkpoint,
    encode_checkpoint,
    with_checkpointing,
)
from rekindle.core.checkpoint.serialization import checkpoint_dumps, checkpoint_loads
from rekindle.core.checkpoint.store import (
    CheckpointStore,
    InMemoryCheckpointStore,
    SQLCheckpointStore,
    create_store,
)
from rekindle.core.checkpoint.transfer import TOKEN_VERSION, TransferCodec, peek_token

__all__ = [
    "TOKEN_VERSION",
    "CheckpointManager",
    "CheckpointStore",
    "InMemoryCheckpointStore",
    "SQLCheckpointStore",
    "TransferCodec",
    "checkpoint_dumps",
    "checkpoint_loads",
    "create_store",
    "decode_checkpoint",
    "encode_checkpoint",
    "peek_token",
    "with_checkpointing",
]
