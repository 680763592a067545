# src/rekindle/contracts/checkpoint.py
"""Checkpoint and transfer domain contracts.

These types describe what the checkpoint store holds and what a decoded
transferable token yields. Serialization lives in
rekindle.core.checkpoint.serialization.
"""

from dataclasses import dataclass, field
from datetime import datetime
from typing import Any, ClassVar

from rekindle.contracts.enums import CheckpointKind, CheckpointStatus


@dataclass(frozen=True)
class Checkpoint:
    """Latest persisted snapshot of an operation's state.

    At most one Checkpoint exists per operation_id; each write replaces the
    previous one. The state is what was last *persisted*, which can lag the
    operation's in-memory state if the process died between a mutation
    and the next flush.

    Attributes:
        operation_id: Caller-chosen operation identifier (the store key)
        state: Caller-owned state mapping, opaque to the engine
        updated_at: When this snapshot was written (UTC)
        sequence_number: Monotonic write counter for this operation
        status: RUNNING until the operation function returns
        kind: What produced the checkpoint
        context: Free-form caller metadata
        expires_at: After this instant the checkpoint is treated as absent
        state_hash: Canonical hash of state, verified on load
        format_version: Snapshot layout version
    """

    CURRENT_FORMAT_VERSION: ClassVar[int] = 1

    operation_id: str
    state: dict[str, Any]
    updated_at: datetime
    sequence_number: int
    status: CheckpointStatus = CheckpointStatus.RUNNING
    kind: CheckpointKind = CheckpointKind.GENERIC
    context: dict[str, Any] = field(default_factory=dict)
    expires_at: datetime | None = None
    state_hash: str | None = None
    format_version: int = 1

    def __post_init__(self) -> None:
        if not self.operation_id:
            raise ValueError("operation_id must be a non-empty string")
        if self.sequence_number < 0:
            raise ValueError(f"sequence_number must be >= 0, got {self.sequence_number}")

    def is_expired(self, now: datetime) -> bool:
        """True if the checkpoint has an expiry and it has passed."""
        return self.expires_at is not None and self.expires_at <= now


@dataclass(frozen=True)
class CheckpointSummary:
    """Checkpoint metadata without the state payload, for listings."""

    operation_id: str
    kind: CheckpointKind
    status: CheckpointStatus
    updated_at: datetime
    sequence_number: int
    expires_at: datetime | None
    context: dict[str, Any]

    @classmethod
    def from_checkpoint(cls, checkpoint: Checkpoint) -> "CheckpointSummary":
        return cls(
            operation_id=checkpoint.operation_id,
            kind=checkpoint.kind,
            status=checkpoint.status,
            updated_at=checkpoint.updated_at,
            sequence_number=checkpoint.sequence_number,
            expires_at=checkpoint.expires_at,
            context=dict(checkpoint.context),
        )


@dataclass(frozen=True)
class TransferredCheckpoint:
    """Contents of a successfully decoded transferable checkpoint token.

    Decoding never writes to a store. Feed ``state`` into a checkpointed
    run (or CheckpointManager.save_checkpoint) to continue locally.
    """

    operation_id: str
    state: dict[str, Any]
    created_at: datetime
    expires_at: datetime
    metadata: dict[str, Any] = field(default_factory=dict)
