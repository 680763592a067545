# src/rekindle/contracts/__init__.py
"""Shared contracts for cross-boundary data types.

All dataclasses, enums and protocols that cross subsystem boundaries are
defined here.

This package is a LEAF MODULE with no outbound dependencies to core/engine.
Settings classes (RetrySettings, RekindleSettings, etc.) are NOT re-exported
here - import them from rekindle.core.config.
"""

from rekindle.contracts.batch import (
    BatchItemOutcome,
    BatchProgress,
    BatchResult,
    FailedItem,
    SkippedItem,
    SuccessfulItem,
    derive_batch_status,
)
from rekindle.contracts.checkpoint import Checkpoint, CheckpointSummary, TransferredCheckpoint
from rekindle.contracts.enums import (
    BatchStatus,
    CheckpointKind,
    CheckpointStatus,
    OperationStatus,
    RecoveryActionType,
    RetryOutcome,
    SkipReason,
)
from rekindle.contracts.errors import (
    BatchInputError,
    CheckpointCorruptionError,
    IncompatibleCheckpointError,
    RecoverableError,
    RekindleError,
    TokenError,
    TokenExpiredError,
    TokenInvalidError,
    describe_error,
    error_category,
    error_code,
    is_recoverable,
)
from rekindle.contracts.events import BatchProgressed, CheckpointSaved, RetryAttempted, TelemetryEvent

__all__ = [
    # batch
    "BatchItemOutcome",
    "BatchProgress",
    "BatchResult",
    "FailedItem",
    "SkippedItem",
    "SuccessfulItem",
    "derive_batch_status",
    # checkpoint
    "Checkpoint",
    "CheckpointSummary",
    "TransferredCheckpoint",
    # enums
    "BatchStatus",
    "CheckpointKind",
    "CheckpointStatus",
    "OperationStatus",
    "RecoveryActionType",
    "RetryOutcome",
    "SkipReason",
    # errors
    "BatchInputError",
    "CheckpointCorruptionError",
    "IncompatibleCheckpointError",
    "RecoverableError",
    "RekindleError",
    "TokenError",
    "TokenExpiredError",
    "TokenInvalidError",
    "describe_error",
    "error_category",
    "error_code",
    "is_recoverable",
    # events
    "BatchProgressed",
    "CheckpointSaved",
    "RetryAttempted",
    "TelemetryEvent",
]
