# src/rekindle/contracts/enums.py
"""All status codes and kinds used across subsystem boundaries."""

from enum import StrEnum


class CheckpointStatus(StrEnum):
    """Lifecycle status recorded with a stored checkpoint.

    There is no INTERRUPTED value: an interrupted operation is one whose
    stored checkpoint is still RUNNING when the next run starts.
    """

    RUNNING = "running"
    COMPLETED = "completed"


class CheckpointKind(StrEnum):
    """What produced a checkpoint. Used to filter listings."""

    GENERIC = "generic"
    BATCH = "batch"
    TRANSFERABLE = "transferable"
    TRANSFERRED = "transferred"


class BatchStatus(StrEnum):
    """Final status of a batch run."""

    COMPLETED = "completed"
    COMPLETED_WITH_FAILURES = "completed_with_failures"
    FAILED = "failed"


class SkipReason(StrEnum):
    """Why a batch item was not processed."""

    ALREADY_PROCESSED = "already_processed"
    NOT_DISPATCHED = "not_dispatched"


class RetryOutcome(StrEnum):
    """Outcome of a single retry-engine attempt, as reported in telemetry."""

    SUCCEEDED = "succeeded"
    RETRYING = "retrying"
    GAVE_UP = "gave_up"


class RecoveryActionType(StrEnum):
    """Action chosen by a recovery strategy after an operation fails."""

    RETRY = "retry"
    FAIL = "fail"
    USER_ACTION = "user_action"
    SWITCH_TO_SERVER = "switch_to_server"


class OperationStatus(StrEnum):
    """Status of an operation tracked by the RecoveryManager."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
