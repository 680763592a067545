# src/rekindle/contracts/errors.py
"""Error contracts shared across the toolkit.

The toolkit consumes an external error taxonomy but never requires a
specific error class. Any exception exposing an optional ``recoverable``
flag (and optionally ``code`` / ``category``) is honored; anything else is
treated as recoverable by default.

RekindleError is the base for errors raised by the toolkit itself.
"""

from typing import Any, Protocol, runtime_checkable


@runtime_checkable
class RecoverableError(Protocol):
    """Shape of a failure that self-reports whether it is safe to retry."""

    recoverable: bool


def is_recoverable(error: BaseException) -> bool:
    """Default retry signal for a failure.

    Reads the failure's own ``recoverable`` flag when it has one. Failures
    without the flag (foreign exceptions) are treated as recoverable.

    Args:
        error: The failure raised by the wrapped operation

    Returns:
        True if the failure may be retried
    """
    if isinstance(error, RecoverableError):
        return bool(error.recoverable)
    return True


def error_category(error: BaseException) -> str | None:
    """Return the failure's taxonomy category, if it exposes one."""
    category = getattr(error, "category", None)
    if category is None:
        return None
    return str(category)


def error_code(error: BaseException) -> str | None:
    """Return the failure's stable error code, if it exposes one."""
    code = getattr(error, "code", None)
    if code is None:
        return None
    return str(code)


def describe_error(error: BaseException) -> dict[str, Any]:
    """Structured summary of a failure for logs and telemetry."""
    summary: dict[str, Any] = {
        "error": str(error),
        "error_type": type(error).__name__,
        "recoverable": is_recoverable(error),
    }
    code = error_code(error)
    if code is not None:
        summary["code"] = code
    category = error_category(error)
    if category is not None:
        summary["category"] = category
    return summary


class RekindleError(Exception):
    """Base class for errors raised by the toolkit.

    Attributes:
        recoverable: Whether retrying could succeed
        code: Stable machine-readable code
        category: Taxonomy category (e.g. "checkpoint", "batch")
    """

    code = "rekindle_error"
    category = "system"

    def __init__(self, message: str, *, recoverable: bool = False) -> None:
        super().__init__(message)
        self.recoverable = recoverable


class TokenError(RekindleError):
    """A transferable checkpoint token could not be used."""

    code = "token_error"
    category = "checkpoint"


class TokenInvalidError(TokenError):
    """Token is malformed, tampered with, or was signed with another key."""

    code = "token_invalid"


class TokenExpiredError(TokenError):
    """Token is structurally valid but past its expiry.

    Attributes:
        operation_id: Operation the token belonged to
        expired_at: ISO timestamp at which the token stopped being valid
    """

    code = "token_expired"

    def __init__(self, operation_id: str, expired_at: str) -> None:
        self.operation_id = operation_id
        self.expired_at = expired_at
        super().__init__(f"Checkpoint token for operation '{operation_id}' expired at {expired_at}")


class CheckpointCorruptionError(RekindleError):
    """A stored checkpoint snapshot cannot be decoded or fails its integrity hash."""

    code = "checkpoint_corrupt"
    category = "checkpoint"


class IncompatibleCheckpointError(RekindleError):
    """A stored checkpoint was written with an unsupported format version."""

    code = "checkpoint_incompatible"
    category = "checkpoint"


class BatchInputError(RekindleError):
    """Structural misuse of the batch processor (e.g. empty or non-sequence input).

    Item-level failures are never raised; they are reported in BatchResult.
    """

    code = "batch_input_invalid"
    category = "input"
