# src/rekindle/contracts/events.py
"""Telemetry events emitted by the resilience engines.

Events are handed to an optional, caller-supplied sink. They carry
operational visibility only; nothing in the engines depends on a sink
being present.
"""

from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, ClassVar

from rekindle.contracts.enums import RetryOutcome


@dataclass(frozen=True, slots=True)
class TelemetryEvent:
    """Base class for all telemetry events.

    All events include:
    - timestamp: When the event occurred (UTC)
    - operation_id: Operation the event belongs to

    Subclasses set ``event`` to the stable event name used by sinks.
    """

    event: ClassVar[str] = "telemetry"

    timestamp: datetime
    operation_id: str

    def as_dict(self) -> dict[str, Any]:
        """Flat dict form with the event name included."""
        data = asdict(self)
        data["event"] = self.event
        return data


@dataclass(frozen=True, slots=True)
class RetryAttempted(TelemetryEvent):
    """Emitted after every attempt made by the retry engine.

    Attributes:
        attempt: 1-based attempt number that just finished
        max_attempts: Upper bound on attempts (max_retries + 1)
        outcome: What the engine does next
        delay_ms: Wait before the next attempt (0 unless retrying)
        error: String form of the failure, if the attempt failed
        error_type: Exception class name, if the attempt failed
    """

    event: ClassVar[str] = "retry_attempt"

    attempt: int
    max_attempts: int
    outcome: RetryOutcome
    delay_ms: float = 0.0
    error: str | None = None
    error_type: str | None = None


@dataclass(frozen=True, slots=True)
class CheckpointSaved(TelemetryEvent):
    """Emitted after a checkpoint write is durable.

    Attributes:
        sequence_number: Sequence of the write
        trigger: What caused the write ("update", "timer", "complete", "explicit")
    """

    event: ClassVar[str] = "checkpoint_saved"

    sequence_number: int
    trigger: str


@dataclass(frozen=True, slots=True)
class BatchProgressed(TelemetryEvent):
    """Emitted after each batch item settles, with running totals."""

    event: ClassVar[str] = "batch_progress"

    total: int
    processed: int
    successful: int
    failed: int
    skipped: int
    in_flight: int
