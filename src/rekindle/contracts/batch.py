# src/rekindle/contracts/batch.py
"""Batch processing result contracts.

Every input item ends up in exactly one of the three partitions of a
BatchResult. Partitions are ordered by input index regardless of the
order in which items completed.
"""

from dataclasses import dataclass, field
from typing import Any, Generic, TypeVar

from rekindle.contracts.enums import BatchStatus, SkipReason

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")


@dataclass(frozen=True)
class SuccessfulItem(Generic[ItemT, ResultT]):
    """Item whose processing function returned a result."""

    index: int
    item: ItemT
    result: ResultT
    attempts: int = 1


@dataclass(frozen=True)
class FailedItem(Generic[ItemT]):
    """Item whose processing function failed on every permitted attempt.

    ``error`` is the original exception from the final attempt.
    """

    index: int
    item: ItemT
    error: BaseException
    attempts: int = 1


@dataclass(frozen=True)
class SkippedItem(Generic[ItemT]):
    """Item that was never handed to the processing function."""

    index: int
    item: ItemT
    reason: SkipReason


BatchItemOutcome = SuccessfulItem[Any, Any] | FailedItem[Any] | SkippedItem[Any]


@dataclass(frozen=True)
class BatchProgress:
    """Running totals reported after each item settles.

    Attributes:
        operation_id: Batch identifier (may be generated)
        total: Number of input items
        processed: Settled items (successful + failed + skipped)
        successful: Items that succeeded so far
        failed: Items that finally failed so far
        skipped: Items skipped so far
        in_flight: Items currently being processed
        progress: processed / total as an integer percentage
    """

    operation_id: str
    total: int
    processed: int
    successful: int
    failed: int
    skipped: int
    in_flight: int

    @property
    def progress(self) -> int:
        if self.total == 0:
            return 100
        return round(self.processed * 100 / self.total)


@dataclass
class BatchResult(Generic[ItemT, ResultT]):
    """Aggregate outcome of a batch run.

    Item failures are reported here, never raised. Callers must inspect
    ``status`` (or ``failed``) to detect partial failure.
    """

    successful: list[SuccessfulItem[ItemT, ResultT]] = field(default_factory=list)
    failed: list[FailedItem[ItemT]] = field(default_factory=list)
    skipped: list[SkippedItem[ItemT]] = field(default_factory=list)
    status: BatchStatus = BatchStatus.COMPLETED
    stopped_early: bool = False
    operation_id: str = ""

    @property
    def total(self) -> int:
        return len(self.successful) + len(self.failed) + len(self.skipped)

    @property
    def completion_percentage(self) -> int:
        """Share of items that were actually processed (not skipped)."""
        if self.total == 0:
            return 100
        return round((len(self.successful) + len(self.failed)) * 100 / self.total)

    @property
    def stats(self) -> dict[str, int]:
        return {
            "total": self.total,
            "success": len(self.successful),
            "failure": len(self.failed),
            "skipped": len(self.skipped),
        }

    def outcomes(self) -> list[BatchItemOutcome]:
        """All outcomes merged back into input order."""
        merged: list[BatchItemOutcome] = [*self.successful, *self.failed, *self.skipped]
        return sorted(merged, key=lambda outcome: outcome.index)


def derive_batch_status(*, successful: int, failed: int, total: int, stopped_early: bool) -> BatchStatus:
    """Derive the batch status from partition sizes.

    FAILED only when dispatch was stopped by a failure and nothing succeeded.
    """
    if stopped_early and successful == 0 and total > 0:
        return BatchStatus.FAILED
    if failed > 0:
        return BatchStatus.COMPLETED_WITH_FAILURES
    return BatchStatus.COMPLETED
