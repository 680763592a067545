# src/rekindle/engine/batch.py
"""BatchProcessor: bounded-concurrency processing with per-item outcomes.

Worker tasks pull item indexes from a shared queue, so at most
``concurrency`` calls to the item function are in flight. Every item ends
in exactly one partition of the BatchResult:

- successful: the item function returned
- failed: the item function raised on every permitted attempt
- skipped: never dispatched (already processed on a resumed run, or
  dispatch stopped after a failure with continue_on_error=False)

Item failures never raise out of process(); only structural misuse
(BatchInputError) and checkpoint store errors do. On a store error the
remaining workers are cancelled before the error propagates.
"""

import asyncio
import uuid
from collections.abc import Awaitable, Callable, Sequence
from typing import Any, Self, TypeVar

import structlog
from pydantic import BaseModel, Field, model_validator

from rekindle.contracts import (
    BatchInputError,
    BatchProgress,
    BatchProgressed,
    BatchResult,
    CheckpointKind,
    CheckpointStatus,
    FailedItem,
    SkippedItem,
    SkipReason,
    SuccessfulItem,
    derive_batch_status,
)
from rekindle.core.checkpoint import CheckpointManager, CheckpointStore
from rekindle.core.clock import DEFAULT_CLOCK, Clock
from rekindle.core.config import BatchSettings, CheckpointSettings, RekindleSettings
from rekindle.engine.retry import RetryManager, RetryPolicy
from rekindle.telemetry import TelemetryEmitter, TelemetrySink, as_emitter

logger = structlog.get_logger(__name__)

ItemT = TypeVar("ItemT")
ResultT = TypeVar("ResultT")

ProcessItemFn = Callable[[Any, int], Awaitable[Any]]
BatchProgressCallback = Callable[[BatchProgress], None]


class BatchConfig(BaseModel):
    """Batch processor configuration.

    Attributes:
        concurrency: Maximum in-flight item calls (must be >= 1)
        continue_on_error: Keep dispatching after an item finally fails
        retry_failed_items: Retry each item through the retry engine first
        max_retries: Per-item retries when retry_failed_items is set
        base_delay_ms: Per-item backoff base when retry_failed_items is set
        operation_id: Batch identifier; required for resumable batches
        resume: Skip indexes recorded as processed by an earlier run
    """

    model_config = {"extra": "forbid"}

    concurrency: int = Field(4, ge=1, description="Maximum in-flight items")
    continue_on_error: bool = Field(True, description="Keep dispatching after a failure")
    retry_failed_items: bool = Field(False, description="Retry items before classifying them failed")
    max_retries: int = Field(2, ge=0, description="Per-item retries")
    base_delay_ms: int = Field(100, gt=0, description="Per-item backoff base delay")
    operation_id: str | None = Field(None, min_length=1, description="Batch identifier")
    resume: bool = Field(False, description="Skip items processed by an earlier run")

    @model_validator(mode="after")
    def _validate_resume(self) -> Self:
        if self.resume and self.operation_id is None:
            raise ValueError("resume=True requires an operation_id")
        return self

    @classmethod
    def from_settings(cls, settings: BatchSettings, **overrides: Any) -> "BatchConfig":
        """Factory from BatchSettings, with per-call overrides."""
        return cls(**{**settings.model_dump(), **overrides})


class BatchProcessor:
    """Processes a sequence of items with bounded concurrency.

    Example:
        processor = BatchProcessor(BatchConfig(concurrency=8, retry_failed_items=True))

        result = await processor.process(urls, fetch_one)
        for failed in result.failed:
            logger.warning("fetch failed", index=failed.index, error=str(failed.error))
    """

    def __init__(
        self,
        config: BatchConfig | None = None,
        *,
        telemetry: TelemetrySink | TelemetryEmitter | None = None,
        store: CheckpointStore | None = None,
        checkpoint_settings: CheckpointSettings | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize processor.

        Args:
            config: Batch configuration (defaults if omitted)
            telemetry: Optional sink for BatchProgressed and RetryAttempted events
            store: Checkpoint store for resumable batches (needs config.operation_id)
            checkpoint_settings: Namespace/expiry for batch checkpoints
            clock: Time source for event timestamps
        """
        self._config = config or BatchConfig()
        self._telemetry = as_emitter(telemetry)
        self._clock = clock or DEFAULT_CLOCK
        self._checkpoints: CheckpointManager | None = None
        if store is not None and self._config.operation_id is not None:
            self._checkpoints = CheckpointManager(
                store,
                settings=checkpoint_settings,
                telemetry=self._telemetry,
                clock=self._clock,
            )

        # Concurrency stats (reset per process() call)
        self._in_flight = 0
        self._max_concurrent = 0

    @classmethod
    def from_settings(
        cls,
        settings: RekindleSettings,
        *,
        store: CheckpointStore | None = None,
        telemetry: TelemetrySink | TelemetryEmitter | None = None,
        clock: Clock | None = None,
        **overrides: Any,
    ) -> Self:
        """Processor configured from the batch and checkpoint settings sections.

        Keyword overrides (operation_id, resume, concurrency, ...) apply on top
        of settings.batch.
        """
        return cls(
            BatchConfig.from_settings(settings.batch, **overrides),
            telemetry=telemetry,
            store=store,
            checkpoint_settings=settings.checkpoint,
            clock=clock,
        )

    @property
    def config(self) -> BatchConfig:
        return self._config

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def get_stats(self) -> dict[str, int]:
        """Concurrency statistics for the most recent process() call."""
        return {
            "concurrency": self._config.concurrency,
            "in_flight": self._in_flight,
            "max_concurrent_reached": self._max_concurrent,
        }

    async def process(
        self,
        items: Sequence[ItemT],
        process_item_fn: Callable[[ItemT, int], Awaitable[ResultT]],
        *,
        on_progress: BatchProgressCallback | None = None,
    ) -> BatchResult[ItemT, ResultT]:
        """Process every item and partition the outcomes.

        Args:
            items: List or tuple of input items
            process_item_fn: ``async fn(item, index)``
            on_progress: Called with a BatchProgress after every settled item

        Returns:
            BatchResult with partitions in input order

        Raises:
            BatchInputError: If items is not a list/tuple or is empty
        """
        if not isinstance(items, list | tuple):
            raise BatchInputError(f"Batch items must be a list or tuple, got {type(items).__name__}")
        if not items:
            raise BatchInputError("Batch items must not be empty")

        config = self._config
        operation_id = config.operation_id or f"batch-{uuid.uuid4().hex[:12]}"
        run = _BatchRun(operation_id=operation_id, total=len(items))
        self._in_flight = 0
        self._max_concurrent = 0

        already_processed = await self._load_processed_indexes(operation_id)
        run.processed_indexes.update(i for i in already_processed if 0 <= i < len(items))
        for index in sorted(run.processed_indexes):
            run.skipped.append(SkippedItem(index=index, item=items[index], reason=SkipReason.ALREADY_PROCESSED))
        if run.skipped:
            logger.info(
                "Resuming batch",
                operation_id=operation_id,
                total=len(items),
                already_processed=len(run.skipped),
            )

        queue: asyncio.Queue[int] = asyncio.Queue()
        for index in range(len(items)):
            if index not in run.processed_indexes:
                queue.put_nowait(index)

        async def worker() -> None:
            while not run.stop_dispatch:
                try:
                    index = queue.get_nowait()
                except asyncio.QueueEmpty:
                    return
                self._in_flight += 1
                self._max_concurrent = max(self._max_concurrent, self._in_flight)
                try:
                    outcome = await self._run_item(operation_id, index, items[index], process_item_fn)
                finally:
                    self._in_flight -= 1

                if isinstance(outcome, SuccessfulItem):
                    run.successful.append(outcome)
                    run.processed_indexes.add(index)
                    await self._save_processed(run, CheckpointStatus.RUNNING)
                else:
                    run.failed.append(outcome)
                    if not config.continue_on_error and not run.stop_dispatch:
                        run.stop_dispatch = True
                        logger.warning(
                            "Batch dispatch stopped after failure",
                            operation_id=operation_id,
                            index=index,
                            remaining=queue.qsize(),
                        )
                self._report_progress(run, on_progress)

        worker_count = min(config.concurrency, queue.qsize())
        workers = [asyncio.create_task(worker()) for _ in range(worker_count)]
        try:
            await asyncio.gather(*workers)
        finally:
            # A store failure in one worker must not leave siblings running
            for task in workers:
                task.cancel()
            await asyncio.gather(*workers, return_exceptions=True)

        while not queue.empty():
            index = queue.get_nowait()
            run.skipped.append(SkippedItem(index=index, item=items[index], reason=SkipReason.NOT_DISPATCHED))

        result: BatchResult[ItemT, ResultT] = BatchResult(
            successful=sorted(run.successful, key=lambda o: o.index),
            failed=sorted(run.failed, key=lambda o: o.index),
            skipped=sorted(run.skipped, key=lambda o: o.index),
            stopped_early=run.stop_dispatch,
            operation_id=operation_id,
        )
        result.status = derive_batch_status(
            successful=len(result.successful),
            failed=len(result.failed),
            total=len(items),
            stopped_early=result.stopped_early,
        )
        if not result.stopped_early:
            await self._save_processed(run, CheckpointStatus.COMPLETED)

        logger.info(
            "Batch finished",
            operation_id=operation_id,
            status=result.status.value,
            max_concurrent_reached=self._max_concurrent,
            **result.stats,
        )
        return result

    async def _run_item(
        self,
        operation_id: str,
        index: int,
        item: Any,
        process_item_fn: ProcessItemFn,
    ) -> SuccessfulItem[Any, Any] | FailedItem[Any]:
        attempts = 0

        async def attempt() -> Any:
            nonlocal attempts
            attempts += 1
            return await process_item_fn(item, index)

        try:
            if self._config.retry_failed_items:
                policy = RetryPolicy(
                    max_retries=self._config.max_retries,
                    base_delay_ms=self._config.base_delay_ms,
                    operation_id=f"{operation_id}[{index}]",
                )
                result = await RetryManager(policy, telemetry=self._telemetry, clock=self._clock).execute(attempt)
            else:
                result = await attempt()
        except Exception as e:
            logger.debug(
                "Batch item failed",
                operation_id=operation_id,
                index=index,
                attempts=attempts,
                error=str(e),
                error_type=type(e).__name__,
            )
            return FailedItem(index=index, item=item, error=e, attempts=attempts)
        return SuccessfulItem(index=index, item=item, result=result, attempts=attempts)

    async def _load_processed_indexes(self, operation_id: str) -> set[int]:
        if self._checkpoints is None or not self._config.resume:
            return set()
        state = await self._checkpoints.get_checkpoint(operation_id)
        if state is None:
            return set()
        return {int(i) for i in state.get("processed_indexes", [])}

    async def _save_processed(self, run: "_BatchRun", status: CheckpointStatus) -> None:
        if self._checkpoints is None:
            return
        await self._checkpoints.save_checkpoint(
            run.operation_id,
            {"processed_indexes": sorted(run.processed_indexes), "total": run.total},
            kind=CheckpointKind.BATCH,
            status=status,
        )

    def _report_progress(self, run: "_BatchRun", on_progress: BatchProgressCallback | None) -> None:
        progress = BatchProgress(
            operation_id=run.operation_id,
            total=run.total,
            processed=len(run.successful) + len(run.failed) + len(run.skipped),
            successful=len(run.successful),
            failed=len(run.failed),
            skipped=len(run.skipped),
            in_flight=self._in_flight,
        )
        self._telemetry.emit(
            BatchProgressed(
                timestamp=self._clock.now(),
                operation_id=progress.operation_id,
                total=progress.total,
                processed=progress.processed,
                successful=progress.successful,
                failed=progress.failed,
                skipped=progress.skipped,
                in_flight=progress.in_flight,
            )
        )
        if on_progress is None:
            return
        try:
            on_progress(progress)
        except Exception as e:
            # A broken progress callback must not abandon in-flight items
            logger.warning(
                "Batch progress callback failed",
                operation_id=run.operation_id,
                error=str(e),
                error_type=type(e).__name__,
            )


class _BatchRun:
    """Mutable bookkeeping for one process() call."""

    def __init__(self, *, operation_id: str, total: int) -> None:
        self.operation_id = operation_id
        self.total = total
        self.successful: list[SuccessfulItem[Any, Any]] = []
        self.failed: list[FailedItem[Any]] = []
        self.skipped: list[SkippedItem[Any]] = []
        self.processed_indexes: set[int] = set()
        self.stop_dispatch = False


async def process_batch(
    items: Sequence[ItemT],
    process_item_fn: Callable[[ItemT, int], Awaitable[ResultT]],
    *,
    concurrency: int = 4,
    continue_on_error: bool = True,
    retry_failed_items: bool = False,
    max_retries: int = 2,
    base_delay_ms: int = 100,
    on_progress: BatchProgressCallback | None = None,
    operation_id: str | None = None,
    store: CheckpointStore | None = None,
    resume: bool = False,
    telemetry: TelemetrySink | TelemetryEmitter | None = None,
) -> BatchResult[ItemT, ResultT]:
    """One-shot helper: build a BatchProcessor and process items.

    Raises:
        BatchInputError: If items is not a non-empty list or tuple
        pydantic.ValidationError: If the configuration values are invalid
    """
    config = BatchConfig(
        concurrency=concurrency,
        continue_on_error=continue_on_error,
        retry_failed_items=retry_failed_items,
        max_retries=max_retries,
        base_delay_ms=base_delay_ms,
        operation_id=operation_id,
        resume=resume,
    )
    processor = BatchProcessor(config, telemetry=telemetry, store=store)
    return await processor.process(items, process_item_fn, on_progress=on_progress)
