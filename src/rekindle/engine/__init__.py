# src/rekindle/engine/__init__.py
"""Resilience engines built on the core checkpoint subsystem.

This module provides:
- RetryManager / with_retry: Exponential backoff retries with tenacity
- BatchProcessor / process_batch: Bounded-concurrency batches with per-item outcomes
- RecoveryManager: Retry + checkpointing + failure classification

Example:
    from rekindle.core.checkpoint import InMemoryCheckpointStore
    from rekindle.engine import BatchConfig, BatchProcessor

    processor = BatchProcessor(BatchConfig(concurrency=8), store=InMemoryCheckpointStore())
    result = await processor.process(items, handle_item)
"""

from rekindle.engine.batch import BatchConfig, BatchProcessor, process_batch
from rekindle.engine.recovery import OperationRecord, RecoveryAction, RecoveryManager
from rekindle.engine.retry import RetryManager, RetryPolicy, with_retry

__all__ = [
    "BatchConfig",
    "BatchProcessor",
    "OperationRecord",
    "RecoveryAction",
    "RecoveryManager",
    "RetryManager",
    "RetryPolicy",
    "process_batch",
    "with_retry",
]
