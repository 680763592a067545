# src/rekindle/__init__.py
"""
Rekindle: recoverable execution for fallible asynchronous operations.

Retry with exponential backoff, checkpointed resumable operations,
transferable checkpoint tokens and partial-failure batch processing.
"""

__version__ = "0.3.0"

from rekindle.api import (
    create_transferable_checkpoint,
    get_checkpoint,
    process_batch,
    remove_checkpoint,
    resume_from_transferable_checkpoint,
    with_checkpointing,
    with_retry,
)

__all__ = [
    "__version__",
    "create_transferable_checkpoint",
    "get_checkpoint",
    "process_batch",
    "remove_checkpoint",
    "resume_from_transferable_checkpoint",
    "with_checkpointing",
    "with_retry",
]
