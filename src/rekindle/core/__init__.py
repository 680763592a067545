# src/rekindle/core/__init__.py
"""Core infrastructure: Canonical hashing, Configuration, Clock, Logging, Security, Checkpoint."""

from rekindle.core.canonical import (
    CANONICAL_VERSION,
    canonical_json,
    stable_hash,
)
from rekindle.core.clock import DEFAULT_CLOCK, Clock, MockClock, SystemClock
from rekindle.core.config import (
    BatchSettings,
    CheckpointSettings,
    LoggingSettings,
    RekindleSettings,
    RetrySettings,
    StoreSettings,
    TransferSettings,
    load_settings,
    resolve_config,
)
from rekindle.core.logging import configure_from_settings, configure_logging, get_logger
from rekindle.core.checkpoint import (
    CheckpointManager,
    CheckpointStore,
    InMemoryCheckpointStore,
    SQLCheckpointStore,
    TransferCodec,
)

__all__ = [
    "CANONICAL_VERSION",
    "DEFAULT_CLOCK",
    "BatchSettings",
    "CheckpointManager",
    "CheckpointSettings",
    "CheckpointStore",
    "Clock",
    "InMemoryCheckpointStore",
    "LoggingSettings",
    "MockClock",
    "RekindleSettings",
    "RetrySettings",
    "SQLCheckpointStore",
    "StoreSettings",
    "SystemClock",
    "TransferCodec",
    "TransferSettings",
    "canonical_json",
    "configure_from_settings",
    "configure_logging",
    "get_logger",
    "load_settings",
    "resolve_config",
    "stable_hash",
]
