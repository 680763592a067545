# src/rekindle/core/checkpoint/manager.py
"""CheckpointManager for persisting and resuming long-running operations.

An operation function receives its (possibly resumed) state and an
``update_state`` callback. Every update is merged into the live state and
persisted before the callback resolves; a background timer additionally
flushes in-place mutations every ``checkpoint_interval_ms``.

Recovery boundary: only persisted snapshots survive a crash. Mutations made
directly on the state dict since the last update_state() or timer flush are
lost when the process dies, and nothing is flushed when the operation
function raises.
"""

import asyncio
import copy
import json
from binascii import Error as BinasciiError
from collections.abc import Awaitable, Callable, Mapping
from datetime import timedelta
from typing import Any

import structlog

from rekindle.contracts import (
    Checkpoint,
    CheckpointCorruptionError,
    CheckpointKind,
    CheckpointSaved,
    CheckpointStatus,
    CheckpointSummary,
    IncompatibleCheckpointError,
)
from rekindle.core.canonical import stable_hash
from rekindle.core.checkpoint.serialization import checkpoint_dumps, checkpoint_loads
from rekindle.core.checkpoint.store import CheckpointStore
from rekindle.core.clock import DEFAULT_CLOCK, Clock
from rekindle.core.config import CheckpointSettings
from rekindle.telemetry import TelemetryEmitter, TelemetrySink, as_emitter

logger = structlog.get_logger(__name__)

StateUpdater = Callable[[Mapping[str, Any]], Awaitable[None]]
CheckpointedOperation = Callable[[dict[str, Any], StateUpdater], Awaitable[Any]]
ProgressCallback = Callable[[dict[str, Any]], None]

_REQUIRED_FIELDS = ("operation_id", "state", "updated_at", "sequence_number", "format_version")


def encode_checkpoint(checkpoint: Checkpoint) -> str:
    """Serialize a Checkpoint to the string form held by a store."""
    return checkpoint_dumps(
        {
            "format_version": checkpoint.format_version,
            "operation_id": checkpoint.operation_id,
            "state": checkpoint.state,
            "state_hash": checkpoint.state_hash,
            "updated_at": checkpoint.updated_at,
            "sequence_number": checkpoint.sequence_number,
            "status": checkpoint.status.value,
            "kind": checkpoint.kind.value,
            "context": checkpoint.context,
            "expires_at": checkpoint.expires_at,
        }
    )


def decode_checkpoint(raw: str, *, storage_key: str = "") -> Checkpoint:
    """Parse and verify a stored snapshot.

    Raises:
        CheckpointCorruptionError: Undecodable snapshot, missing fields, or
            state that no longer matches its integrity hash
        IncompatibleCheckpointError: Snapshot written with another format version
    """
    try:
        data = checkpoint_loads(raw)
    except (json.JSONDecodeError, BinasciiError, ValueError) as e:
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' is not valid JSON: {e}") from e

    if not isinstance(data, dict):
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' is not a JSON object")

    missing = [name for name in _REQUIRED_FIELDS if name not in data]
    if missing:
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' is missing fields: {', '.join(missing)}")

    if data["format_version"] != Checkpoint.CURRENT_FORMAT_VERSION:
        raise IncompatibleCheckpointError(
            f"Checkpoint '{storage_key}' has format version {data['format_version']}, "
            f"expected {Checkpoint.CURRENT_FORMAT_VERSION}"
        )

    state = data["state"]
    if not isinstance(state, dict):
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' state is not a mapping")

    expected_hash = data.get("state_hash")
    if expected_hash is not None and stable_hash(state) != expected_hash:
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' failed integrity check: state hash mismatch")

    try:
        return Checkpoint(
            operation_id=data["operation_id"],
            state=state,
            updated_at=data["updated_at"],
            sequence_number=data["sequence_number"],
            status=CheckpointStatus(data.get("status", CheckpointStatus.RUNNING)),
            kind=CheckpointKind(data.get("kind", CheckpointKind.GENERIC)),
            context=data.get("context") or {},
            expires_at=data.get("expires_at"),
            state_hash=expected_hash,
            format_version=data["format_version"],
        )
    except (TypeError, ValueError) as e:
        raise CheckpointCorruptionError(f"Checkpoint '{storage_key}' has invalid fields: {e}") from e


class CheckpointManager:
    """Runs operations under checkpointing and manages stored checkpoints.

    One manager instance should own all writes for the operation ids it
    runs: sequence numbers and write locks are tracked per instance.
    """

    def __init__(
        self,
        store: CheckpointStore,
        *,
        settings: CheckpointSettings | None = None,
        telemetry: TelemetrySink | TelemetryEmitter | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize with a checkpoint store.

        Args:
            store: Async key-value store holding serialized snapshots
            settings: Interval, expiry and namespace (defaults if omitted)
            telemetry: Optional sink for CheckpointSaved events
            clock: Time source (SystemClock if omitted)
        """
        self._store = store
        self._settings = settings or CheckpointSettings()
        self._telemetry = as_emitter(telemetry)
        self._clock = clock or DEFAULT_CLOCK
        self._locks: dict[str, asyncio.Lock] = {}
        # Last sequence number handed out / last one actually written, per operation
        self._issued: dict[str, int] = {}
        self._written: dict[str, int] = {}
        # run() and save_checkpoint() calls in flight, per operation
        self._active: dict[str, int] = {}

    @property
    def store(self) -> CheckpointStore:
        return self._store

    @property
    def settings(self) -> CheckpointSettings:
        return self._settings

    def storage_key(self, operation_id: str) -> str:
        """Store key for an operation: ``<namespace>:<operation_id>``."""
        return f"{self._settings.namespace}:{operation_id}"

    def _lock_for(self, operation_id: str) -> asyncio.Lock:
        lock = self._locks.get(operation_id)
        if lock is None:
            lock = asyncio.Lock()
            self._locks[operation_id] = lock
        return lock

    def _enter(self, operation_id: str) -> None:
        self._active[operation_id] = self._active.get(operation_id, 0) + 1

    def _leave(self, operation_id: str) -> None:
        """Drop per-operation bookkeeping once nothing is using the id.

        Sequence numbers are re-primed from the store on next use, so a
        finished operation costs no memory.
        """
        remaining = self._active.get(operation_id, 1) - 1
        if remaining > 0:
            self._active[operation_id] = remaining
            return
        self._active.pop(operation_id, None)
        lock = self._locks.get(operation_id)
        if lock is not None and lock.locked():
            return
        self._locks.pop(operation_id, None)
        self._issued.pop(operation_id, None)
        self._written.pop(operation_id, None)

    async def _load(self, operation_id: str) -> Checkpoint | None:
        """Read a checkpoint, treating (and deleting) expired ones as absent."""
        key = self.storage_key(operation_id)
        raw = await self._store.get(key)
        if raw is None:
            return None
        checkpoint = decode_checkpoint(raw, storage_key=key)
        if checkpoint.is_expired(self._clock.now()):
            await self._store.delete(key)
            logger.info(
                "Discarded expired checkpoint",
                operation_id=operation_id,
                expired_at=checkpoint.expires_at.isoformat() if checkpoint.expires_at else None,
            )
            return None
        return checkpoint

    async def _stored_sequence(self, operation_id: str) -> int:
        """Sequence number of the stored snapshot, or -1 if there is none."""
        try:
            existing = await self._load(operation_id)
        except (CheckpointCorruptionError, IncompatibleCheckpointError) as e:
            # The unreadable snapshot is about to be overwritten
            logger.warning("Overwriting unreadable checkpoint", operation_id=operation_id, error=str(e))
            return -1
        return existing.sequence_number if existing is not None else -1

    async def _prime_sequence(self, operation_id: str, existing: Checkpoint | None = None) -> None:
        """Make sure new sequence numbers continue after the stored one."""
        if operation_id in self._issued:
            return
        start = existing.sequence_number if existing is not None else await self._stored_sequence(operation_id)
        self._issued[operation_id] = start
        self._written[operation_id] = start

    def _next_sequence(self, operation_id: str) -> int:
        sequence = self._issued.get(operation_id, -1) + 1
        self._issued[operation_id] = sequence
        return sequence

    async def _write(
        self,
        operation_id: str,
        state: dict[str, Any],
        *,
        sequence_number: int,
        status: CheckpointStatus,
        kind: CheckpointKind,
        context: dict[str, Any],
        trigger: str,
    ) -> Checkpoint | None:
        """Persist a snapshot unless a newer one has already been written.

        Returns:
            The written Checkpoint, or None if the write was stale and dropped
        """
        async with self._lock_for(operation_id):
            last_written = self._written.get(operation_id)
            if last_written is None:
                # Bookkeeping for an idle operation is dropped; the store is authoritative
                last_written = await self._stored_sequence(operation_id)
                self._written[operation_id] = last_written
            if sequence_number <= last_written:
                logger.debug(
                    "Dropped stale checkpoint write",
                    operation_id=operation_id,
                    sequence_number=sequence_number,
                    last_written=last_written,
                )
                return None

            now = self._clock.now()
            expiry_ms = self._settings.expiry_time_ms
            checkpoint = Checkpoint(
                operation_id=operation_id,
                state=state,
                updated_at=now,
                sequence_number=sequence_number,
                status=status,
                kind=kind,
                context=context,
                expires_at=now + timedelta(milliseconds=expiry_ms) if expiry_ms is not None else None,
                state_hash=stable_hash(state),
            )
            await self._store.put(self.storage_key(operation_id), encode_checkpoint(checkpoint))
            self._written[operation_id] = sequence_number

        self._telemetry.emit(
            CheckpointSaved(
                timestamp=checkpoint.updated_at,
                operation_id=operation_id,
                sequence_number=sequence_number,
                trigger=trigger,
            )
        )
        return checkpoint

    async def run(
        self,
        operation_fn: CheckpointedOperation,
        operation_id: str,
        *,
        checkpoint_interval_ms: int | None = None,
        resume: bool = True,
        kind: CheckpointKind | str = CheckpointKind.GENERIC,
        context: Mapping[str, Any] | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> Any:
        """Run operation_fn with automatic checkpointing.

        Args:
            operation_fn: ``async fn(state, update_state)``; state is the
                resumed snapshot (a private copy) or ``{}``
            operation_id: Stable identifier; the same id resumes the same operation
            checkpoint_interval_ms: Timer flush interval (settings default; 0 disables)
            resume: False starts from ``{}`` even if a checkpoint exists
            kind: Recorded on every checkpoint written by this run
            context: Free-form metadata recorded on every checkpoint
            on_progress: Called with ``{operation_id, progress, status}`` after
                an update whose merged state carries a numeric ``progress``

        Returns:
            Whatever operation_fn returns

        Raises:
            ValueError: If operation_id is empty or the interval is negative
            CheckpointCorruptionError: If the stored checkpoint is unreadable
            Exception: Anything operation_fn raises, unchanged
        """
        if not operation_id:
            raise ValueError("operation_id must be a non-empty string")
        interval_ms = self._settings.checkpoint_interval_ms if checkpoint_interval_ms is None else checkpoint_interval_ms
        if interval_ms < 0:
            raise ValueError(f"checkpoint_interval_ms must be >= 0, got {interval_ms}")

        self._enter(operation_id)
        try:
            return await self._run(operation_fn, operation_id, interval_ms, resume, kind, context, on_progress)
        finally:
            self._leave(operation_id)

    async def _run(
        self,
        operation_fn: CheckpointedOperation,
        operation_id: str,
        interval_ms: int,
        resume: bool,
        kind: CheckpointKind | str,
        context: Mapping[str, Any] | None,
        on_progress: ProgressCallback | None,
    ) -> Any:
        existing = await self._load(operation_id)
        await self._prime_sequence(operation_id, existing)

        if resume and existing is not None:
            state = copy.deepcopy(existing.state)
            logger.info(
                "Resuming operation from checkpoint",
                operation_id=operation_id,
                sequence_number=existing.sequence_number,
                checkpoint_status=existing.status.value,
                checkpoint_age_seconds=(self._clock.now() - existing.updated_at).total_seconds(),
            )
        else:
            state = {}
            logger.debug("Starting operation with fresh state", operation_id=operation_id, resume=resume)

        checkpointed = _CheckpointedRun(
            self,
            operation_id,
            state,
            kind=CheckpointKind(kind),
            context=dict(context or {}),
            on_progress=on_progress,
        )
        timer = asyncio.create_task(checkpointed.flush_periodically(interval_ms)) if interval_ms > 0 else None
        try:
            result = await operation_fn(state, checkpointed.update_state)
        except BaseException as e:
            if not isinstance(e, asyncio.CancelledError):
                logger.warning(
                    "Checkpointed operation failed",
                    operation_id=operation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )
            checkpointed.close()
            raise
        finally:
            if timer is not None:
                timer.cancel()
                await asyncio.gather(timer, return_exceptions=True)

        try:
            await checkpointed.flush(status=CheckpointStatus.COMPLETED, trigger="complete", force=True)
        finally:
            checkpointed.close()
        logger.info("Checkpointed operation completed", operation_id=operation_id)
        return result

    async def get_record(self, operation_id: str) -> Checkpoint | None:
        """Full checkpoint record, or None if absent or expired."""
        return await self._load(operation_id)

    async def get_checkpoint(self, operation_id: str) -> dict[str, Any] | None:
        """Last persisted state for an operation, or None."""
        checkpoint = await self._load(operation_id)
        if checkpoint is None:
            return None
        return copy.deepcopy(checkpoint.state)

    async def save_checkpoint(
        self,
        operation_id: str,
        state: Mapping[str, Any],
        *,
        kind: CheckpointKind | str = CheckpointKind.GENERIC,
        context: Mapping[str, Any] | None = None,
        status: CheckpointStatus = CheckpointStatus.RUNNING,
    ) -> Checkpoint:
        """Write a checkpoint directly, outside of run().

        Typical use is persisting a decoded transfer token so a later run()
        on this host resumes from it.

        Raises:
            ValueError: If operation_id is empty or state is None
        """
        if not operation_id:
            raise ValueError("operation_id must be a non-empty string")
        if state is None:
            raise ValueError("state must be a mapping, got None")

        self._enter(operation_id)
        try:
            await self._prime_sequence(operation_id)
            written = await self._write(
                operation_id,
                copy.deepcopy(dict(state)),
                sequence_number=self._next_sequence(operation_id),
                status=status,
                kind=CheckpointKind(kind),
                context=dict(context or {}),
                trigger="explicit",
            )
        finally:
            self._leave(operation_id)
        if written is None:
            raise RuntimeError(f"Checkpoint write for operation '{operation_id}' was superseded by a concurrent write")
        return written

    async def remove_checkpoint(self, operation_id: str) -> bool:
        """Delete an operation's checkpoint. Returns True if one existed."""
        async with self._lock_for(operation_id):
            removed = await self._store.delete(self.storage_key(operation_id))
        self._issued.pop(operation_id, None)
        self._written.pop(operation_id, None)
        lock = self._locks.get(operation_id)
        if operation_id not in self._active and lock is not None and not lock.locked():
            del self._locks[operation_id]
        if removed:
            logger.info("Removed checkpoint", operation_id=operation_id)
        return removed

    async def list_checkpoints(self, kind: CheckpointKind | str | None = None) -> list[CheckpointSummary]:
        """Summaries of live checkpoints in this namespace, newest first.

        Unreadable snapshots are skipped with a warning; expired ones are
        deleted on the way.
        """
        wanted = CheckpointKind(kind) if kind is not None else None
        prefix = f"{self._settings.namespace}:"
        summaries: list[CheckpointSummary] = []
        for key in await self._store.keys(prefix):
            operation_id = key[len(prefix) :]
            try:
                checkpoint = await self._load(operation_id)
            except (CheckpointCorruptionError, IncompatibleCheckpointError) as e:
                logger.warning("Skipping unreadable checkpoint", storage_key=key, error=str(e))
                continue
            if checkpoint is None:
                continue
            if wanted is not None and checkpoint.kind != wanted:
                continue
            summaries.append(CheckpointSummary.from_checkpoint(checkpoint))
        summaries.sort(key=lambda s: s.updated_at, reverse=True)
        return summaries

    async def purge_expired(self, *, dry_run: bool = False) -> int:
        """Delete every expired checkpoint in this namespace.

        Args:
            dry_run: Count expired checkpoints without deleting them

        Returns:
            Number of checkpoints deleted (or that would be deleted)
        """
        now = self._clock.now()
        prefix = f"{self._settings.namespace}:"
        purged = 0
        for key in await self._store.keys(prefix):
            raw = await self._store.get(key)
            if raw is None:
                continue
            try:
                checkpoint = decode_checkpoint(raw, storage_key=key)
            except (CheckpointCorruptionError, IncompatibleCheckpointError):
                continue
            if not checkpoint.is_expired(now):
                continue
            if dry_run or await self._store.delete(key):
                purged += 1
        if purged and not dry_run:
            logger.info("Purged expired checkpoints", count=purged, namespace=self._settings.namespace)
        return purged


class _CheckpointedRun:
    """Live state and persistence hooks for one run() invocation."""

    def __init__(
        self,
        manager: CheckpointManager,
        operation_id: str,
        state: dict[str, Any],
        *,
        kind: CheckpointKind,
        context: dict[str, Any],
        on_progress: ProgressCallback | None,
    ) -> None:
        self._manager = manager
        self._operation_id = operation_id
        self._state = state
        self._kind = kind
        self._context = context
        self._on_progress = on_progress
        self._last_persisted: dict[str, Any] | None = None
        self._closed = False

    def close(self) -> None:
        self._closed = True

    async def update_state(self, partial: Mapping[str, Any]) -> None:
        """Merge partial into the live state and persist the result.

        Raises:
            TypeError: If partial is not a mapping
            RuntimeError: If called after run() has returned
        """
        if not isinstance(partial, Mapping):
            raise TypeError(f"update_state() expects a mapping, got {type(partial).__name__}")
        if self._closed:
            raise RuntimeError(f"update_state() called after operation '{self._operation_id}' finished")
        self._state.update(partial)
        await self.flush(status=CheckpointStatus.RUNNING, trigger="update", force=True)
        self._report_progress()

    async def flush(self, *, status: CheckpointStatus, trigger: str, force: bool = False) -> None:
        """Persist a snapshot of the live state.

        Without force the write is skipped when nothing changed since the
        last persisted snapshot.
        """
        if not force and self._state == self._last_persisted:
            return
        snapshot = copy.deepcopy(self._state)
        sequence = self._manager._next_sequence(self._operation_id)
        written = await self._manager._write(
            self._operation_id,
            snapshot,
            sequence_number=sequence,
            status=status,
            kind=self._kind,
            context=self._context,
            trigger=trigger,
        )
        if written is not None:
            self._last_persisted = snapshot

    async def flush_periodically(self, interval_ms: int) -> None:
        """Timer loop; runs until cancelled."""
        interval = interval_ms / 1000
        while True:
            await asyncio.sleep(interval)
            try:
                await self.flush(status=CheckpointStatus.RUNNING, trigger="timer")
            except Exception as e:
                # Keep ticking; the next explicit update surfaces persistent store failures
                logger.warning(
                    "Periodic checkpoint failed",
                    operation_id=self._operation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                )

    def _report_progress(self) -> None:
        if self._on_progress is None:
            return
        progress = self._state.get("progress")
        if isinstance(progress, bool) or not isinstance(progress, int | float):
            return
        self._on_progress(
            {
                "operation_id": self._operation_id,
                "progress": progress,
                "status": CheckpointStatus.RUNNING.value,
            }
        )


async def with_checkpointing(
    operation_fn: CheckpointedOperation,
    operation_id: str,
    *,
    store: CheckpointStore,
    checkpoint_interval_ms: int | None = None,
    resume: bool = True,
    settings: CheckpointSettings | None = None,
    telemetry: TelemetrySink | TelemetryEmitter | None = None,
    on_progress: ProgressCallback | None = None,
) -> Any:
    """One-shot helper: run operation_fn under a throwaway CheckpointManager.

    Example:
        >>> async def prove(state, update_state):
        ...     for step in range(state.get("step", 0), 10):
        ...         await do_step(step)
        ...         await update_state({"step": step + 1})
        ...     return "proof"
        >>> await with_checkpointing(prove, "proof-42", store=store)
    """
    manager = CheckpointManager(store, settings=settings, telemetry=telemetry)
    return await manager.run(
        operation_fn,
        operation_id,
        checkpoint_interval_ms=checkpoint_interval_ms,
        resume=resume,
        on_progress=on_progress,
    )

