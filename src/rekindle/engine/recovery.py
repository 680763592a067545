# src/rekindle/engine/recovery.py
"""RecoveryManager: retry + checkpointing + failure classification in one call.

execute() runs an operation under checkpointing (optional) with the retry
engine inside it, and keeps an in-memory record of every operation it has
run. When the operation finally fails, a category-specific strategy decides
what the caller should do next (retry later, fail, ask the user, hand off
to a server); that RecoveryAction is attached to the original error as
``recovery_action`` before it is re-raised.

Default strategies by error category:
- memory: retry after 1 s, or switch_to_server when context["server_fallback"]
- network: retry with an exponential delay
- input: fail (invalid_input)
- security: fail (security_violation)

Errors without a registered category: non-recoverable -> fail,
user-fixable -> user_action, anything else -> retry after 1 s.
"""

import contextlib
import uuid
from collections.abc import Awaitable, Callable, Mapping
from dataclasses import dataclass, field, replace
from datetime import datetime
from typing import Any

import structlog

from rekindle.contracts import (
    OperationStatus,
    RecoveryActionType,
    error_category,
    is_recoverable,
)
from rekindle.core.checkpoint import CheckpointManager, CheckpointStore
from rekindle.core.checkpoint.manager import StateUpdater
from rekindle.core.clock import DEFAULT_CLOCK, Clock
from rekindle.core.config import RekindleSettings
from rekindle.engine.retry import RetryManager, RetryPolicy
from rekindle.telemetry import TelemetryEmitter, TelemetrySink, as_emitter

logger = structlog.get_logger(__name__)

DEFAULT_RETRY_DELAY_MS = 1000
_NETWORK_BASE_DELAY_MS = 1000
_NETWORK_MAX_DELAY_MS = 30000

RecoverableOperation = Callable[[dict[str, Any], StateUpdater, int], Awaitable[Any]]


@dataclass(frozen=True)
class RecoveryAction:
    """What to do about an operation that finally failed.

    Attributes:
        action: retry, fail, user_action or switch_to_server
        delay_ms: Suggested wait before retrying (retry only)
        reason: Machine-readable reason (fail / switch_to_server)
        message: Human-readable guidance (user_action)
        metadata: Strategy-specific extras
    """

    action: RecoveryActionType
    delay_ms: float | None = None
    reason: str | None = None
    message: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def retry(cls, delay_ms: float = DEFAULT_RETRY_DELAY_MS) -> "RecoveryAction":
        return cls(action=RecoveryActionType.RETRY, delay_ms=delay_ms)

    @classmethod
    def fail(cls, reason: str, message: str | None = None) -> "RecoveryAction":
        return cls(action=RecoveryActionType.FAIL, reason=reason, message=message)


RecoveryStrategy = Callable[[BaseException, Mapping[str, Any]], RecoveryAction]


@dataclass(frozen=True)
class OperationRecord:
    """Status of one operation run through RecoveryManager.execute()."""

    operation_id: str
    status: OperationStatus
    started_at: datetime
    ended_at: datetime | None = None
    attempts: int = 0
    error: str | None = None
    recovery_action: RecoveryAction | None = None
    checkpointing: bool = True


def _memory_strategy(error: BaseException, context: Mapping[str, Any]) -> RecoveryAction:
    if context.get("server_fallback"):
        return RecoveryAction(
            action=RecoveryActionType.SWITCH_TO_SERVER,
            reason="memory_pressure",
            metadata={"reason": "memory_pressure"},
        )
    return RecoveryAction.retry(DEFAULT_RETRY_DELAY_MS)


def _network_strategy(error: BaseException, context: Mapping[str, Any]) -> RecoveryAction:
    attempt = int(getattr(error, "retry_count", 0) or 0)
    delay_ms = min(_NETWORK_BASE_DELAY_MS * 2**attempt, _NETWORK_MAX_DELAY_MS)
    return RecoveryAction.retry(delay_ms)


def _input_strategy(error: BaseException, context: Mapping[str, Any]) -> RecoveryAction:
    return RecoveryAction.fail("invalid_input", message=str(error))


def _security_strategy(error: BaseException, context: Mapping[str, Any]) -> RecoveryAction:
    logger.critical(
        "Security-related failure, not recovering",
        operation_id=context.get("operation_id"),
        error=str(error),
        error_type=type(error).__name__,
    )
    return RecoveryAction.fail("security_violation")


class RecoveryManager:
    """Runs operations with retry and checkpointing, and classifies failures.

    Example:
        recovery = RecoveryManager(InMemoryCheckpointStore())

        async def prove(state, update_state, attempt):
            ...

        try:
            proof = await recovery.execute("proof-42", prove)
        except Exception as e:
            action = e.recovery_action  # RecoveryAction
    """

    def __init__(
        self,
        store: CheckpointStore,
        *,
        settings: RekindleSettings | None = None,
        telemetry: TelemetrySink | TelemetryEmitter | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._settings = settings or RekindleSettings()
        self._telemetry = as_emitter(telemetry)
        self._clock = clock or DEFAULT_CLOCK
        self._checkpoints = CheckpointManager(
            store,
            settings=self._settings.checkpoint,
            telemetry=self._telemetry,
            clock=self._clock,
        )
        self._operations: dict[str, OperationRecord] = {}
        self._strategies: dict[str, RecoveryStrategy] = {
            "memory": _memory_strategy,
            "network": _network_strategy,
            "input": _input_strategy,
            "security": _security_strategy,
        }

    @property
    def checkpoints(self) -> CheckpointManager:
        return self._checkpoints

    def register_strategy(self, category: str, strategy: RecoveryStrategy) -> None:
        """Register (or replace) the strategy for an error category."""
        if not category:
            raise ValueError("category must be a non-empty string")
        self._strategies[category] = strategy

    def determine_strategy(self, error: BaseException, context: Mapping[str, Any] | None = None) -> RecoveryAction:
        """Pick the recovery action for a failure."""
        context = context or {}
        category = error_category(error)
        if category is not None and category in self._strategies:
            return self._strategies[category](error, context)
        if not is_recoverable(error):
            return RecoveryAction.fail("unrecoverable_error", message=str(error))
        if getattr(error, "user_fixable", False):
            return RecoveryAction(
                action=RecoveryActionType.USER_ACTION,
                message=getattr(error, "recommended_action", None) or str(error),
            )
        return RecoveryAction.retry(DEFAULT_RETRY_DELAY_MS)

    async def execute(
        self,
        operation_id: str | None,
        operation_fn: RecoverableOperation,
        *,
        max_retries: int | None = None,
        checkpointing: bool = True,
        resume: bool = True,
        remove_on_completion: bool = False,
        context: Mapping[str, Any] | None = None,
    ) -> Any:
        """Run operation_fn with retry (and checkpointing) and track its status.

        Args:
            operation_id: Stable identifier; generated when None or empty
            operation_fn: ``async fn(state, update_state, attempt)``; attempt is 1-based
            max_retries: Overrides settings.retry.max_retries
            checkpointing: Persist state through the checkpoint store
            resume: Start from the stored checkpoint when one exists
            remove_on_completion: Delete the checkpoint after success
            context: Passed to recovery strategies (e.g. {"server_fallback": True})

        Returns:
            Whatever operation_fn returns

        Raises:
            Exception: The original failure, with ``recovery_action`` attached
        """
        operation_id = operation_id or f"op-{uuid.uuid4().hex[:12]}"
        record = OperationRecord(
            operation_id=operation_id,
            status=OperationStatus.PENDING,
            started_at=self._clock.now(),
            checkpointing=checkpointing,
        )
        self._operations[operation_id] = record

        retry_settings = self._settings.retry
        if max_retries is not None:
            retry_settings = retry_settings.model_copy(update={"max_retries": max_retries})
        retry = RetryManager(
            RetryPolicy.from_settings(retry_settings, operation_id=operation_id),
            telemetry=self._telemetry,
            clock=self._clock,
        )
        attempts = 0

        async def with_retries(state: dict[str, Any], update_state: StateUpdater) -> Any:
            async def attempt() -> Any:
                nonlocal attempts
                attempts += 1
                return await operation_fn(state, update_state, attempts)

            return await retry.execute(attempt)

        try:
            if checkpointing:
                result = await self._checkpoints.run(with_retries, operation_id, resume=resume, context=context)
                if remove_on_completion:
                    await self._checkpoints.remove_checkpoint(operation_id)
            else:
                local_state: dict[str, Any] = {}

                async def update_local(partial: Mapping[str, Any]) -> None:
                    local_state.update(partial)

                result = await with_retries(local_state, update_local)
        except Exception as e:
            action = self.determine_strategy(e, {**(context or {}), "operation_id": operation_id})
            self._operations[operation_id] = replace(
                record,
                status=OperationStatus.FAILED,
                ended_at=self._clock.now(),
                attempts=attempts,
                error=str(e),
                recovery_action=action,
            )
            logger.warning(
                "Operation recovery strategy determined",
                operation_id=operation_id,
                action=action.action.value,
                reason=action.reason,
                delay_ms=action.delay_ms,
                recoverable=is_recoverable(e),
                error=str(e),
                error_type=type(e).__name__,
            )
            with contextlib.suppress(AttributeError):
                e.recovery_action = action  # type: ignore[attr-defined]
            raise

        self._operations[operation_id] = replace(
            record,
            status=OperationStatus.COMPLETED,
            ended_at=self._clock.now(),
            attempts=attempts,
        )
        return result

    def operation_status(self) -> list[OperationRecord]:
        """Records of all tracked operations, oldest first."""
        return sorted(self._operations.values(), key=lambda r: r.started_at)

    def get_operation(self, operation_id: str) -> OperationRecord | None:
        return self._operations.get(operation_id)

    async def cleanup_completed(self, max_age_seconds: float = 3600) -> int:
        """Forget finished operations that ended more than max_age_seconds ago.

        Operations that ran with checkpointing also lose their stored
        checkpoint. A store error propagates and leaves the remaining
        records in place for the next call.

        Returns:
            Number of records removed
        """
        now = self._clock.now()
        stale = [
            record
            for record in self._operations.values()
            if record.ended_at is not None and (now - record.ended_at).total_seconds() > max_age_seconds
        ]
        removed = 0
        for record in stale:
            # A re-run under the same id owns the checkpoint now
            if self._operations.get(record.operation_id) is not record:
                continue
            if record.checkpointing:
                await self._checkpoints.remove_checkpoint(record.operation_id)
            if self._operations.get(record.operation_id) is record:
                del self._operations[record.operation_id]
                removed += 1
        if removed:
            logger.debug("Cleaned up finished operations", count=removed)
        return removed
