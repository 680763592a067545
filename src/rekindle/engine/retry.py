# src/rekindle/engine/retry.py
"""RetryManager: async retry with exponential backoff, built on tenacity.

Provides configurable retry behavior for fallible async operations:
- Exponential backoff: delay before retry k is base_delay_ms * 2**(k-1),
  capped at max_delay_ms, plus optional uniform jitter
- max_retries counts retries, so at most max_retries + 1 attempts
- Retryability from the failure's own ``recoverable`` flag, or a caller
  predicate that overrides it
- One RetryAttempted telemetry event per attempt

On give-up the ORIGINAL failure propagates (annotated with a note), never a
wrapper exception, so callers can keep matching on their own error types.
"""

import asyncio
import contextlib
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from typing import TYPE_CHECKING, TypeVar

import structlog
from tenacity import (
    AsyncRetrying,
    RetryCallState,
    stop_after_attempt,
    wait_exponential,
    wait_random,
)
from tenacity.wait import wait_base

from rekindle.contracts import RetryAttempted, RetryOutcome, is_recoverable
from rekindle.core.clock import DEFAULT_CLOCK, Clock
from rekindle.telemetry import TelemetryEmitter, TelemetrySink, as_emitter

if TYPE_CHECKING:
    from rekindle.core.config import RetrySettings

logger = structlog.get_logger(__name__)

T = TypeVar("T")

ShouldRetry = Callable[[BaseException, int], bool]
SleepFn = Callable[[float], Awaitable[None]]


@dataclass(frozen=True)
class RetryPolicy:
    """How often and how patiently to retry one operation.

    Attributes:
        max_retries: Retries after the first attempt (0 = single attempt)
        base_delay_ms: Delay before the first retry
        operation_id: Label for logs and telemetry
        should_retry: Optional ``(error, attempt_index) -> bool`` overriding the
            error's own recoverable flag; attempt_index is 0-based
        max_delay_ms: Cap on any single backoff delay
        jitter_ms: Upper bound of additive uniform jitter (0 = exact schedule)
    """

    max_retries: int
    base_delay_ms: int
    operation_id: str = ""
    should_retry: ShouldRetry | None = None
    max_delay_ms: int = 30000
    jitter_ms: int = 0

    def __post_init__(self) -> None:
        if self.max_retries < 0:
            raise ValueError(f"max_retries must be >= 0, got {self.max_retries}")
        if self.base_delay_ms <= 0:
            raise ValueError(f"base_delay_ms must be > 0, got {self.base_delay_ms}")
        if self.max_delay_ms <= 0:
            raise ValueError(f"max_delay_ms must be > 0, got {self.max_delay_ms}")
        if self.jitter_ms < 0:
            raise ValueError(f"jitter_ms must be >= 0, got {self.jitter_ms}")

    @property
    def max_attempts(self) -> int:
        return self.max_retries + 1

    def backoff_delay_ms(self, retry_number: int) -> float:
        """Delay (without jitter) before the given 1-based retry."""
        if retry_number < 1:
            raise ValueError(f"retry_number must be >= 1, got {retry_number}")
        return float(min(self.base_delay_ms * 2 ** (retry_number - 1), self.max_delay_ms))

    @classmethod
    def no_retry(cls, operation_id: str = "") -> "RetryPolicy":
        """Factory for a single attempt with no retries."""
        return cls(max_retries=0, base_delay_ms=1, operation_id=operation_id)

    @classmethod
    def from_settings(
        cls,
        settings: "RetrySettings",
        *,
        operation_id: str = "",
        should_retry: ShouldRetry | None = None,
    ) -> "RetryPolicy":
        """Factory from the RetrySettings config model."""
        return cls(
            max_retries=settings.max_retries,
            base_delay_ms=settings.base_delay_ms,
            operation_id=operation_id,
            should_retry=should_retry,
            max_delay_ms=settings.max_delay_ms,
            jitter_ms=settings.jitter_ms,
        )


class RetryManager:
    """Executes async operations under a RetryPolicy.

    Example:
        manager = RetryManager(RetryPolicy(max_retries=3, base_delay_ms=200, operation_id="fetch"))

        result = await manager.execute(lambda: client.fetch(url))
    """

    def __init__(
        self,
        policy: RetryPolicy,
        *,
        telemetry: TelemetrySink | TelemetryEmitter | None = None,
        sleep: SleepFn | None = None,
        clock: Clock | None = None,
    ) -> None:
        """Initialize with a policy.

        Args:
            policy: Retry policy
            telemetry: Optional sink for RetryAttempted events
            sleep: Awaitable sleep used between attempts (asyncio.sleep)
            clock: Time source for event timestamps
        """
        self._policy = policy
        self._telemetry = as_emitter(telemetry)
        self._sleep = sleep or asyncio.sleep
        self._clock = clock or DEFAULT_CLOCK

    @property
    def policy(self) -> RetryPolicy:
        return self._policy

    def _wait_strategy(self) -> wait_base:
        policy = self._policy
        wait: wait_base = wait_exponential(
            multiplier=policy.base_delay_ms / 1000,
            exp_base=2,
            min=0,
            max=policy.max_delay_ms / 1000,
        )
        if policy.jitter_ms > 0:
            wait = wait + wait_random(0, policy.jitter_ms / 1000)
        return wait

    def _is_retryable(self, error: BaseException, attempt_index: int) -> bool:
        # Cancellation and interpreter exits are never retried
        if not isinstance(error, Exception):
            return False
        if self._policy.should_retry is not None:
            return bool(self._policy.should_retry(error, attempt_index))
        return is_recoverable(error)

    def _retry_predicate(self, retry_state: RetryCallState) -> bool:
        outcome = retry_state.outcome
        if outcome is None or not outcome.failed:
            return False
        error = outcome.exception()
        assert error is not None
        return self._is_retryable(error, retry_state.attempt_number - 1)

    def _before_sleep(self, retry_state: RetryCallState) -> None:
        outcome = retry_state.outcome
        error = outcome.exception() if outcome is not None else None
        delay_ms = retry_state.upcoming_sleep * 1000
        logger.warning(
            "Operation failed, retrying",
            operation_id=self._policy.operation_id,
            attempt=retry_state.attempt_number,
            max_attempts=self._policy.max_attempts,
            delay_ms=round(delay_ms, 3),
            error=str(error),
            error_type=type(error).__name__,
        )
        self._emit(retry_state.attempt_number, RetryOutcome.RETRYING, delay_ms=delay_ms, error=error)

    def _emit(
        self,
        attempt: int,
        outcome: RetryOutcome,
        *,
        delay_ms: float = 0.0,
        error: BaseException | None = None,
    ) -> None:
        self._telemetry.emit(
            RetryAttempted(
                timestamp=self._clock.now(),
                operation_id=self._policy.operation_id,
                attempt=attempt,
                max_attempts=self._policy.max_attempts,
                outcome=outcome,
                delay_ms=delay_ms,
                error=str(error) if error is not None else None,
                error_type=type(error).__name__ if error is not None else None,
            )
        )

    async def execute(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Execute operation with retry logic.

        Args:
            operation: Zero-argument async callable, invoked once per attempt

        Returns:
            Result of the first successful attempt

        Raises:
            Exception: The last attempt's failure, unchanged, once retries are
                exhausted or the failure is not retryable
        """
        attempt_number = 0
        retrying = AsyncRetrying(
            stop=stop_after_attempt(self._policy.max_attempts),
            wait=self._wait_strategy(),
            retry=self._retry_predicate,
            before_sleep=self._before_sleep,
            sleep=self._sleep,
            reraise=True,
        )
        try:
            async for attempt in retrying:
                with attempt:
                    attempt_number = attempt.retry_state.attempt_number
                    result = await operation()
        except Exception as e:
            logger.warning(
                "Operation failed, giving up",
                operation_id=self._policy.operation_id,
                attempts=attempt_number,
                recoverable=is_recoverable(e),
                error=str(e),
                error_type=type(e).__name__,
            )
            self._emit(attempt_number, RetryOutcome.GAVE_UP, error=e)
            e.add_note(f"Gave up after {attempt_number} attempt(s) (operation_id={self._policy.operation_id!r})")
            with contextlib.suppress(AttributeError):
                e.retry_attempts = attempt_number  # type: ignore[attr-defined]
            raise

        if attempt_number > 1:
            logger.info(
                "Operation succeeded after retry",
                operation_id=self._policy.operation_id,
                attempts=attempt_number,
            )
        self._emit(attempt_number, RetryOutcome.SUCCEEDED)
        return result


async def with_retry(
    operation: Callable[[], Awaitable[T]],
    policy: RetryPolicy,
    *,
    telemetry: TelemetrySink | TelemetryEmitter | None = None,
) -> T:
    """Run operation under policy; see RetryManager.execute()."""
    return await RetryManager(policy, telemetry=telemetry).execute(operation)
