# src/rekindle/core/clock.py
"""Clock abstraction for testable timing logic.

Checkpoint expiry and token expiry compare against wall-clock UTC time;
elapsed-time measurements use a monotonic clock. Both go through a Clock
so tests can move time without sleeping.

Production code uses SystemClock (the default).
Tests inject MockClock to control time advancement.
"""

from __future__ import annotations

import time
from datetime import UTC, datetime, timedelta
from typing import Protocol


class Clock(Protocol):
    """Abstract clock.

    Implementations:
    - SystemClock: Uses time.monotonic() and datetime.now(UTC) (production)
    - MockClock: Returns controllable times (testing)
    """

    def monotonic(self) -> float:
        """Return monotonic time in seconds. Never goes backwards."""
        ...

    def now(self) -> datetime:
        """Return the current wall-clock time as a timezone-aware UTC datetime."""
        ...


class SystemClock:
    """Production clock backed by the system clocks."""

    def monotonic(self) -> float:
        return time.monotonic()

    def now(self) -> datetime:
        return datetime.now(UTC)


class MockClock:
    """Controllable clock for deterministic testing.

    Example:
        clock = MockClock(start=datetime(2026, 1, 1, tzinfo=UTC))
        codec = TransferCodec(key, clock=clock)
        token = codec.create("op-1", {"step": 2}, expiry_time_ms=1000)

        clock.advance(2.0)
        codec.resume(token)  # raises TokenExpiredError
    """

    def __init__(self, start: datetime | None = None) -> None:
        """Initialize mock clock.

        Args:
            start: Initial wall-clock time (default 2026-01-01T00:00:00Z).
        """
        self._wall = start or datetime(2026, 1, 1, tzinfo=UTC)
        self._monotonic = 0.0

    def monotonic(self) -> float:
        return self._monotonic

    def now(self) -> datetime:
        return self._wall

    def advance(self, seconds: float) -> None:
        """Advance both clocks by the given number of seconds.

        Raises:
            ValueError: If seconds is negative.
        """
        if seconds < 0:
            raise ValueError(f"Cannot advance time by negative amount: {seconds}")
        self._monotonic += seconds
        self._wall += timedelta(seconds=seconds)


# Default clock for production use
DEFAULT_CLOCK: Clock = SystemClock()
