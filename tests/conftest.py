# tests/conftest.py
"""Shared test fixtures and helpers.

Fixtures:
- memory_store: Fresh InMemoryCheckpointStore per test
- sql_store: In-memory SQLite SQLCheckpointStore per test
- mock_clock: MockClock starting at 2026-01-01T00:00:00Z
- events: List collecting telemetry events (pass ``events.append`` as sink)

Hypothesis Configuration:
- "ci" profile: Fast tests for CI (100 examples) - default
- "nightly" profile: Thorough tests (1000 examples)
- "debug" profile: Minimal tests with verbose output (10 examples)

Set profile via environment variable:
    HYPOTHESIS_PROFILE=nightly pytest tests/property/
"""

import logging
import os
from collections.abc import Iterator

import pytest
from hypothesis import Phase, Verbosity, settings

from rekindle.contracts import TelemetryEvent
from rekindle.core.checkpoint import InMemoryCheckpointStore, SQLCheckpointStore
from rekindle.core.clock import MockClock

# =============================================================================
# Hypothesis Configuration
# =============================================================================

settings.register_profile(
    "ci",
    max_examples=100,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,  # Disable deadline for CI (timing varies)
)

settings.register_profile(
    "nightly",
    max_examples=1000,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.register_profile(
    "debug",
    max_examples=10,
    verbosity=Verbosity.verbose,
    phases=[Phase.explicit, Phase.reuse, Phase.generate, Phase.shrink],
    deadline=None,
)

settings.load_profile(os.getenv("HYPOTHESIS_PROFILE", "ci"))


# =============================================================================
# Shared fixtures
# =============================================================================


@pytest.fixture
def memory_store() -> InMemoryCheckpointStore:
    return InMemoryCheckpointStore()


@pytest.fixture
def sql_store() -> Iterator[SQLCheckpointStore]:
    store = SQLCheckpointStore.in_memory()
    yield store
    store.close()


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock()


@pytest.fixture
def events() -> list[TelemetryEvent]:
    return []



@pytest.fixture(autouse=True)
def _reset_root_logging() -> Iterator[None]:
    """Detach handlers a test installed; they may point at a closed capture stream."""
    root = logging.getLogger()
    handlers, level = root.handlers[:], root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
