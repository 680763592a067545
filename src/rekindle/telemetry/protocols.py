# src/rekindle/telemetry/protocols.py
"""Protocol definitions for telemetry sinks.

A sink is any callable that accepts a TelemetryEvent. Sinks ship events to
wherever the caller wants them (a progress bar, a metrics backend, a test
list). Sinks are optional: the engines behave identically without one.
"""

from typing import TYPE_CHECKING, Protocol, runtime_checkable

if TYPE_CHECKING:
    from rekindle.contracts.events import TelemetryEvent


@runtime_checkable
class TelemetrySink(Protocol):
    """Callable receiving telemetry events.

    Error handling:
        A sink SHOULD NOT raise. If it does, the emitter logs the failure and
        continues - telemetry must never change the outcome of an operation.
    """

    def __call__(self, event: "TelemetryEvent") -> None: ...
