# src/rekindle/telemetry/emitter.py
"""TelemetryEmitter isolates engines from sink failures.

Engines hold a TelemetryEmitter rather than a raw sink so that:
- a missing sink is a no-op
- a failing sink is logged, never propagated
- repeated sink failures are logged in aggregate, not per event
"""

import structlog

from rekindle.contracts.events import TelemetryEvent
from rekindle.telemetry.protocols import TelemetrySink

logger = structlog.get_logger(__name__)


class TelemetryEmitter:
    """Failure-isolating wrapper around an optional telemetry sink.

    Example:
        >>> events: list[TelemetryEvent] = []
        >>> emitter = TelemetryEmitter(events.append)
        >>> emitter.emit(event)
    """

    _LOG_INTERVAL = 100  # Log every 100 sink failures after the first

    def __init__(self, sink: TelemetrySink | None = None) -> None:
        self._sink = sink
        self._events_emitted = 0
        self._sink_failures = 0

    @property
    def enabled(self) -> bool:
        return self._sink is not None

    @property
    def health_metrics(self) -> dict[str, int]:
        return {
            "events_emitted": self._events_emitted,
            "sink_failures": self._sink_failures,
        }

    def emit(self, event: TelemetryEvent) -> None:
        """Hand an event to the sink. Never raises."""
        if self._sink is None:
            return
        try:
            self._sink(event)
        except Exception as e:
            self._sink_failures += 1
            if self._sink_failures == 1 or self._sink_failures % self._LOG_INTERVAL == 0:
                logger.warning(
                    "Telemetry sink failed",
                    telemetry_event=event.event,
                    operation_id=event.operation_id,
                    error=str(e),
                    error_type=type(e).__name__,
                    sink_failures=self._sink_failures,
                )
            return
        self._events_emitted += 1


def as_emitter(telemetry: "TelemetrySink | TelemetryEmitter | None") -> TelemetryEmitter:
    """Normalize an engine's ``telemetry`` argument to an emitter."""
    if isinstance(telemetry, TelemetryEmitter):
        return telemetry
    return TelemetryEmitter(telemetry)
