# src/rekindle/telemetry/__init__.py
"""Telemetry plumbing for the resilience engines.

Exports:
- TelemetrySink: Protocol for caller-supplied event callbacks
- TelemetryEmitter: Failure-isolating wrapper used by engines
- as_emitter: Normalize a sink/emitter/None argument
"""

from rekindle.telemetry.emitter import TelemetryEmitter, as_emitter
from rekindle.telemetry.protocols import TelemetrySink

__all__ = [
    "TelemetryEmitter",
    "TelemetrySink",
    "as_emitter",
]
