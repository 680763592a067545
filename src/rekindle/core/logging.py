# src/rekindle/core/logging.py
"""Structured logging configuration for rekindle.

Library modules only call structlog.get_logger(__name__). Output is opt-in:
an application (or the rekindle CLI) calls configure_logging() once at
startup, and stdlib and structlog records then share one processor chain
rendered by a single ProcessorFormatter handler.

Records go to stderr so that command output on stdout (JSON listings,
decoded tokens) stays machine-readable.

Transfer tokens are bearer credentials and signing keys are secrets; both
are masked by _redact_secrets before any renderer sees the event.
"""

import logging
import sys
from typing import IO, TYPE_CHECKING, Any

import structlog
from structlog.stdlib import ProcessorFormatter

if TYPE_CHECKING:
    from rekindle.core.config import LoggingSettings

# Event keys whose values never reach a log sink.
REDACTED_KEYS: frozenset[str] = frozenset({"token", "signing_key", "key", "secret"})
REDACTED = "[redacted]"

# Dependencies that chatter at DEBUG (statement echo, pool checkouts, selector events).
_QUIET_LOGGERS: tuple[str, ...] = (
    "sqlalchemy",
    "sqlalchemy.engine",
    "sqlalchemy.pool",
    "asyncio",
)


def _redact_secrets(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    for name in REDACTED_KEYS.intersection(event_dict):
        event_dict[name] = REDACTED
    return event_dict


def _strip_formatter_bookkeeping(
    logger: logging.Logger | None,
    method_name: str,
    event_dict: dict[str, Any],
) -> dict[str, Any]:
    """Drop the _record/_from_structlog keys ProcessorFormatter always injects."""
    del event_dict["_record"]
    del event_dict["_from_structlog"]
    return event_dict


def _pre_chain() -> list[Any]:
    return [
        structlog.contextvars.merge_contextvars,
        structlog.processors.add_log_level,
        structlog.processors.TimeStamper(fmt="iso"),
        structlog.stdlib.PositionalArgumentsFormatter(),
        structlog.processors.StackInfoRenderer(),
        _redact_secrets,
    ]


def _render_chain(json_output: bool) -> list[Any]:
    if json_output:
        return [
            _strip_formatter_bookkeeping,
            structlog.processors.format_exc_info,
            structlog.processors.JSONRenderer(),
        ]
    return [
        _strip_formatter_bookkeeping,
        structlog.dev.ConsoleRenderer(colors=False),
    ]


def configure_logging(
    *,
    json_output: bool = False,
    level: str = "INFO",
    stream: IO[str] | None = None,
) -> None:
    """Route structlog and stdlib logging through one rendered handler.

    Replaces any handlers already on the root logger, so calling this twice
    reconfigures rather than duplicating output.

    Args:
        json_output: Render one JSON object per line instead of console text
        level: Root log level name (DEBUG, INFO, WARNING, ERROR)
        stream: Destination; defaults to sys.stderr at call time
    """
    log_level = logging.getLevelName(level.upper())
    if not isinstance(log_level, int):
        raise ValueError(f"Unknown log level: {level!r}")

    pre_chain = _pre_chain()
    structlog.configure(
        processors=[*pre_chain, ProcessorFormatter.wrap_for_formatter],
        wrapper_class=structlog.stdlib.BoundLogger,
        context_class=dict,
        logger_factory=structlog.stdlib.LoggerFactory(),
        # Tests reconfigure between cases; cached loggers would keep the old chain
        cache_logger_on_first_use=False,
    )

    handler = logging.StreamHandler(stream if stream is not None else sys.stderr)
    handler.setFormatter(ProcessorFormatter(processors=_render_chain(json_output), foreign_pre_chain=pre_chain))

    root = logging.getLogger()
    root.handlers = [handler]
    root.setLevel(log_level)

    # Never looser than the root level.
    quiet_level = max(log_level, logging.WARNING)
    for name in _QUIET_LOGGERS:
        logging.getLogger(name).setLevel(quiet_level)


def configure_from_settings(settings: "LoggingSettings", *, verbose: bool = False) -> None:
    """Apply a LoggingSettings section; verbose forces DEBUG."""
    configure_logging(json_output=settings.json_output, level="DEBUG" if verbose else settings.level)


def get_logger(name: str) -> structlog.stdlib.BoundLogger:
    """Get a bound logger for a module (name is typically __name__)."""
    logger: structlog.stdlib.BoundLogger = structlog.get_logger(name)
    return logger
