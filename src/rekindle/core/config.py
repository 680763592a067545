# src/rekindle/core/config.py
"""
Configuration schema and loading for rekindle.

Uses Pydantic for validation and Dynaconf for multi-source loading.
Settings are frozen (immutable) after construction.
"""

import os
import re
from pathlib import Path
from typing import Any, Literal

from pydantic import BaseModel, Field, model_validator

# 24 hours, the default lifetime of stored checkpoints and transfer tokens
DEFAULT_EXPIRY_MS = 24 * 60 * 60 * 1000


class RetrySettings(BaseModel):
    """Retry behavior configuration.

    max_retries counts retries, not attempts: max_retries=3 allows four calls.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    max_retries: int = Field(default=3, ge=0, description="Retries after the first attempt")
    base_delay_ms: int = Field(default=1000, gt=0, description="Delay before the first retry")
    max_delay_ms: int = Field(default=30000, gt=0, description="Cap on any single backoff delay")
    jitter_ms: int = Field(default=0, ge=0, description="Upper bound of additive random jitter")

    @model_validator(mode="after")
    def validate_delays(self) -> "RetrySettings":
        if self.base_delay_ms > self.max_delay_ms:
            raise ValueError(f"base_delay_ms ({self.base_delay_ms}) cannot exceed max_delay_ms ({self.max_delay_ms})")
        return self


class CheckpointSettings(BaseModel):
    """Configuration for checkpointed execution.

    Timer trade-off: a shorter interval loses less in-place progress on a
    crash but issues more store writes. Explicit update_state() calls are
    always persisted regardless of the interval.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    checkpoint_interval_ms: int = Field(default=5000, ge=0, description="Timer flush interval; 0 disables the timer")
    expiry_time_ms: int | None = Field(
        default=DEFAULT_EXPIRY_MS,
        gt=0,
        description="Checkpoint lifetime; None keeps checkpoints until removed",
    )
    namespace: str = Field(default="rekindle_checkpoints", min_length=1, description="Storage key prefix")


class BatchSettings(BaseModel):
    """Default batch processor configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    concurrency: int = Field(default=4, ge=1, description="Maximum in-flight items")
    continue_on_error: bool = True
    retry_failed_items: bool = False
    max_retries: int = Field(default=2, ge=0)
    base_delay_ms: int = Field(default=100, gt=0)


class TransferSettings(BaseModel):
    """Transferable checkpoint token configuration.

    signing_key is normally supplied as ${REKINDLE_TOKEN_KEY} in YAML or
    through the REKINDLE_TOKEN_KEY environment variable.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    expiry_time_ms: int = Field(default=DEFAULT_EXPIRY_MS, gt=0, description="Default token lifetime")
    signing_key: str | None = Field(default=None, min_length=1, description="HMAC key for signing tokens")


class StoreSettings(BaseModel):
    """Checkpoint store backend configuration."""

    model_config = {"frozen": True, "extra": "forbid"}

    backend: Literal["memory", "sql"] = "memory"
    url: str | None = Field(default=None, description="SQLAlchemy URL for the sql backend")

    @model_validator(mode="after")
    def validate_url(self) -> "StoreSettings":
        if self.backend == "sql" and not self.url:
            raise ValueError("url is required when backend='sql'")
        return self


class LoggingSettings(BaseModel):
    """Logging output configuration (applied by the CLI)."""

    model_config = {"frozen": True, "extra": "forbid"}

    level: Literal["DEBUG", "INFO", "WARNING", "ERROR"] = "INFO"
    json_output: bool = False


class RekindleSettings(BaseModel):
    """Top-level rekindle configuration.

    All sections are optional; an empty file yields the defaults.
    """

    model_config = {"frozen": True, "extra": "forbid"}

    retry: RetrySettings = Field(default_factory=RetrySettings)
    checkpoint: CheckpointSettings = Field(default_factory=CheckpointSettings)
    batch: BatchSettings = Field(default_factory=BatchSettings)
    transfer: TransferSettings = Field(default_factory=TransferSettings)
    store: StoreSettings = Field(default_factory=StoreSettings)
    logging: LoggingSettings = Field(default_factory=LoggingSettings)


# ${VAR} or ${VAR:-default}
_ENV_REFERENCE = re.compile(r"\$\{([A-Z_][A-Z0-9_]*)(?::-([^}]*))?\}")

# Keys Dynaconf reports about itself, plus REKINDLE_TOKEN_KEY which holds
# the signing key for get_signing_key() rather than a settings section
_NON_SETTINGS_KEYS = frozenset({"LOAD_DOTENV", "ENVIRONMENTS", "SETTINGS_FILES", "TOKEN_KEY"})


def _substitute_env(match: re.Match[str]) -> str:
    name, default = match.group(1), match.group(2)
    value = os.environ.get(name, default)
    # Unresolved references stay verbatim so validation reports them
    return value if value is not None else match.group(0)


def _normalize_raw(value: Any) -> Any:
    """Lowercase keys (Dynaconf uppercases them) and expand env references in strings."""
    if isinstance(value, dict):
        return {str(key).lower(): _normalize_raw(item) for key, item in value.items()}
    if isinstance(value, list):
        return [_normalize_raw(item) for item in value]
    if isinstance(value, str):
        return _ENV_REFERENCE.sub(_substitute_env, value)
    return value


def load_settings(config_path: Path) -> RekindleSettings:
    """Load a YAML settings file, letting REKINDLE_* environment variables win.

    Precedence, highest first: environment (``REKINDLE_RETRY__MAX_RETRIES=5``
    for nested keys), the file, then model defaults. String values may use
    ``${VAR}`` or ``${VAR:-default}``.

    Raises:
        FileNotFoundError: If config_path does not exist
        ValidationError: If the merged values fail validation
    """
    from dynaconf import Dynaconf

    # Dynaconf silently skips missing files
    if not config_path.exists():
        raise FileNotFoundError(f"Config file not found: {config_path}")

    loaded = Dynaconf(
        envvar_prefix="REKINDLE",
        settings_files=[str(config_path)],
        environments=False,
        load_dotenv=False,
        merge_enabled=True,
    ).as_dict()

    raw = {key: value for key, value in loaded.items() if key not in _NON_SETTINGS_KEYS}
    return RekindleSettings(**_normalize_raw(raw))


def resolve_config(settings: RekindleSettings) -> dict[str, Any]:
    """Dump settings for display, swapping the signing key for its fingerprint."""
    from rekindle.core.security import key_fingerprint

    dumped = settings.model_dump(mode="json")
    signing_key = settings.transfer.signing_key
    if signing_key is not None:
        dumped["transfer"]["signing_key"] = None
        dumped["transfer"]["signing_key_fingerprint"] = key_fingerprint(signing_key.encode("utf-8"))
    return dumped
