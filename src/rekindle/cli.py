# src/rekindle/cli.py
"""Rekindle Command Line Interface.

Operator tooling for stored checkpoints and transfer tokens. The library
itself never prints; everything user-facing goes through this module.
"""

from __future__ import annotations

import asyncio
import base64
import json
from collections.abc import Coroutine
from datetime import datetime
from pathlib import Path
from typing import TYPE_CHECKING, Any, TypeVar

import typer
from dynaconf.vendor.ruamel.yaml.parser import ParserError as YamlParserError
from dynaconf.vendor.ruamel.yaml.scanner import ScannerError as YamlScannerError
from pydantic import ValidationError

from rekindle import __version__
from rekindle.contracts import (
    CheckpointCorruptionError,
    IncompatibleCheckpointError,
    TokenError,
    TokenExpiredError,
)
from rekindle.core.config import (
    CheckpointSettings,
    LoggingSettings,
    RekindleSettings,
    load_settings,
    resolve_config,
)

if TYPE_CHECKING:
    from rekindle.core.checkpoint import CheckpointManager, SQLCheckpointStore

__all__ = [
    "app",
]

T = TypeVar("T")

app = typer.Typer(
    name="rekindle",
    help="Rekindle: inspect and manage recoverable operation checkpoints.",
    no_args_is_help=True,
)
checkpoints_app = typer.Typer(help="Inspect and manage stored checkpoints.", no_args_is_help=True)
token_app = typer.Typer(help="Inspect transferable checkpoint tokens.", no_args_is_help=True)

app.add_typer(checkpoints_app, name="checkpoints")
app.add_typer(token_app, name="token")

# Root-level log flags, reapplied when a settings file carries a logging section
_log_flags: dict[str, bool] = {"verbose": False, "json_logs": False}


def version_callback(value: bool) -> None:
    """Print version and exit."""
    if value:
        typer.echo(f"rekindle version {__version__}")
        raise typer.Exit()


def _load_dotenv(env_file: Path | None = None) -> bool:
    """Load environment variables from .env file.

    Raises:
        typer.Exit: If explicit env_file path doesn't exist.
    """
    from dotenv import load_dotenv

    if env_file is not None:
        if not env_file.exists():
            typer.secho(
                f"Error: .env file not found: {env_file}",
                fg=typer.colors.RED,
                err=True,
            )
            raise typer.Exit(1)
        return load_dotenv(env_file, override=False)

    return load_dotenv(override=False)


@app.callback()
def main(
    version: bool | None = typer.Option(
        None,
        "--version",
        "-V",
        callback=version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    no_dotenv: bool = typer.Option(
        False,
        "--no-dotenv",
        help="Skip loading .env file.",
    ),
    env_file: Path | None = typer.Option(
        None,
        "--env-file",
        help="Path to .env file (skips automatic search).",
        exists=False,
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        help="Enable verbose/debug logging.",
    ),
    json_logs: bool = typer.Option(
        False,
        "--json-logs",
        help="Output structured JSON logs (for machine processing).",
    ),
) -> None:
    """Rekindle: inspect and manage recoverable operation checkpoints."""
    from rekindle.core.logging import configure_from_settings

    _log_flags.update(verbose=verbose, json_logs=json_logs)
    configure_from_settings(LoggingSettings(level="WARNING", json_output=json_logs), verbose=verbose)

    if not no_dotenv:
        _load_dotenv(env_file=env_file)
    elif env_file is not None:
        typer.secho(
            "Warning: --env-file ignored because --no-dotenv is set.",
            fg=typer.colors.YELLOW,
            err=True,
        )


@app.command()
def version() -> None:
    """Show the installed rekindle version."""
    typer.echo(f"rekindle version {__version__}")


def _format_validation_error(
    title: str,
    message: str,
    details: list[str] | None = None,
    hint: str | None = None,
) -> None:
    typer.secho(f"Error: {title}", fg=typer.colors.RED, err=True)
    typer.echo(f"  {message}", err=True)
    for detail in details or []:
        typer.echo(f"  - {detail}", err=True)
    if hint:
        typer.echo(f"  Hint: {hint}", err=True)


def _load_settings_or_exit(settings_path: Path) -> RekindleSettings:
    """Load settings, turning every configuration failure into exit code 1.

    A logging section in the file replaces the WARNING default; --verbose
    and --json-logs still take precedence over it.
    """
    try:
        config = load_settings(settings_path)
    except (YamlParserError, YamlScannerError) as e:
        _format_validation_error(
            title="YAML Syntax Error",
            message=f"Failed to parse {settings_path.name}",
            details=[str(e.problem)] if hasattr(e, "problem") else None,
            hint="Check for unclosed brackets, incorrect indentation, or invalid characters.",
        )
        raise typer.Exit(1) from None
    except FileNotFoundError:
        _format_validation_error(
            title="File Not Found",
            message=f"Settings file does not exist: {settings_path}",
            hint="Check the path and ensure the file exists.",
        )
        raise typer.Exit(1) from None
    except ValidationError as e:
        # Must come before ValueError - ValidationError inherits from it
        details = []
        for error in e.errors():
            loc = ".".join(str(x) for x in error["loc"])
            details.append(f"{loc}: {error['msg']}")
        _format_validation_error(
            title="Configuration Validation Failed",
            message=f"Invalid settings in {settings_path.name}",
            details=details,
            hint="Check field names, types, and required values.",
        )
        raise typer.Exit(1) from None
    except ValueError as e:
        _format_validation_error(title="Configuration Error", message=str(e))
        raise typer.Exit(1) from None

    if "logging" in config.model_fields_set:
        from rekindle.core.logging import configure_from_settings

        logging_settings = config.logging
        if _log_flags["json_logs"]:
            logging_settings = logging_settings.model_copy(update={"json_output": True})
        configure_from_settings(logging_settings, verbose=_log_flags["verbose"])
    return config


@app.command()
def validate(
    settings: str = typer.Option(
        ...,
        "--settings",
        "-s",
        help="Path to settings YAML file.",
    ),
    show: bool = typer.Option(
        False,
        "--show",
        help="Print the resolved configuration as JSON (signing key redacted).",
    ),
) -> None:
    """Validate a rekindle settings file."""
    config = _load_settings_or_exit(Path(settings).expanduser())
    typer.echo("Configuration valid.")
    typer.echo(f"  Store: {config.store.backend}")
    typer.echo(f"  Checkpoint namespace: {config.checkpoint.namespace}")
    typer.echo(f"  Retry: max_retries={config.retry.max_retries}, base_delay_ms={config.retry.base_delay_ms}")
    if show:
        typer.echo(json.dumps(resolve_config(config), indent=2))


def _json_default(value: Any) -> Any:
    """Display form for values plain JSON cannot hold."""
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, bytes):
        return base64.b64encode(value).decode("ascii")
    raise TypeError(f"Object of type {type(value).__name__} is not JSON serializable")


def _run(coro: Coroutine[Any, Any, T]) -> T:
    return asyncio.run(coro)


def _open_manager(database: str | None, settings: str | None) -> tuple[CheckpointManager, SQLCheckpointStore]:
    """Resolve the checkpoint store from --database or the settings file.

    Raises:
        typer.Exit: If no persistent store can be resolved.
    """
    from rekindle.core.checkpoint import CheckpointManager, SQLCheckpointStore

    checkpoint_settings = CheckpointSettings()
    url: str | None = None

    if settings is not None:
        config = _load_settings_or_exit(Path(settings).expanduser())
        checkpoint_settings = config.checkpoint
        if config.store.backend == "sql":
            url = config.store.url

    if database is not None:
        db_path = Path(database).expanduser().resolve()
        # Prevents silently creating an empty database on a typoed path
        if not db_path.exists():
            typer.echo(f"Error: Database file not found: {db_path}", err=True)
            raise typer.Exit(1)
        url = f"sqlite:///{db_path}"

    if url is None:
        typer.echo("Error: No persistent checkpoint store configured.", err=True)
        typer.echo("Specify --database, or --settings with store.backend: sql.", err=True)
        raise typer.Exit(1)

    store = SQLCheckpointStore(url)
    return CheckpointManager(store, settings=checkpoint_settings), store


_DATABASE_OPTION_HELP = "Path to checkpoint database file (SQLite)."
_SETTINGS_OPTION_HELP = "Path to settings YAML file (store and namespace)."


@checkpoints_app.command("list")
def list_checkpoints(
    database: str | None = typer.Option(None, "--database", "-d", help=_DATABASE_OPTION_HELP),
    settings: str | None = typer.Option(None, "--settings", "-s", help=_SETTINGS_OPTION_HELP),
    kind: str | None = typer.Option(None, "--kind", "-k", help="Only show checkpoints of this kind."),
    as_json: bool = typer.Option(False, "--json", help="Output as JSON."),
) -> None:
    """List live checkpoints, newest first."""
    manager, store = _open_manager(database, settings)
    with store:
        try:
            summaries = _run(manager.list_checkpoints(kind=kind))
        except ValueError as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from None

    if as_json:
        typer.echo(
            json.dumps(
                [
                    {
                        "operation_id": s.operation_id,
                        "kind": s.kind.value,
                        "status": s.status.value,
                        "sequence_number": s.sequence_number,
                        "updated_at": s.updated_at.isoformat(),
                        "expires_at": s.expires_at.isoformat() if s.expires_at else None,
                    }
                    for s in summaries
                ],
                indent=2,
            )
        )
        return

    if not summaries:
        typer.echo("No checkpoints found.")
        return
    for s in summaries:
        typer.echo(f"{s.operation_id}  {s.kind.value:<12} {s.status.value:<9} seq={s.sequence_number}  updated={s.updated_at.isoformat()}")


@checkpoints_app.command("show")
def show_checkpoint(
    operation_id: str = typer.Argument(..., help="Operation identifier."),
    database: str | None = typer.Option(None, "--database", "-d", help=_DATABASE_OPTION_HELP),
    settings: str | None = typer.Option(None, "--settings", "-s", help=_SETTINGS_OPTION_HELP),
) -> None:
    """Print one checkpoint, including its state, as JSON."""
    manager, store = _open_manager(database, settings)
    with store:
        try:
            record = _run(manager.get_record(operation_id))
        except (CheckpointCorruptionError, IncompatibleCheckpointError) as e:
            typer.echo(f"Error: {e}", err=True)
            raise typer.Exit(1) from None

    if record is None:
        typer.echo(f"Error: No checkpoint found for operation '{operation_id}'", err=True)
        raise typer.Exit(1)

    payload = {
        "operation_id": record.operation_id,
        "kind": record.kind.value,
        "status": record.status.value,
        "sequence_number": record.sequence_number,
        "updated_at": record.updated_at,
        "expires_at": record.expires_at,
        "context": record.context,
        "state": record.state,
    }
    typer.echo(json.dumps(payload, indent=2, default=_json_default))


@checkpoints_app.command("delete")
def delete_checkpoint(
    operation_id: str = typer.Argument(..., help="Operation identifier."),
    database: str | None = typer.Option(None, "--database", "-d", help=_DATABASE_OPTION_HELP),
    settings: str | None = typer.Option(None, "--settings", "-s", help=_SETTINGS_OPTION_HELP),
    yes: bool = typer.Option(False, "--yes", "-y", help="Skip confirmation prompt."),
) -> None:
    """Delete one checkpoint."""
    manager, store = _open_manager(database, settings)
    with store:
        if not yes and not typer.confirm(f"Delete checkpoint for '{operation_id}'?"):
            typer.echo("Aborted.")
            raise typer.Exit(1)
        removed = _run(manager.remove_checkpoint(operation_id))

    if not removed:
        typer.echo(f"Error: No checkpoint found for operation '{operation_id}'", err=True)
        raise typer.Exit(1)
    typer.echo(f"Deleted checkpoint for '{operation_id}'.")


@checkpoints_app.command("purge")
def purge_checkpoints(
    database: str | None = typer.Option(None, "--database", "-d", help=_DATABASE_OPTION_HELP),
    settings: str | None = typer.Option(None, "--settings", "-s", help=_SETTINGS_OPTION_HELP),
    dry_run: bool = typer.Option(False, "--dry-run", help="Show what would be deleted without deleting."),
) -> None:
    """Delete every expired checkpoint."""
    manager, store = _open_manager(database, settings)
    with store:
        count = _run(manager.purge_expired(dry_run=dry_run))

    if dry_run:
        typer.echo(f"Would purge {count} expired checkpoint(s).")
    else:
        typer.echo(f"Purged {count} expired checkpoint(s).")


@token_app.command("inspect")
def inspect_token(
    token: str = typer.Argument(..., help="Transferable checkpoint token."),
    verify: bool = typer.Option(
        True,
        "--verify/--no-verify",
        help="Verify signature and expiry (key from --settings or REKINDLE_TOKEN_KEY).",
    ),
    settings: str | None = typer.Option(
        None,
        "--settings",
        "-s",
        help="Path to settings YAML file (transfer signing key and expiry).",
    ),
) -> None:
    """Decode a transferable checkpoint token and print its contents."""
    from rekindle.core.checkpoint import TransferCodec, peek_token

    try:
        if verify:
            try:
                if settings is not None:
                    config = _load_settings_or_exit(Path(settings).expanduser())
                    codec = TransferCodec.from_settings(config.transfer)
                else:
                    codec = TransferCodec(None)
            except ValueError as e:
                typer.echo(f"Error: {e}", err=True)
                typer.echo("Use --no-verify to decode without checking the signature.", err=True)
                raise typer.Exit(1) from None
            checkpoint = codec.resume(token)
            payload: dict[str, Any] = {
                "operation_id": checkpoint.operation_id,
                "created_at": checkpoint.created_at,
                "expires_at": checkpoint.expires_at,
                "metadata": checkpoint.metadata,
                "state": checkpoint.state,
                "verified": True,
            }
        else:
            payload = {**peek_token(token), "verified": False}
    except TokenExpiredError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(2) from None
    except TokenError as e:
        typer.echo(f"Error: {e}", err=True)
        raise typer.Exit(1) from None

    typer.echo(json.dumps(payload, indent=2, default=_json_default))


if __name__ == "__main__":
    app()
