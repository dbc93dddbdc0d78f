"""Typer application and CLI entry point for recoder-auth.

This module builds the root Typer application, registers the commands from
:mod:`recoder_auth.commands.auth`, and resolves settings and output options
once per invocation in :func:`main_callback`.

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. It installs a SIGINT handler and runs the app.
:class:`~recoder_auth.exceptions.RecoderAuthError` instances that escape a
command are printed with their suggestion and exit with their code; any
other exception is written to a crash log under the data directory.

See Also:
    :mod:`recoder_auth.config`: Settings resolution.
    :mod:`recoder_auth.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import signal
import sys
import traceback
from datetime import datetime
from typing import Any, Optional

import typer
from rich.logging import RichHandler

from recoder_auth import __version__
from recoder_auth.exit_codes import EXIT_GENERIC_FAILURE
from recoder_auth.models import StorageScope

app = typer.Typer(
    name="recoder-auth",
    help="Log in to Recoder and manage your CLI session.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

_LOG_NAMESPACE = "recoder_auth"


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"recoder-auth {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool, console: Any) -> None:
    """Send library logging to stderr through Rich when *verbose* is set."""
    logger = logging.getLogger(_LOG_NAMESPACE)
    for handler in list(logger.handlers):
        if isinstance(handler, RichHandler):
            logger.removeHandler(handler)
    if not verbose:
        logger.setLevel(logging.WARNING)
        return
    handler = RichHandler(console=console, show_path=False, markup=False)
    handler.setFormatter(logging.Formatter("%(name)s: %(message)s"))
    logger.addHandler(handler)
    logger.setLevel(logging.DEBUG)


@app.callback()
def main_callback(
    ctx: typer.Context,
    version: bool = typer.Option(
        False,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    project: bool = typer.Option(
        False, "--project", help="Store the session in ./.recoder instead of the user config dir."
    ),
    api_url: Optional[str] = typer.Option(
        None, "--api-url", help="Identity service base URL (overrides RECODER_API_URL)."
    ),
    json_output: bool = typer.Option(
        False, "--json", help="JSON output format."
    ),
    plain_output: bool = typer.Option(
        False, "--plain", help="Plain text output."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug output."
    ),
) -> None:
    """Root callback executed before every command.

    Installs the global :class:`~recoder_auth.output.OutputManager`,
    enables debug logging for ``--verbose``, and stores the effective
    :class:`~recoder_auth.models.AuthSettings` in ``ctx.obj["settings"]``.

    Raises:
        typer.Exit: With the error's exit code if settings cannot be loaded.
    """
    from recoder_auth.config import load_settings
    from recoder_auth.exceptions import ConfigError
    from recoder_auth.output import OutputFormat, OutputManager, error, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
    )
    set_output(output)
    _configure_logging(verbose, output.stderr_console)

    scope = StorageScope.PROJECT if project else None
    try:
        settings = load_settings(api_base_url=api_url, storage_scope=scope)
    except ConfigError as exc:
        error(str(exc))
        raise typer.Exit(code=exc.exit_code) from None

    ctx.ensure_object(dict)
    ctx.obj["settings"] = settings


def register_commands() -> None:
    """Attach the built-in commands to :data:`app`."""
    from recoder_auth.commands.auth import (
        login_command,
        logout_command,
        quota_command,
        set_api_key_command,
        status_command,
        token_command,
        whoami_command,
    )

    app.command("login")(login_command)
    app.command("logout")(logout_command)
    app.command("status")(status_command)
    app.command("whoami")(whoami_command)
    app.command("quota")(quota_command)
    app.command("set-api-key")(set_api_key_command)
    app.command("token")(token_command)


register_commands()


def _setup_signal_handlers() -> None:
    """Install a SIGINT handler so Ctrl-C exits cleanly."""

    def _handler(signum: int, frame: Any) -> None:  # noqa: ANN401
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)

    signal.signal(signal.SIGINT, _handler)


def _write_crash_log(exc: Exception) -> str:
    """Write the current traceback to the data directory and return its path."""
    from recoder_auth.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``recoder-auth`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    _setup_signal_handlers()
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from recoder_auth.exceptions import RecoderAuthError
        from recoder_auth.output import error, suggest

        if isinstance(exc, RecoderAuthError):
            error(str(exc))
            if exc.suggestion:
                suggest(exc.suggestion)
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
