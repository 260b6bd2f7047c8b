"""Typer application and CLI entry point for idptoken.

This module wires together the top-level Typer application and registers the
built-in sub-commands (``fetch``, ``jwt``).

The :func:`main` function is the console-script entry point declared in
``pyproject.toml``. Unhandled :class:`~idptoken.exceptions.IdpTokenError`
instances end the process with their ``exit_code``; any other exception is
written to a crash log under the data directory.

See Also:
    :mod:`idptoken.config`: Flow configuration resolution.
    :mod:`idptoken.output`: Output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import sys
import traceback
from datetime import datetime

import typer

from idptoken import __version__
from idptoken.commands.fetch import fetch_command
from idptoken.commands.jwt import jwt_command
from idptoken.exit_codes import EXIT_GENERIC_FAILURE, EXIT_INTERRUPTED


app = typer.Typer(
    name="idptoken",
    help="Obtain OAuth2/OIDC tokens from an identity provider for debugging.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("fetch")(fetch_command)
app.command("jwt")(jwt_command)


def _version_callback(value: bool) -> None:
    """Print version and exit when --version is passed."""
    if value:
        typer.echo(f"idptoken {__version__}")
        raise typer.Exit()


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
    json_output: bool = typer.Option(
        False, "--json", help="Plain JSON output, no syntax highlighting."
    ),
    no_color: bool = typer.Option(
        False, "--no-color", help="Disable color output."
    ),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False,
        "--verbose",
        "-v",
        envvar="IDPTOKEN_VERBOSE",
        help="Print the effective configuration, debug messages and decoded tokens.",
    ),
) -> None:
    """Root callback executed before every sub-command.

    Initialises the global :class:`~idptoken.output.OutputManager` from
    CLI flags and stores ``verbose`` in the Typer context so that
    sub-commands can read it via ``ctx.obj``.

    Args:
        ctx: Typer invocation context.
        version: If ``True``, print the version string and exit.
        json_output: Force plain JSON output.
        no_color: Disable all colour and Rich markup.
        quiet: Suppress non-essential diagnostic output.
        verbose: Enable debug-level diagnostic output.
    """
    from idptoken.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.JSON if json_output else OutputFormat.AUTO

    output = OutputManager(
        format=fmt,
        no_color=no_color,
        quiet=quiet,
        verbose=verbose,
    )
    set_output(output)

    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose


def _write_crash_log(exc: Exception) -> str:
    """Write a crash traceback to disk and return the log file path.

    Args:
        exc: The unhandled exception to log.

    Returns:
        Absolute path to the written crash log file.
    """
    from idptoken.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    timestamp = datetime.now().strftime("%Y%m%d-%H%M%S")
    log_path = logs_dir / f"crash-{timestamp}.log"
    log_path.write_text("".join(traceback.format_exception(type(exc), exc, exc.__traceback__)))
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``idptoken`` console script.

    Ctrl-C outside the callback server ends the process with
    :data:`~idptoken.exit_codes.EXIT_INTERRUPTED`; while the server runs,
    SIGINT is routed through :class:`~idptoken.lifecycle.Lifecycle` instead.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(EXIT_INTERRUPTED)
    except Exception as exc:
        from idptoken.exceptions import IdpTokenError
        from idptoken.output import error

        if isinstance(exc, IdpTokenError):
            error(str(exc))
            sys.exit(exc.exit_code)
        else:
            log_path = _write_crash_log(exc)
            error(f"Unexpected error. Debug log: {log_path}")
            sys.exit(EXIT_GENERIC_FAILURE)
