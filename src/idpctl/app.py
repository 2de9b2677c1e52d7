"""Typer application and CLI entry point for idpctl.

The root callback configures logging and output from the global flags.
:func:`main` is the console-script entry point declared in
``pyproject.toml``: it invokes the app, turns :class:`~idpctl.exceptions.IdpctlError`
into a clean exit with the error's code, and writes a crash log for anything
unexpected.

See Also:
    :mod:`idpctl.commands`: the command implementations.
    :mod:`idpctl.output`: output formatting initialised in :func:`main_callback`.
"""

from __future__ import annotations

import logging
import sys
import traceback
from datetime import datetime
from typing import Optional

import typer

from idpctl import __version__
from idpctl.commands.auth import login, logout, token
from idpctl.commands.tenants import tenants_app
from idpctl.exit_codes import EXIT_GENERIC_FAILURE

app = typer.Typer(
    name="idpctl",
    help="Manage identity platform tenants from the command line.",
    no_args_is_help=True,
    add_completion=False,
    rich_markup_mode="rich",
)

app.command("login")(login)
app.command("logout")(logout)
app.command("token")(token)
app.add_typer(tenants_app, name="tenants", help="Manage authenticated tenants.")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"idpctl {__version__}")
        raise typer.Exit()


@app.callback()
def main_callback(
    version: Optional[bool] = typer.Option(
        None,
        "--version",
        callback=_version_callback,
        is_eager=True,
        help="Show version and exit.",
    ),
    json_output: bool = typer.Option(False, "--json", help="JSON output format."),
    plain_output: bool = typer.Option(False, "--plain", help="Plain text output."),
    no_color: bool = typer.Option(False, "--no-color", help="Disable color output."),
    quiet: bool = typer.Option(
        False, "--quiet", "-q", help="Suppress non-essential output."
    ),
    verbose: bool = typer.Option(
        False, "--verbose", "-v", help="Enable debug logging."
    ),
) -> None:
    """Root callback executed before every command.

    Installs the global :class:`~idpctl.output.OutputManager` and configures
    the ``logging`` root handler: DEBUG with ``--verbose``, WARNING otherwise.
    """
    from idpctl.output import OutputFormat, OutputManager, set_output

    fmt = OutputFormat.AUTO
    if json_output:
        fmt = OutputFormat.JSON
    elif plain_output:
        fmt = OutputFormat.PLAIN
    set_output(OutputManager(format=fmt, no_color=no_color, quiet=quiet))

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING,
        format="%(levelname)s %(name)s: %(message)s",
        stream=sys.stderr,
        force=True,
    )


def _write_crash_log() -> str:
    """Write the current traceback under the data directory and return its path."""
    from idpctl.config import get_data_dir

    logs_dir = get_data_dir() / "logs"
    logs_dir.mkdir(parents=True, exist_ok=True)
    log_path = logs_dir / f"crash-{datetime.now().strftime('%Y%m%d-%H%M%S')}.log"
    log_path.write_text(traceback.format_exc())
    return str(log_path)


def main() -> None:
    """CLI entry point invoked by the ``idpctl`` console script.

    Raises:
        SystemExit: Always raised (either by Typer or explicitly).
    """
    try:
        app()
    except SystemExit:
        raise
    except KeyboardInterrupt:
        sys.stderr.write("\nCancelled.\n")
        sys.exit(130)
    except Exception as exc:
        from idpctl.exceptions import IdpctlError
        from idpctl.output import error

        if isinstance(exc, IdpctlError):
            error(str(exc))
            sys.exit(exc.exit_code)
        log_path = _write_crash_log()
        error(f"Unexpected error: {exc}")
        error(f"Crash log written to {log_path}")
        sys.exit(EXIT_GENERIC_FAILURE)


if __name__ == "__main__":
    main()
