from __future__ import annotations

import logging
from pathlib import Path
from typing import Annotated

import typer

from .. import global_config as g
from .base import _get_batchlite_version, configure_logging
from .commands.db import app as db_app

app = typer.Typer(
    help="batchlite: maintenance commands for SQLite databases",
    context_settings={"help_option_names": ["-h", "--help"]},
)
app.add_typer(db_app, name="db")


def _version_callback(value: bool) -> None:
    if value:
        typer.echo(f"batchlite {_get_batchlite_version()}")
        raise typer.Exit()


@app.callback()
def root(
    verbose: Annotated[
        bool,
        typer.Option("--verbose", "-v", help="Show database events down to DEBUG"),
    ] = False,
    log_to_file: Annotated[
        bool,
        typer.Option("--log-file", help=f"Also write events to {g.DEFAULT_LOG_FILE.name} (size-rotated)"),
    ] = False,
    log_path: Annotated[
        Path,
        typer.Option("--log-path", help="Log file used with --log-file"),
    ] = g.DEFAULT_LOG_FILE,
    version: Annotated[
        bool,
        typer.Option(
            "--version",
            callback=_version_callback,
            is_eager=True,
            help="Show the installed version and exit",
        ),
    ] = False,
) -> None:
    """Maintenance commands for batchlite SQLite databases."""
    configure_logging(
        logging.DEBUG if verbose else logging.WARNING,
        log_file=log_path if log_to_file else None,
    )


def main() -> None:
    """Console-script entry point."""
    app()


if __name__ == "__main__":
    main()
