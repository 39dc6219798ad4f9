from __future__ import annotations

import logging
from collections.abc import Callable, Generator, Mapping
from contextlib import contextmanager
from importlib.metadata import PackageNotFoundError, version
from pathlib import Path
from typing import Any

import typer

from ..database import DatabaseError
from ..logsink import configure_logging as _configure_sinks

OK_ICON = "✓"
FAIL_ICON = "✗"


def _get_batchlite_version() -> str:
    try:
        return version("batchlite")
    except PackageNotFoundError:
        return "unknown"


def configure_logging(level: int = logging.WARNING, *, log_file: Path | None = None) -> None:
    """Attach the console sink (and optionally a rotating file) for CLI runs.

    Database events below `level` stay silent so command output is not
    interleaved with per-statement debug lines. Only the first call in a
    process has an effect.
    """
    _configure_sinks(level, console=True, log_file=log_file)


def get_logger(domain: str) -> logging.Logger:
    return logging.getLogger(f"batchlite.cli.{domain}")


@contextmanager
def handle_errors(operation: str, *, logger: logging.Logger) -> Generator[None, None, None]:
    """Turn a failed command into a red one-line message and exit code 1.

    Database failures were already logged where they happened, so only
    their message is reported. Anything else is logged with its traceback.

    Raises:
        typer.Exit: With code 1 on any exception other than typer.Exit.
    """
    try:
        yield
    except typer.Exit:
        raise
    except (DatabaseError, FileNotFoundError, ValueError) as exc:
        logger.error("%s failed: %s", operation, exc)
        typer.secho(f"{FAIL_ICON} {operation} failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(1) from exc
    except Exception as exc:  # noqa: BLE001
        logger.exception("Unexpected error during %s", operation)
        typer.secho(f"{FAIL_ICON} {operation} failed: {exc}", fg=typer.colors.RED)
        raise typer.Exit(1) from exc


def format_result(result: Any, *, operation: str) -> str:
    """Render a command result as CLI text.

    Mappings are summaries (``success``, ``total``, ``message``, ``items``);
    lists are printed one bullet per entry; anything else is shown as is.
    """
    if result is None or isinstance(result, bool):
        icon = FAIL_ICON if result is False else OK_ICON
        return f"{icon} {operation}"
    if isinstance(result, Mapping):
        return _format_summary(result, operation)
    if isinstance(result, list):
        if not result:
            return f"{operation}: (none)"
        return "\n".join([f"{operation}:", *(f"  • {entry}" for entry in result)])
    return f"{operation}: {result}"


def _format_summary(result: Mapping[str, Any], operation: str) -> str:
    icon = OK_ICON if result.get("success", True) else FAIL_ICON
    lines = [f"{icon} {operation}"]
    if result.get("total") is not None:
        lines.append(f"  total: {result['total']}")
    if result.get("message"):
        lines.append(f"  ℹ {result['message']}")

    items = result.get("items") or []
    if isinstance(items, Mapping):
        items = [f"{key}: {value}" for key, value in items.items()]
    lines.extend(f"    • {item}" for item in items)
    return "\n".join(lines)


class BaseCLI:
    """Shared plumbing for a group of CLI commands."""

    def __init__(self, domain: str) -> None:
        self.domain = domain
        self.logger = get_logger(domain)

    def handle_cli_operation(
        self,
        *,
        operation: str,
        op_callable: Callable[[], Any],
        pre_message: str | None = None,
        quiet: bool = False,
    ) -> Any:
        """Run one command body with uniform progress and error output.

        Args:
            operation: Label used in progress, result and error lines.
            op_callable: Zero-argument callable doing the work.
            pre_message: Printed before the work starts.
            quiet: Return the result without printing it, for commands
                that render their own output.

        Returns:
            Whatever `op_callable` returned.
        """
        if pre_message:
            typer.echo(pre_message)

        with handle_errors(operation, logger=self.logger):
            result = op_callable()

        if not quiet:
            typer.echo(format_result(result, operation=operation))
        return result
