"""Database connection helpers.

This module opens the single SQLite connection a `Database` owns and
runs the optional bootstrap script that creates the file beforehand.
Connections are opened in driver autocommit mode so that transaction
boundaries are issued only by the transaction coordinator.
"""

from __future__ import annotations

import logging
import sqlite3
from pathlib import Path

from ..global_config import DEFAULT_TIMEOUT_S
from ..logsink import EventLevel, log_event
from .errors import DatabaseConnectionError, check_error, from_sqlite_error

logger = logging.getLogger(__name__)

MEMORY_PATH = ":memory:"


def _is_memory(db_path: Path | str) -> bool:
    return str(db_path) == MEMORY_PATH


def split_statements(sql: str) -> list[str]:
    """Split a script on semicolons, dropping empty statements.

    Args:
        sql: Script text.

    Returns:
        Trimmed, non-empty statements in script order.
    """
    return [statement.strip() for statement in sql.split(";") if statement.strip()]


def run_bootstrap(
    db_path: Path | str,
    script_path: Path,
    *,
    page_size: int | None = None,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> bool:
    """Execute a bootstrap script against a short-lived connection.

    The script is split on ``;`` and each statement is executed on its
    own, in order. When `page_size` is given, ``PRAGMA page_size=<n>`` is
    run first so it applies before any table is created.

    Args:
        db_path: Database file the script initializes (created if absent).
        script_path: Path to the bootstrap script.
        page_size: Optional page size for a new database file.
        timeout: Seconds to wait on a locked database.

    Returns:
        True if every statement ran, False if the script was missing or
        any statement failed.

    Logs:
        - ERROR: "Cannot find initialise script" if the script is missing.
        - ERROR: via check_error for each failing statement.
        - INFO: "Ran bootstrap script" with the statement count.

    Side Effects:
        - Creates the database file and its parent directory.
    """
    component = "connection.run_bootstrap"
    if not script_path.exists():
        log_event(component, f'Cannot find initialise script: "{script_path}"', EventLevel.ERROR)
        return False

    statements = split_statements(script_path.read_text(encoding="utf-8"))
    if page_size:
        statements.insert(0, f"PRAGMA page_size={int(page_size)}")

    if not _is_memory(db_path):
        Path(db_path).parent.mkdir(parents=True, exist_ok=True)

    ok = True
    conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    try:
        for statement in statements:
            try:
                conn.execute(statement)
            except sqlite3.Error as exc:
                check_error(exc, component)
                ok = False
    finally:
        conn.close()

    log_event(
        component,
        f"Ran bootstrap script {script_path.name} ({len(statements)} statements)",
        EventLevel.INFORMATION,
    )
    return ok


def open_connection(
    db_path: Path | str,
    *,
    enable_journal: bool = False,
    enable_synchronous: bool = False,
    timeout: float = DEFAULT_TIMEOUT_S,
) -> sqlite3.Connection:
    """Open and configure the connection for an existing database file.

    Journaling and synchronous writes are switched off unless requested,
    trading crash durability for write throughput.

    Args:
        db_path: Path to an existing SQLite file, or ``":memory:"``.
        enable_journal: Keep SQLite's rollback journal.
        enable_synchronous: Keep synchronous (fsync) writes.
        timeout: Seconds to wait on a locked database.

    Returns:
        Connection in autocommit mode with `sqlite3.Row` rows.

    Raises:
        DatabaseConnectionError: If the file does not exist or cannot be
            opened.

    Logs:
        - DEBUG: "Opening SQLite database at {path}".
        - DEBUG: "Journaling off" / "Synchronous off" as pragmas apply.
    """
    component = "connection.open_connection"
    if not _is_memory(db_path) and not Path(db_path).exists():
        log_event(component, f'Cannot find file: "{db_path}"', EventLevel.ERROR)
        raise DatabaseConnectionError(f"Database file not found: {db_path}")

    logger.debug("Opening SQLite database at %s", db_path)
    try:
        conn = sqlite3.connect(str(db_path), timeout=timeout, isolation_level=None)
    except sqlite3.Error as exc:
        info = check_error(exc, component)
        raise DatabaseConnectionError(f"Cannot open {db_path}: {info.message}") from exc

    conn.row_factory = sqlite3.Row
    if not enable_journal:
        conn.execute("PRAGMA journal_mode = OFF")
        log_event(component, "Journaling off")
    if not enable_synchronous:
        conn.execute("PRAGMA synchronous = OFF")
        log_event(component, "Synchronous off")
    return conn


def execute_script(conn: sqlite3.Connection, sql: str, *, description: str) -> None:
    """Execute a multi-statement SQL script with logging.

    Executes SQL that may contain multiple statements separated by
    semicolons, outside of any batching transaction.

    Args:
        conn: Database connection to execute script on.
        sql: Multi-statement SQL script to execute.
        description: Human-readable description for logging purposes.

    Raises:
        ExecutionError: If script execution fails.

    Logs:
        - INFO: "Executing SQL script: {description}" before execution.
        - ERROR: "Failed while executing SQL script: {description}" and the
            error check's details on failure.
    """
    logger.info("Executing SQL script: %s", description)
    try:
        conn.executescript(sql)
    except sqlite3.Error as exc:
        logger.error("Failed while executing SQL script: %s", description)
        check_error(exc, "connection.execute_script")
        raise from_sqlite_error(exc) from exc
