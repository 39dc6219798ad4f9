"""Database-specific exception types and the shared error-check step."""

from __future__ import annotations

import sqlite3
from dataclasses import dataclass
from typing import Any

from ..global_config import SUCCESS_STATE
from ..logsink import EventLevel, log_event

# SQLSTATE classes reported for sqlite3 exception types
INTEGRITY_STATE = "23000"
SYNTAX_STATE = "42000"
GENERAL_STATE = "HY000"


@dataclass(frozen=True)
class ErrorInfo:
    """Error state captured after a statement runs."""

    sql_state: str = SUCCESS_STATE
    driver_code: int | None = None
    message: str = ""

    @classmethod
    def ok(cls) -> ErrorInfo:
        return cls()

    @property
    def is_error(self) -> bool:
        return self.sql_state != SUCCESS_STATE

    def __str__(self) -> str:
        return f"{self.sql_state}:{self.driver_code if self.driver_code is not None else ''}:{self.message}"


class DatabaseError(Exception):
    """Base exception for database-related errors."""


class DatabaseConnectionError(DatabaseError):
    """Raised when the database file is missing or cannot be opened."""


class ClosedDatabaseError(DatabaseError):
    """Raised when an operation is attempted on a closed database."""


class InitializationError(DatabaseError):
    """Raised when a bootstrap script is missing or fails."""


class StatementNotFoundError(DatabaseError):
    """Raised when a named prepared statement has not been registered."""


class CallbackError(DatabaseError):
    """Raised when a row handler is not callable."""


class ExecutionError(DatabaseError):
    """Raised when a statement leaves a non-success error state."""

    def __init__(self, info: ErrorInfo) -> None:
        super().__init__(str(info))
        self.info = info


class IntegrityError(ExecutionError):
    """Raised when a constraint violation occurs."""


def error_info(error: sqlite3.Error) -> ErrorInfo:
    """Describe a raw sqlite3 error as an `ErrorInfo`.

    Args:
        error: SQLite exception to describe.

    Returns:
        ErrorInfo with a SQLSTATE class, the SQLite extended result code
        (when the driver exposes it) and the error message.
    """
    if isinstance(error, sqlite3.IntegrityError):
        state = INTEGRITY_STATE
    elif isinstance(error, sqlite3.OperationalError):
        state = SYNTAX_STATE
    else:
        state = GENERAL_STATE
    return ErrorInfo(
        sql_state=state,
        driver_code=getattr(error, "sqlite_errorcode", None),
        message=str(error),
    )


def execution_error(info: ErrorInfo) -> ExecutionError:
    """Exception to raise for a captured error state."""
    if info.sql_state == INTEGRITY_STATE:
        return IntegrityError(info)
    return ExecutionError(info)


def from_sqlite_error(error: sqlite3.Error) -> ExecutionError:
    """Wrap a driver error for raising; constraint violations become IntegrityError."""
    return execution_error(error_info(error))


def check_error(error: sqlite3.Error | None, component: str) -> ErrorInfo:
    """Run the error check that follows every statement.

    Args:
        error: Exception raised by the driver, or None if the statement
            succeeded.
        component: Name of the calling operation, used as log context.

    Returns:
        The success sentinel when `error` is None, otherwise the captured
        ErrorInfo.

    Logs:
        - ERROR: "DB error: {state}:{code}:{message}" when `error` is set.
    """
    if error is None:
        return ErrorInfo.ok()
    info = error_info(error)
    log_event(component, f"DB error: {info}", EventLevel.ERROR)
    return info


def ensure_found(entry: Any, message: str) -> Any:
    """Return `entry`, or raise StatementNotFoundError with `message` if it is None."""
    if entry is None:
        raise StatementNotFoundError(message)
    return entry


def usage_error(message: str, component: str) -> ExecutionError:
    """Log a caller mistake found before or after a query runs and wrap it for raising.

    Logs:
        - ERROR: "DB error: {state}::{message}".
    """
    info = ErrorInfo(sql_state=GENERAL_STATE, message=message)
    log_event(component, f"DB error: {info}", EventLevel.ERROR)
    return ExecutionError(info)
