"""Public interface for the database package.

This module exposes the `Database` facade together with the pieces it is
built from: the transaction coordinator, the statement cache, the SQL
builders, and the error types.
"""

from .builder import (
    Clause,
    Criteria,
    QuerySpec,
    build_insert,
    build_select,
    build_update,
    combine_where,
    quote,
    translate_criteria,
)
from .core import Database, DatabaseConfig
from .errors import (
    CallbackError,
    ClosedDatabaseError,
    DatabaseConnectionError,
    DatabaseError,
    ErrorInfo,
    ExecutionError,
    InitializationError,
    IntegrityError,
    StatementNotFoundError,
)
from .statements import PreparedStatementEntry, StatementCache
from .transaction import (
    BatchErrorPolicy,
    ExecutionResult,
    TransactionCoordinator,
    TransactionState,
)

__all__ = [
    "Database",
    "DatabaseConfig",
    "TransactionCoordinator",
    "TransactionState",
    "ExecutionResult",
    "BatchErrorPolicy",
    "StatementCache",
    "PreparedStatementEntry",
    "Clause",
    "Criteria",
    "QuerySpec",
    "build_insert",
    "build_update",
    "build_select",
    "combine_where",
    "quote",
    "translate_criteria",
    "ErrorInfo",
    "DatabaseError",
    "DatabaseConnectionError",
    "ClosedDatabaseError",
    "InitializationError",
    "StatementNotFoundError",
    "ExecutionError",
    "IntegrityError",
    "CallbackError",
]
