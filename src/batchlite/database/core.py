"""The Database facade: one SQLite file, one connection, batched writes.

`Database` ties the pieces of this package together. Writes go through the
`TransactionCoordinator`, named statements through the `StatementCache`,
SQL text comes from the builders, and reads from the retrieval helpers.

Failures are logged and reported as sentinels (None, False, empty results)
with the captured `ErrorInfo` kept on `last_error`. Set
``DatabaseConfig(raise_on_error=True)`` to get exceptions instead. The only
failure always raised is a connection that cannot be opened.
"""

from __future__ import annotations

import logging
import re
import sqlite3
from collections.abc import Callable, Iterable, Iterator, Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from ..global_config import DEFAULT_COMMIT_INTERVAL, DEFAULT_TIMEOUT_S
from ..logsink import EventLevel, log_event
from . import retrieval
from .builder import (
    Clause,
    WhereArg,
    assignments,
    build_insert,
    build_update,
    combine_where,
    equals,
    quote,
    validate_identifier,
)
from .connection import MEMORY_PATH, execute_script, open_connection, run_bootstrap
from .errors import (
    CallbackError,
    ClosedDatabaseError,
    DatabaseError,
    ErrorInfo,
    ExecutionError,
    InitializationError,
    StatementNotFoundError,
    execution_error,
)
from .statements import StatementCache, insert_name, update_name
from .transaction import (
    BatchErrorPolicy,
    ExecutionResult,
    Params,
    Statement,
    TransactionCoordinator,
    TransactionState,
)

logger = logging.getLogger(__name__)


@dataclass
class DatabaseConfig:
    """Per-instance settings for a Database."""

    commit_interval: int = DEFAULT_COMMIT_INTERVAL
    timeout: float = DEFAULT_TIMEOUT_S
    batch_error_policy: BatchErrorPolicy = BatchErrorPolicy.CONTINUE
    statement_cache_size: int | None = None
    raise_on_error: bool = False


def _regex_match(value: Any, pattern: str) -> str | None:
    if value is None or pattern is None:
        return None
    match = re.search(pattern, str(value))
    return match.group(0) if match else None


class Database:
    """Transactional access to a single embedded SQLite database.

    Not thread-safe: use one instance per thread, or serialize access.

    Args:
        path: Database file. Must exist unless `init_script` creates it;
            ``":memory:"`` is accepted.
        enable_journal: Keep SQLite's rollback journal (off by default).
        enable_synchronous: Keep synchronous writes (off by default).
        init_script: Bootstrap script of ``;``-separated statements run
            once, on a separate connection, before the main one opens.
        page_size: Page size applied by the bootstrap script.
        config: Batching and error-reporting settings.

    Raises:
        DatabaseConnectionError: If the file is missing or cannot be opened.
        InitializationError: If the bootstrap fails and
            ``config.raise_on_error`` is set.
    """

    def __init__(
        self,
        path: Path | str,
        *,
        enable_journal: bool = False,
        enable_synchronous: bool = False,
        init_script: Path | str | None = None,
        page_size: int | None = None,
        config: DatabaseConfig | None = None,
    ) -> None:
        self.config = config or DatabaseConfig()
        if self.config.commit_interval < 1:
            raise ValueError(f"commit_interval must be positive, got {self.config.commit_interval}")
        self.path: Path | str = path if str(path) == MEMORY_PATH else Path(path)
        self.last_error = ErrorInfo.ok()
        self._conn: sqlite3.Connection | None = None

        if init_script:
            ok = run_bootstrap(
                self.path,
                Path(init_script),
                page_size=page_size,
                timeout=self.config.timeout,
            )
            if not ok and self.config.raise_on_error:
                raise InitializationError(f"Bootstrap script failed: {init_script}")

        self._conn = open_connection(
            self.path,
            enable_journal=enable_journal,
            enable_synchronous=enable_synchronous,
            timeout=self.config.timeout,
        )
        self._tx = TransactionCoordinator(
            self._conn,
            commit_interval=self.config.commit_interval,
            batch_error_policy=self.config.batch_error_policy,
        )
        self._statements = StatementCache(self._conn, max_entries=self.config.statement_cache_size)
        log_event("Database", f"Opened {self.path}", EventLevel.INFORMATION)

    # -- lifecycle -------------------------------------------------------------

    def __enter__(self) -> Database:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()

    def __del__(self) -> None:
        if getattr(self, "_conn", None) is None:
            return
        pending = self._tx.state.pending_ops
        if not self._tx.close():
            log_event("Database", f"Discarding {pending} uncommitted operations on {self.path}", EventLevel.ERROR)
        self._conn.close()
        self._conn = None

    @property
    def conn(self) -> sqlite3.Connection:
        self._ensure_open()
        return self._conn

    @property
    def closed(self) -> bool:
        return self._conn is None

    def _ensure_open(self) -> None:
        if self._conn is None:
            raise ClosedDatabaseError(f"Database is closed: {self.path}")

    def close(self) -> bool:
        """Commit any pending batch and release the connection.

        Returns:
            True once closed. False when the final commit failed: the
            connection and the pending batch are kept so close() or commit()
            can be retried, and `last_error` holds the commit error.

        Raises:
            ExecutionError: If the final commit fails and
                ``config.raise_on_error`` is set.
        """
        if self._conn is None:
            return True
        if not self._tx.close():
            self._fail(execution_error(self._tx.commit_error), "Database.close", log=False)
            return False
        self._conn.close()
        self._conn = None
        logger.debug("Closed %s", self.path)
        return True

    @property
    def transaction_state(self) -> TransactionState:
        return self._tx.state

    @property
    def commit_interval(self) -> int:
        return self._tx.commit_interval

    @commit_interval.setter
    def commit_interval(self, value: int) -> None:
        if value < 1:
            raise ValueError(f"commit_interval must be positive, got {value}")
        self._tx.commit_interval = value

    # -- error reporting -------------------------------------------------------

    def _fail(self, error: DatabaseError, component: str, *, log: bool = True) -> None:
        if isinstance(error, ExecutionError):
            self.last_error = error.info
        if log:
            log_event(component, str(error), EventLevel.ERROR)
        if self.config.raise_on_error:
            raise error

    def _record(self, result: ExecutionResult) -> ExecutionResult:
        self.last_error = result.last_error
        if result.errors and self.config.raise_on_error:
            raise execution_error(result.last_error)
        return result

    def _read(self, func: Callable[..., Any], *args: Any, default: Any = None, **kwargs: Any) -> Any:
        try:
            value = func(self.conn, *args, **kwargs)
        except ExecutionError as exc:
            # already logged where it was raised
            self._fail(exc, func.__name__, log=False)
            return default
        self.last_error = ErrorInfo.ok()
        return value

    # -- connection-level helpers ---------------------------------------------

    def quote(self, text: Any) -> str:
        """Render `text` as a SQL literal for hand-built trusted fragments."""
        return quote(text)

    def set_cache_size(self, cache_size: int) -> None:
        """Set SQLite's page cache size (pages, or KiB when negative)."""
        self.conn.execute(f"PRAGMA cache_size = {int(cache_size)}")

    def set_regex_match(self) -> None:
        """Register ``REGEX_MATCH(value, pattern)``, returning the matched text or NULL."""
        self.conn.create_function("REGEX_MATCH", 2, _regex_match, deterministic=True)

    def tables(self) -> list[str]:
        """Names of the user tables in the database."""
        rows = self._read(
            retrieval.retrieve_records_sql,
            "SELECT name FROM sqlite_master WHERE type = 'table' "
            "AND name NOT LIKE 'sqlite_%' ORDER BY name",
            default=[],
        )
        return [row["name"] for row in rows]

    # -- transactions and raw execution ---------------------------------------

    def commit(self) -> bool:
        """Commit the pending batch; a no-op returning True when none is open."""
        self._ensure_open()
        if not self._tx.commit():
            self._fail(execution_error(self._tx.commit_error), "Database.commit", log=False)
            return False
        self.last_error = ErrorInfo.ok()
        return True

    def execute_one(
        self,
        sql: str,
        params: Params = None,
        *,
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> ExecutionResult:
        """Run one statement; the result's value is the insert id or row count."""
        self._ensure_open()
        return self._record(
            self._tx.execute_one(
                sql,
                params,
                use_transaction=use_transaction,
                return_insert_id=return_insert_id,
            )
        )

    def execute_batch(
        self,
        statements: Iterable[Statement],
        *,
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> ExecutionResult:
        """Run statements in order; the result's value is a list of ids or a row count."""
        self._ensure_open()
        return self._record(
            self._tx.execute_batch(
                statements,
                use_transaction=use_transaction,
                return_insert_id=return_insert_id,
            )
        )

    def execute_sql(
        self,
        sql: str | Sequence[str],
        return_insert_id: bool = False,
        use_transaction: bool = True,
    ) -> Any:
        """Run one statement or a list of statements.

        Args:
            sql: SQL text, or a list of SQL texts run as a batch.
            return_insert_id: Return insert ids instead of row counts.
            use_transaction: Run inside the batching transaction.

        Returns:
            For a single statement, the insert id or the affected-row count.
            For a list, the ordered insert ids or the summed row count.
            None if a single statement failed.
        """
        if isinstance(sql, str):
            result = self.execute_one(sql, use_transaction=use_transaction, return_insert_id=return_insert_id)
        else:
            result = self.execute_batch(sql, use_transaction=use_transaction, return_insert_id=return_insert_id)
        return result.value

    def execute_sql_file(self, filename: Path | str) -> bool:
        """Run a SQL script file outside the batching transaction.

        Any pending batch is committed first.

        Returns:
            True if the script ran, False if it was missing or failed.
        """
        component = "Database.execute_sql_file"
        path = Path(filename)
        if not path.exists():
            log_event(component, f"Cannot find file: {path.name}", EventLevel.ERROR)
            if self.config.raise_on_error:
                raise FileNotFoundError(path)
            return False

        if not self.commit():
            return False
        try:
            execute_script(self.conn, path.read_text(encoding="utf-8"), description=path.name)
        except ExecutionError as exc:
            self._fail(exc, component, log=False)
            return False
        self.last_error = ErrorInfo.ok()
        return True

    def empty_tables(self, tables: Iterable[str] | None = None) -> dict[str, int]:
        """Delete every row of `tables` (all user tables by default), then commit.

        Returns:
            Deleted row count per table.
        """
        results: dict[str, int] = {}
        for table in tables if tables is not None else self.tables():
            log_event("Database.empty_tables", f"Empty {table}")
            result = self.execute_one(f"DELETE FROM {validate_identifier(table)}")  # noqa: S608
            results[table] = result.value or 0
        self.commit()
        return results

    def vacuum(self) -> bool:
        """Rebuild the database file; commits any pending batch first."""
        log_event("Database.vacuum", "Vacuum DB")
        return self.execute_one("VACUUM", use_transaction=False).ok

    # -- prepared statements ---------------------------------------------------

    def prepare(self, name: str, sql: str, parameters: Iterable[str]) -> bool:
        """Compile `sql` and register it as `name`, replacing any previous entry."""
        self._ensure_open()
        return self._statements.prepare(name, sql, parameters)

    def is_prepared(self, table: str, insert: bool = True) -> bool:
        return self._statements.is_prepared(table, insert)

    def execute_statement(
        self,
        name: str,
        values: Mapping[str, Any],
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> Any:
        """Run the prepared statement `name` with named `values`.

        Declared parameters missing from `values` bind as NULL.

        Returns:
            The insert id when `return_insert_id`, else the affected-row
            count; None if the statement is unknown or failed.
        """
        try:
            entry = self._statements.get(name)
        except StatementNotFoundError as exc:
            self._fail(exc, "Database.execute_statement")
            return None
        self._ensure_open()
        result = self._tx.execute_prepared(
            entry,
            values,
            use_transaction=use_transaction,
            return_insert_id=return_insert_id,
        )
        return self._record(result).value

    def prepare_insert(self, table: str, columns: Sequence[str], replace: bool = False) -> bool:
        """Register the INSERT template for `table` unless one is already cached.

        The cached template is reused for every later call on `table`, even
        if `columns` differ.
        """
        if self.is_prepared(table, insert=True):
            return True
        log_event("Database.prepare_insert", f"Adding statement: INSERT {table}", EventLevel.INFORMATION)
        sql, parameters = build_insert(table, columns, replace)
        return self.prepare(insert_name(table), sql, parameters)

    def prepare_update(self, table: str, columns: Sequence[str], id_column: str) -> bool:
        """Register the UPDATE-by-id template for `table` unless one is already cached."""
        if self.is_prepared(table, insert=False):
            return True
        log_event("Database.prepare_update", f"Adding statement: UPDATE {table}", EventLevel.INFORMATION)
        sql, parameters = build_update(table, columns, id_column)
        return self.prepare(update_name(table), sql, parameters)

    def insert_prepared(
        self,
        table: str,
        data: Mapping[str, Any],
        return_insert_id: bool = False,
        use_transaction: bool = True,
    ) -> Any:
        """Insert `data` through the cached INSERT template of `table`."""
        if not self.is_prepared(table, insert=True):
            self._fail(
                StatementNotFoundError(f"Cannot find INSERT parameters: {table}"),
                "Database.insert_prepared",
            )
            return None
        return self.execute_statement(insert_name(table), data, use_transaction, return_insert_id)

    def update_prepared(self, table: str, data: Mapping[str, Any], use_transaction: bool = True) -> Any:
        """Update a row through the cached UPDATE template of `table`."""
        if not self.is_prepared(table, insert=False):
            self._fail(
                StatementNotFoundError(f"Cannot find UPDATE parameters: {table}"),
                "Database.update_prepared",
            )
            return None
        return self.execute_statement(update_name(table), data, use_transaction, False)

    # -- ad hoc writes ---------------------------------------------------------

    def insert_values(
        self,
        table: str,
        data: Mapping[str, Any],
        return_insert_id: bool = True,
        use_transaction: bool = True,
    ) -> Any:
        """Insert one row without caching a template."""
        sql, _ = build_insert(table, list(data))
        result = self.execute_one(sql, dict(data), use_transaction=use_transaction, return_insert_id=return_insert_id)
        return result.value

    def set_key_value(self, table: str, key_column: str, key: Any, value_column: str, value: Any) -> Any:
        """Set `value_column` to `value` on the rows whose `key_column` equals `key`."""
        sets = assignments({value_column: value})
        where = equals(key_column, key)
        sql = f"UPDATE {validate_identifier(table)} SET {sets.sql} WHERE {where.sql}"  # noqa: S608
        return self.execute_one(sql, sets.params + where.params).value

    def update_key_values(
        self,
        table: str,
        key_values: Mapping[str, Any],
        id_column: str,
        id_value: Any,
        where: WhereArg = None,
    ) -> Any:
        """Update several columns of the rows matching `id_column`, immediately durable."""
        sets = assignments(key_values)
        condition = combine_where([equals(id_column, id_value), *_fragments(where)])
        sql = f"UPDATE {validate_identifier(table)} SET {sets.sql} WHERE {condition.sql}"  # noqa: S608
        logger.debug("sql=%s", sql)
        return self.execute_one(sql, sets.params + condition.params, use_transaction=False).value

    def delete_records(self, table: str, id_column: str, id_value: Any, where: WhereArg = None) -> Any:
        """Delete the rows matching `id_column`, immediately durable."""
        condition = combine_where([equals(id_column, id_value), *_fragments(where)])
        sql = f"DELETE FROM {validate_identifier(table)} WHERE {condition.sql}"  # noqa: S608
        return self.execute_one(sql, condition.params, use_transaction=False).value

    # -- retrieval -------------------------------------------------------------

    def retrieve_records(self, table: str, where: WhereArg = None, with_rowid: bool = False) -> list[dict[str, Any]]:
        return self._read(retrieval.retrieve_records, table, where, with_rowid=with_rowid, default=[])

    def retrieve_records_sql(
        self,
        sql: str,
        id_column: str | None = None,
        params: tuple | dict | None = None,
    ) -> list[dict[str, Any]] | dict[Any, dict[str, Any]]:
        default: Any = {} if id_column else []
        return self._read(retrieval.retrieve_records_sql, sql, params, id_column=id_column, default=default)

    def retrieve_record_sql(self, sql: str, params: tuple | dict | None = None) -> dict[str, Any] | None:
        return self._read(retrieval.retrieve_record_sql, sql, params)

    def retrieve_list(
        self,
        table: str,
        id_column: str,
        label_column: str | None = None,
        where: WhereArg = None,
        group_by: str | None = None,
        order_by: str | None = None,
    ) -> list[dict[str, Any]]:
        return self._read(
            retrieval.retrieve_list, table, id_column, label_column, where, group_by, order_by, default=[]
        )

    def retrieve_options(
        self,
        table: str,
        id_column: str,
        label_column: str | None = None,
        where: WhereArg = None,
        group_by: str | None = None,
        order_by: str | None = None,
    ) -> dict[Any, Any]:
        return self._read(
            retrieval.retrieve_options, table, id_column, label_column, where, group_by, order_by, default={}
        )

    def retrieve_columns(
        self,
        table: str,
        columns: Sequence[str],
        where: WhereArg = None,
        group_by: str | None = None,
        order_by: str | None = None,
        limit: int | None = None,
        log_sql: bool = False,
    ) -> list[dict[str, Any]]:
        return self._read(
            retrieval.retrieve_columns,
            table,
            columns,
            where,
            group_by,
            order_by,
            limit,
            log_sql=log_sql,
            default=[],
        )

    def iter_columns(
        self,
        table: str,
        columns: Sequence[str],
        where: WhereArg = None,
        group_by: str | None = None,
        order_by: str | None = None,
    ) -> Iterator[dict[str, Any]]:
        """Lazily yield the selected rows; errors surface during iteration."""
        return retrieval.iter_columns(self.conn, table, columns, where, group_by, order_by)

    def retrieve_columns_callback(
        self,
        callback: Callable[[dict[str, Any]], Any],
        table: str,
        columns: Sequence[str],
        where: WhereArg = None,
        group_by: str | None = None,
        order_by: str | None = None,
    ) -> bool:
        """Hand each selected row to `callback`; False if it is not callable or the query failed."""
        if not callable(callback):
            self._fail(
                CallbackError(f"Callback is not a valid function: {callback!r}"),
                "Database.retrieve_columns_callback",
            )
            return False
        marker = object()
        handled = self._read(
            retrieval.stream_columns, callback, table, columns, where, group_by, order_by, default=marker
        )
        return handled is not marker

    def retrieve_values(
        self,
        table: str,
        value_columns: Sequence[str],
        id_column: str,
        id_value: Any,
        where: WhereArg = None,
        log_sql: bool = False,
    ) -> dict[str, Any] | None:
        return self._read(
            retrieval.retrieve_values, table, value_columns, id_column, id_value, where, log_sql=log_sql
        )

    def retrieve_value(
        self,
        table: str,
        value_column: str,
        id_column: str | None = None,
        id_value: Any = None,
        where: WhereArg = None,
    ) -> Any:
        return self._read(
            retrieval.retrieve_value, table, value_column, id_column, id_value, where, default=""
        )

    def retrieve_group(
        self,
        group_table: str,
        group_columns: Sequence[str],
        group_id: str,
        item_table: str,
        item_columns: Sequence[str],
        item_id: str,
        item_where: WhereArg = None,
        group_order: str | None = None,
        item_order: str | None = None,
    ) -> dict[Any, dict[str, Any]]:
        return self._read(
            retrieval.retrieve_group,
            group_table,
            group_columns,
            group_id,
            item_table,
            item_columns,
            item_id,
            item_where,
            group_order,
            item_order,
            default={},
        )

    retrive_group = retrieve_group


def _fragments(where: WhereArg) -> list[str | Clause]:
    if where is None:
        return []
    if isinstance(where, (str, Clause)):
        return [where]
    return list(where)
