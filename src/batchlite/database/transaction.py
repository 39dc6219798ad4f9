"""Transaction batching for the single connection a Database owns.

Writes submitted with ``use_transaction=True`` accumulate inside one open
transaction until `commit_interval` operations are pending, at which point
the coordinator commits. A write submitted with ``use_transaction=False``
first flushes any pending batch so durability follows program order.

No rollback path is exposed: a failing statement inside a batch is logged,
recorded on the returned `ExecutionResult`, and the open transaction keeps
whatever the other statements changed.
"""

from __future__ import annotations

import enum
import logging
import sqlite3
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field, replace
from typing import Any, Union

from ..global_config import DEFAULT_COMMIT_INTERVAL
from ..logsink import EventLevel, log_event
from .errors import ErrorInfo, check_error
from .statements import PreparedStatementEntry

logger = logging.getLogger(__name__)

Params = Union[Sequence[Any], Mapping[str, Any], None]
Statement = Union[str, tuple[str, Params]]


class BatchErrorPolicy(str, enum.Enum):
    """What a batch does after one of its statements fails."""

    CONTINUE = "continue"
    ABORT = "abort"


@dataclass
class TransactionState:
    """Open/closed flag plus the number of operations awaiting commit.

    `pending_ops` is always 0 while `in_transaction` is False.
    """

    in_transaction: bool = False
    pending_ops: int = 0


@dataclass
class ExecutionResult:
    """Outcome of one coordinator call.

    `value` is an insert id, a list of insert ids, or an affected-row
    count depending on the call form. `errors` holds one entry per failed
    statement, in execution order.
    """

    value: Any = None
    executed: int = 0
    errors: list[ErrorInfo] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def last_error(self) -> ErrorInfo:
        return self.errors[-1] if self.errors else ErrorInfo.ok()


class TransactionCoordinator:
    """Decides when to open, continue, and commit the batching transaction."""

    def __init__(
        self,
        conn: sqlite3.Connection,
        *,
        commit_interval: int = DEFAULT_COMMIT_INTERVAL,
        batch_error_policy: BatchErrorPolicy = BatchErrorPolicy.CONTINUE,
    ) -> None:
        if commit_interval < 1:
            raise ValueError(f"commit_interval must be positive, got {commit_interval}")
        self._conn = conn
        self._state = TransactionState()
        self._commit_error = ErrorInfo.ok()
        self.commit_interval = commit_interval
        self.batch_error_policy = batch_error_policy

    @property
    def state(self) -> TransactionState:
        """Snapshot of the current transaction state."""
        return replace(self._state)

    @property
    def in_transaction(self) -> bool:
        return self._state.in_transaction

    def _begin(self) -> None:
        if not self._conn.in_transaction:
            self._conn.execute("BEGIN")
        self._state.in_transaction = True

    @property
    def commit_error(self) -> ErrorInfo:
        """Error of the most recent commit attempt (success sentinel if it worked)."""
        return self._commit_error

    def _enter(self, use_transaction: bool) -> ErrorInfo:
        if use_transaction:
            if not (self._state.in_transaction and self._conn.in_transaction):
                self._begin()
        elif self._state.in_transaction and not self.commit():
            # the write would land in the unflushed batch instead of being durable
            return self._commit_error
        return ErrorInfo.ok()

    def _leave(self, use_transaction: bool, executed: int) -> None:
        if not use_transaction:
            return
        self._state.pending_ops += executed
        if self._state.pending_ops >= self.commit_interval:
            self.commit()

    def commit(self) -> bool:
        """Commit the open transaction, if any.

        Returns:
            True when idle or when the commit succeeded; False when the
            commit failed, in which case the state is left unchanged so the
            caller may retry.

        Logs:
            - INFORMATION: "Committed {n} operations" on success.
            - ERROR: "Failed to commit {n} operations" on failure.
        """
        component = "TransactionCoordinator.commit"
        self._commit_error = ErrorInfo.ok()
        if not self._state.in_transaction:
            return True

        pending = self._state.pending_ops
        if not self._conn.in_transaction:
            # SQLite ended the transaction on its own (e.g. after a fatal statement error)
            logger.warning("Transaction already closed by the driver; %d operations unaccounted", pending)
            self._state = TransactionState()
            return True

        try:
            self._conn.execute("COMMIT")
        except sqlite3.Error as exc:
            log_event(component, f"Failed to commit {pending} operations", EventLevel.ERROR)
            self._commit_error = check_error(exc, component)
            return False

        self._state = TransactionState()
        log_event(component, f"Committed {pending} operations", EventLevel.INFORMATION)
        return True

    def _run(self, sql: str, params: Params, component: str) -> tuple[sqlite3.Cursor | None, ErrorInfo]:
        try:
            cursor = self._conn.execute(sql, params if params is not None else ())
        except sqlite3.Error as exc:
            return None, check_error(exc, component)
        logger.debug("Executed statement: %s", sql[:80])
        return cursor, ErrorInfo.ok()

    def execute_one(
        self,
        sql: str,
        params: Params = None,
        *,
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> ExecutionResult:
        """Execute a single statement under the batching rules.

        Args:
            sql: Statement text, with ``?`` or ``:name`` placeholders.
            params: Values bound to the placeholders.
            use_transaction: Run inside the batching transaction.
            return_insert_id: Report the row id of the inserted row instead
                of the affected-row count.

        Returns:
            ExecutionResult whose value is the insert id or the affected
            row count (None if the statement failed).
        """
        flush_error = self._enter(use_transaction)
        if flush_error.is_error:
            return ExecutionResult(errors=[flush_error])
        cursor, info = self._run(sql, params, "TransactionCoordinator.execute_one")
        result = ExecutionResult(executed=1)
        if info.is_error:
            result.errors.append(info)
        elif return_insert_id:
            result.value = cursor.lastrowid
        else:
            result.value = max(cursor.rowcount, 0)
        self._leave(use_transaction, 1)
        return result

    def execute_prepared(
        self,
        entry: PreparedStatementEntry,
        values: Mapping[str, Any],
        *,
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> ExecutionResult:
        """Execute a registered statement with named `values`; unset parameters bind as NULL."""
        return self.execute_one(
            entry.sql,
            entry.bind(values),
            use_transaction=use_transaction,
            return_insert_id=return_insert_id,
        )

    def execute_batch(
        self,
        statements: Iterable[Statement],
        *,
        use_transaction: bool = True,
        return_insert_id: bool = False,
    ) -> ExecutionResult:
        """Execute statements in order under the batching rules.

        Each item is either SQL text or a ``(sql, params)`` pair. Whether
        the batch continues past a failing statement depends on
        `batch_error_policy`; statements already run are never undone.

        Args:
            statements: Statements to run, in order.
            use_transaction: Run inside the batching transaction.
            return_insert_id: Collect the row id after each statement.

        Returns:
            ExecutionResult whose value is the ordered list of insert ids
            (None for a failed statement) or the summed affected-row count.
        """
        component = "TransactionCoordinator.execute_batch"
        result = ExecutionResult(value=[] if return_insert_id else 0)
        flush_error = self._enter(use_transaction)
        if flush_error.is_error:
            result.errors.append(flush_error)
            return result
        for statement in statements:
            sql, params = (statement, None) if isinstance(statement, str) else statement
            cursor, info = self._run(sql, params, component)
            result.executed += 1
            if info.is_error:
                result.errors.append(info)
                if return_insert_id:
                    result.value.append(None)
                if self.batch_error_policy is BatchErrorPolicy.ABORT:
                    log_event(component, f"Aborting batch after statement {result.executed}", EventLevel.WARNING)
                    break
                continue
            if return_insert_id:
                result.value.append(cursor.lastrowid)
            else:
                result.value += max(cursor.rowcount, 0)
        self._leave(use_transaction, result.executed)
        return result

    def close(self) -> bool:
        """Commit any open transaction; never rolls back.

        Returns:
            The commit result. On False the transaction is still open and
            the connection must stay open for a retry.
        """
        return self.commit()
