"""Tests for transaction batching and commit behaviour."""

from __future__ import annotations

import sqlite3
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path

import pytest

from batchlite.database import (
    BatchErrorPolicy,
    Database,
    ExecutionError,
    TransactionCoordinator,
    TransactionState,
)


class _FailingCommitConnection:
    """Connection proxy whose COMMIT fails while `fail` is set."""

    def __init__(self, conn: sqlite3.Connection) -> None:
        self._conn = conn
        self.fail = True

    @property
    def in_transaction(self) -> bool:
        return self._conn.in_transaction

    def execute(self, sql: str, params=()):
        if self.fail and sql == "COMMIT":
            raise sqlite3.OperationalError("database is locked")
        return self._conn.execute(sql, params)


@contextmanager
def read_lock(path: Path) -> Iterator[sqlite3.Connection]:
    """Hold a SHARED lock on `path` from a second connection so COMMIT elsewhere stays busy."""
    other = sqlite3.connect(path, isolation_level=None)
    try:
        other.execute("BEGIN")
        other.execute("SELECT * FROM t").fetchall()
        yield other
    finally:
        other.execute("COMMIT")
        other.close()


@pytest.mark.integration
class TestBatching:
    def test_first_write_opens_transaction(self, db: Database) -> None:
        assert db.transaction_state == TransactionState()
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        assert db.transaction_state == TransactionState(in_transaction=True, pending_ops=1)
        assert db.conn.in_transaction

    def test_pending_writes_invisible_until_commit(self, db: Database, reader) -> None:
        for x in range(5):
            db.execute_sql(f"INSERT INTO t(x) VALUES ({x})")
        assert reader("t") == 0
        assert db.commit() is True
        assert reader("t") == 5
        assert db.transaction_state == TransactionState()

    def test_committed_rows_match_successful_statements(self, db: Database, reader) -> None:
        statements = [
            "INSERT INTO t(x) VALUES (1)",
            "INSERT INTO missing(x) VALUES (2)",
            "INSERT INTO t(x) VALUES (3)",
        ]
        result = db.execute_batch(statements)
        assert result.executed == 3
        assert len(result.errors) == 1
        db.commit()
        assert reader("t") == 2

    def test_commit_is_idempotent_when_idle(self, db: Database, batchlite_logs) -> None:
        assert db.commit() is True
        assert db.commit() is True
        assert db.transaction_state == TransactionState()
        assert not any("Committed" in r.getMessage() for r in batchlite_logs.records)

    def test_commit_logs_count(self, db: Database, batchlite_logs) -> None:
        db.execute_sql(["INSERT INTO t(x) VALUES (1)", "INSERT INTO t(x) VALUES (2)"])
        db.commit()
        assert any("Committed 2 operations" in r.getMessage() for r in batchlite_logs.records)

    def test_auto_commit_at_interval(self, make_db, reader) -> None:
        db = make_db(commit_interval=3)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        db.execute_sql("INSERT INTO t(x) VALUES (2)")
        assert db.transaction_state.pending_ops == 2
        assert reader("t") == 0

        db.execute_sql("INSERT INTO t(x) VALUES (3)")
        assert db.transaction_state == TransactionState()
        assert reader("t") == 3

    def test_batch_counts_every_statement_towards_interval(self, make_db, reader) -> None:
        db = make_db(commit_interval=4)
        db.execute_sql([f"INSERT INTO t(x) VALUES ({x})" for x in range(4)])
        assert db.transaction_state == TransactionState()
        assert reader("t") == 4

    def test_non_transactional_write_flushes_pending_batch(self, db: Database, reader) -> None:
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        db.execute_sql("INSERT INTO t(x) VALUES (2)", use_transaction=False)
        assert db.transaction_state == TransactionState()
        assert reader("t") == 2

    def test_non_transactional_write_is_not_counted(self, db: Database) -> None:
        db.execute_sql("INSERT INTO t(x) VALUES (1)", use_transaction=False)
        assert db.transaction_state == TransactionState()

    def test_close_commits_pending_batch(self, make_db, reader) -> None:
        db = make_db()
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        db.close()
        assert db.closed
        assert reader("t") == 1

    def test_context_manager_commits_on_exit(self, make_db, reader) -> None:
        with make_db() as db:
            db.insert_values("t", {"x": 7})
        assert reader("t") == 1


@pytest.mark.integration
class TestBatchErrorPolicy:
    STATEMENTS = [
        "INSERT INTO t(x) VALUES (1)",
        "INSERT INTO t(nope) VALUES (2)",
        "INSERT INTO t(x) VALUES (3)",
    ]

    def test_continue_runs_remaining_statements(self, make_db) -> None:
        db = make_db(batch_error_policy=BatchErrorPolicy.CONTINUE)
        result = db.execute_batch(self.STATEMENTS, return_insert_id=True)
        assert result.executed == 3
        assert result.value == [1, None, 2]
        assert not result.ok
        assert db.last_error.is_error

    def test_abort_stops_at_first_failure(self, make_db) -> None:
        db = make_db(batch_error_policy=BatchErrorPolicy.ABORT)
        result = db.execute_batch(self.STATEMENTS)
        assert result.executed == 2
        assert result.value == 1
        assert db.transaction_state.pending_ops == 2
        db.commit()
        assert [r["x"] for r in db.retrieve_records("t")] == [1]

    def test_batch_accepts_bound_parameters(self, db: Database) -> None:
        result = db.execute_batch(
            [("INSERT INTO t(x) VALUES (?)", (10,)), ("INSERT INTO t(x) VALUES (:x)", {"x": 20})]
        )
        assert result.ok
        assert result.value == 2
        assert [r["x"] for r in db.retrieve_records("t")] == [10, 20]


@pytest.mark.integration
class TestCoordinator:
    def test_failed_commit_leaves_state_for_retry(self, sqlite_path, schema_script, make_db) -> None:
        make_db().close()
        raw = sqlite3.connect(sqlite_path, isolation_level=None)
        try:
            proxy = _FailingCommitConnection(raw)
            tx = TransactionCoordinator(proxy, commit_interval=100)
            tx.execute_one("INSERT INTO t(x) VALUES (1)")

            assert tx.commit() is False
            assert tx.state == TransactionState(in_transaction=True, pending_ops=1)

            proxy.fail = False
            assert tx.commit() is True
            assert tx.state == TransactionState()
        finally:
            raw.close()

    def test_rejects_non_positive_interval(self) -> None:
        conn = sqlite3.connect(":memory:", isolation_level=None)
        try:
            with pytest.raises(ValueError):
                TransactionCoordinator(conn, commit_interval=0)
        finally:
            conn.close()

    def test_execute_one_returns_insert_id_or_rowcount(self) -> None:
        conn = sqlite3.connect(":memory:", isolation_level=None)
        try:
            conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, x INTEGER)")
            tx = TransactionCoordinator(conn)
            assert tx.execute_one("INSERT INTO t(x) VALUES (1)", return_insert_id=True).value == 1
            assert tx.execute_one("INSERT INTO t(x) VALUES (1)", return_insert_id=True).value == 2
            assert tx.execute_one("UPDATE t SET x = 5").value == 2
            tx.close()
            assert not conn.in_transaction
        finally:
            conn.close()


@pytest.mark.integration
class TestCommitFailures:
    def test_close_keeps_connection_when_commit_fails(self, make_db, sqlite_path: Path, reader) -> None:
        db = make_db(timeout=0.1)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            assert db.close() is False
            assert not db.closed
            assert db.last_error.is_error
            assert db.transaction_state == TransactionState(in_transaction=True, pending_ops=1)

        assert db.close() is True
        assert db.closed
        assert reader("t") == 1

    def test_close_raises_when_configured(self, make_db, sqlite_path: Path, reader) -> None:
        db = make_db(timeout=0.1, raise_on_error=True)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            with pytest.raises(ExecutionError, match="locked"):
                db.close()
            assert not db.closed
        db.close()
        assert reader("t") == 1

    def test_finalizer_logs_discarded_operations(self, make_db, sqlite_path: Path, batchlite_logs) -> None:
        db = make_db(timeout=0.1)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            db.__del__()
        assert db.closed
        assert any(
            r.levelname == "ERROR" and "Discarding 1 uncommitted operations" in r.getMessage()
            for r in batchlite_logs.records
        )

    def test_commit_failure_sets_last_error(self, make_db, sqlite_path: Path) -> None:
        db = make_db(timeout=0.1)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            assert db.commit() is False
            assert db.last_error.is_error
            assert "locked" in db.last_error.message
        assert db.commit() is True
        assert not db.last_error.is_error

    def test_commit_failure_raises_when_configured(self, make_db, sqlite_path: Path) -> None:
        db = make_db(timeout=0.1, raise_on_error=True)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            with pytest.raises(ExecutionError):
                db.commit()
        assert db.commit() is True

    def test_non_transactional_write_skipped_when_flush_fails(self, make_db, sqlite_path: Path, reader) -> None:
        db = make_db(timeout=0.1)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            result = db.execute_one("INSERT INTO t(x) VALUES (2)", use_transaction=False)
            assert not result.ok
            assert result.executed == 0
            assert result.value is None
            assert "locked" in result.last_error.message
            assert db.last_error == result.last_error
            assert db.transaction_state == TransactionState(in_transaction=True, pending_ops=1)

        assert db.commit() is True
        assert reader("t") == 1

    def test_non_transactional_batch_skipped_when_flush_fails(self, make_db, sqlite_path: Path, reader) -> None:
        db = make_db(timeout=0.1)
        db.execute_sql("INSERT INTO t(x) VALUES (1)")
        with read_lock(sqlite_path):
            result = db.execute_batch(
                ["INSERT INTO t(x) VALUES (2)", "INSERT INTO t(x) VALUES (3)"],
                use_transaction=False,
                return_insert_id=True,
            )
            assert not result.ok
            assert result.executed == 0
            assert result.value == []

        assert db.commit() is True
        assert reader("t") == 1
