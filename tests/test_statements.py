"""Tests for the named prepared-statement cache."""

from __future__ import annotations

import sqlite3

import pytest

from batchlite.database import Database, StatementCache, StatementNotFoundError
from batchlite.database.statements import PreparedStatementEntry, insert_name, update_name


@pytest.fixture
def memory_conn():
    conn = sqlite3.connect(":memory:", isolation_level=None)
    conn.execute("CREATE TABLE t (id INTEGER PRIMARY KEY, x INTEGER, y TEXT)")
    yield conn
    conn.close()


@pytest.mark.unit
class TestBinding:
    def test_missing_parameters_bind_null(self) -> None:
        entry = PreparedStatementEntry("t.insert", "INSERT INTO t(x,y) VALUES (:x,:y)", ("x", "y"))
        assert entry.bind({"x": 1}) == {"x": 1, "y": None}

    def test_leading_colon_and_extra_keys(self) -> None:
        entry = PreparedStatementEntry("t.insert", "INSERT INTO t(x) VALUES (:x)", ("x",))
        assert entry.bind({":x": 5, "other": 1}) == {"x": 5}

    def test_generated_names(self) -> None:
        assert insert_name("track") == "track.insert"
        assert update_name("track") == "track.update"


@pytest.mark.integration
class TestStatementCache:
    def test_prepare_registers_entry(self, memory_conn) -> None:
        cache = StatementCache(memory_conn)
        assert cache.prepare("add", "INSERT INTO t(x) VALUES (:x)", ["x"]) is True
        assert "add" in cache
        assert cache.get("add").parameter_names == ("x",)

    def test_prepare_does_not_execute(self, memory_conn) -> None:
        cache = StatementCache(memory_conn)
        cache.prepare("add", "INSERT INTO t(x) VALUES (:x)", ["x"])
        assert memory_conn.execute("SELECT COUNT(*) FROM t").fetchone()[0] == 0

    def test_compile_failure_is_not_registered(self, memory_conn, batchlite_logs) -> None:
        cache = StatementCache(memory_conn)
        assert cache.prepare("bad", "INSERT INTO nowhere(x) VALUES (:x)", ["x"]) is False
        assert "bad" not in cache
        assert any("DB error" in r.getMessage() for r in batchlite_logs.records)

    def test_reprepare_replaces(self, memory_conn) -> None:
        cache = StatementCache(memory_conn)
        cache.prepare("s", "SELECT x FROM t", [])
        cache.prepare("s", "SELECT y FROM t", [])
        assert len(cache) == 1
        assert cache.get("s").sql == "SELECT y FROM t"

    def test_unknown_name_raises(self, memory_conn) -> None:
        cache = StatementCache(memory_conn)
        with pytest.raises(StatementNotFoundError, match="Cannot find statement: nope"):
            cache.get("nope")

    def test_bounded_cache_evicts_least_recently_used(self, memory_conn, batchlite_logs) -> None:
        cache = StatementCache(memory_conn, max_entries=2)
        cache.prepare("a", "SELECT x FROM t", [])
        cache.prepare("b", "SELECT y FROM t", [])
        cache.get("a")
        cache.prepare("c", "SELECT id FROM t", [])
        assert cache.names() == ["a", "c"]
        assert any(
            "Evicted prepared statement: b" in r.getMessage() and r.levelname == "WARNING"
            for r in batchlite_logs.records
        )


@pytest.mark.integration
class TestDatabaseStatements:
    def test_insert_prepared_round_trip(self, db: Database) -> None:
        assert db.prepare_insert("item", ["a", "b"]) is True
        assert db.is_prepared("item")
        db.insert_prepared("item", {"a": 1, "b": 2})
        records = db.retrieve_records("item")
        assert len(records) == 1
        assert records[0]["a"] == 1
        assert records[0]["b"] == 2

    def test_missing_value_inserts_null(self, db: Database) -> None:
        db.prepare_insert("item", ["a", "b"])
        row_id = db.insert_prepared("item", {"a": 1}, return_insert_id=True)
        assert db.retrieve_values("item", ["a", "b"], "id", row_id) == {"a": 1, "b": None}

    def test_first_template_wins(self, db: Database) -> None:
        db.prepare_insert("item", ["a"])
        db.prepare_insert("item", ["a", "b"])
        db.insert_prepared("item", {"a": 1, "b": 2})
        assert db.retrieve_records("item")[0]["b"] is None

    def test_update_prepared(self, db: Database) -> None:
        row_id = db.insert_values("item", {"a": 1, "b": 1})
        db.prepare_update("item", ["a", "b"], "id")
        assert db.is_prepared("item", insert=False)
        assert db.update_prepared("item", {"id": row_id, "a": 9, "b": 8}) == 1
        assert db.retrieve_values("item", ["a", "b"], "id", row_id) == {"a": 9, "b": 8}

    def test_unprepared_insert_returns_none(self, db: Database, batchlite_logs) -> None:
        assert db.insert_prepared("item", {"a": 1}) is None
        assert any("Cannot find INSERT parameters: item" in r.getMessage() for r in batchlite_logs.records)

    def test_unknown_statement_returns_none(self, db: Database) -> None:
        assert db.execute_statement("nope", {}) is None

    def test_unknown_statement_raises_when_configured(self, make_db) -> None:
        db = make_db(raise_on_error=True)
        with pytest.raises(StatementNotFoundError):
            db.execute_statement("nope", {})

    def test_custom_statement(self, db: Database) -> None:
        db.prepare("kv.put", "INSERT INTO kv(id, val) VALUES (:id, :val)", ["id", "val"])
        assert db.execute_statement("kv.put", {"id": "k", "val": "v"}) == 1
        assert db.retrieve_value("kv", "val", "id", "k") == "v"
