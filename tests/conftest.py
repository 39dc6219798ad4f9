from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator
from pathlib import Path

import pytest

from batchlite.database import Database, DatabaseConfig
from batchlite.logsink import reset_logging

SCHEMA_SQL = """
CREATE TABLE t (id INTEGER PRIMARY KEY, x INTEGER);
CREATE TABLE kv (id TEXT PRIMARY KEY, val TEXT);
CREATE TABLE item (id INTEGER PRIMARY KEY, a INTEGER, b INTEGER, label TEXT);
CREATE TABLE opt (k TEXT, label TEXT);
CREATE TABLE grp (gid INTEGER PRIMARY KEY, name TEXT);
CREATE TABLE member (mid INTEGER PRIMARY KEY, gid INTEGER, title TEXT);
"""


@pytest.fixture(autouse=True)
def app_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Forces test mode. Application code can use this to refuse dangerous behaviors.
    Automatically applied to all tests.
    """
    monkeypatch.setenv("APP_ENV", "test")


@pytest.fixture(autouse=True)
def clean_logging() -> Iterator[None]:
    """Start and end every test without configured sinks."""
    reset_logging()
    yield
    reset_logging()


@pytest.fixture
def project_root(tmp_path: Path) -> Path:
    """
    A dedicated temp root directory for each test.
    All filesystem writes in tests should be under this root (or tmp_path directly).
    """
    root = tmp_path / "proj"
    (root / "data" / "in").mkdir(parents=True)
    (root / "data" / "out").mkdir(parents=True)
    return root


@pytest.fixture(autouse=True)
def chdir_to_project_root(project_root: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """
    Automatically change working directory to project_root for all tests.
    This ensures relative-path operations go into the temp directory by default.
    """
    monkeypatch.chdir(project_root)


@pytest.fixture
def sqlite_path(project_root: Path) -> Path:
    """
    On-disk SQLite DB under the temp project root (more realistic than :memory:).
    """
    return project_root / "data" / "out" / "test.sqlite"


@pytest.fixture
def schema_script(project_root: Path) -> Path:
    """Bootstrap script creating the tables used across the test suite."""
    script = project_root / "data" / "in" / "schema.sql"
    script.write_text(SCHEMA_SQL, encoding="utf-8")
    return script


@pytest.fixture
def make_db(sqlite_path: Path, schema_script: Path, project_root: Path) -> Iterator:
    """
    Factory for Database instances on the test file, all closed after the test.

    Safety enforcement:
    - Path assertion: DB must be under project_root (prevents touching real DBs)
    """
    try:
        sqlite_path.resolve().relative_to(project_root.resolve())
    except ValueError:
        raise AssertionError(
            f"SQLite path {sqlite_path} is not under project_root {project_root}. "
            "This prevents accidental writes to real databases."
        )

    opened: list[Database] = []

    def _make(**config: object) -> Database:
        init = not sqlite_path.exists()
        db = Database(
            sqlite_path,
            init_script=schema_script if init else None,
            config=DatabaseConfig(**config),
        )
        opened.append(db)
        return db

    yield _make
    for db in opened:
        db.close()


@pytest.fixture
def db(make_db) -> Database:
    """A Database on a freshly bootstrapped file with default settings."""
    return make_db()


@pytest.fixture
def reader(sqlite_path: Path) -> Iterator:
    """
    Count committed rows through a second connection.

    Only what the Database under test has committed is visible here.
    """

    def _count(table: str) -> int:
        conn = sqlite3.connect(sqlite_path, timeout=0.5)
        try:
            return conn.execute(f"SELECT COUNT(*) FROM {table}").fetchone()[0]  # noqa: S608
        finally:
            conn.close()

    yield _count


@pytest.fixture
def batchlite_logs(caplog: pytest.LogCaptureFixture) -> pytest.LogCaptureFixture:
    """caplog capturing every batchlite record from DEBUG up."""
    caplog.set_level(logging.DEBUG, logger="batchlite")
    return caplog
