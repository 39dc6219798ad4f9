"""Low-level read execution.

Every read in the package ends up in `execute_query`, which runs the
statement, passes a driver failure through the error check and re-raises
it as an `ExecutionError`. Writes go through the transaction coordinator
instead.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Iterator, Mapping, Sequence
from typing import Any, Union

from .builder import Clause
from .errors import check_error, from_sqlite_error

logger = logging.getLogger(__name__)

QueryParams = Union[Sequence[Any], Mapping[str, Any], None]
Row = dict[str, Any]


def execute_query(conn: sqlite3.Connection, query: str | Clause, params: QueryParams = None) -> sqlite3.Cursor:
    """Run `query` and hand back the open cursor.

    A `Clause` carries its own parameters; `params` is ignored for it.

    Raises:
        ExecutionError: The statement failed; the error check has logged it.
    """
    if isinstance(query, Clause):
        sql, params = query.sql, query.params
    else:
        sql = query
    try:
        cursor = conn.execute(sql, params if params is not None else ())
    except sqlite3.Error as exc:
        check_error(exc, "queries.execute_query")
        raise from_sqlite_error(exc) from exc
    logger.debug("Query: %s", sql[:80])
    return cursor


def fetch_one(conn: sqlite3.Connection, query: str | Clause, params: QueryParams = None) -> Row | None:
    """First row of `query`, or None."""
    first = execute_query(conn, query, params).fetchone()
    return dict(first) if first is not None else None


def fetch_all(conn: sqlite3.Connection, query: str | Clause, params: QueryParams = None) -> list[Row]:
    """Every row of `query`, materialized."""
    return [dict(row) for row in execute_query(conn, query, params).fetchall()]


def iter_rows(conn: sqlite3.Connection, query: str | Clause, params: QueryParams = None) -> Iterator[Row]:
    """Yield the rows of `query` lazily.

    The statement runs on the first `next()`, so failures surface there.
    The cursor is closed once exhausted or when the generator is closed.
    """
    cursor = execute_query(conn, query, params)
    try:
        for row in cursor:
            yield dict(row)
    finally:
        cursor.close()
