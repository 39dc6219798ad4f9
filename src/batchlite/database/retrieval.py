"""Read-only retrieval helpers.

These functions run a built or supplied query and shape the rows into
lists, keyed mappings or id/label options. They never open or close
connections and never touch the batching transaction; reads see whatever
the connection has written so far, committed or not.
"""

from __future__ import annotations

import logging
import sqlite3
from collections.abc import Callable, Iterator, Sequence
from typing import Any

from . import queries
from .errors import usage_error
from .builder import QuerySpec, WhereArg, build_select, combine_where, equals, validate_identifier

logger = logging.getLogger(__name__)

Row = dict[str, Any]


def _key(column: str) -> str:
    """Name under which sqlite3 reports a selected column."""
    return column.rsplit(".", 1)[-1]


def _require_column(cursor: sqlite3.Cursor, column: str, component: str) -> None:
    if column not in [d[0] for d in cursor.description or ()]:
        cursor.close()
        raise usage_error(f"Column {column!r} is not in the result", component)


def retrieve_records(
    conn: sqlite3.Connection,
    table: str,
    where: WhereArg = None,
    *,
    with_rowid: bool = False,
) -> list[Row]:
    """Return every column of the rows in `table` matching `where`."""
    columns = ["ROWID", "*"] if with_rowid else ["*"]
    return queries.fetch_all(conn, build_select(QuerySpec(table, columns, where=where)))


def retrieve_records_sql(
    conn: sqlite3.Connection,
    sql: str,
    params: tuple | dict | None = None,
    *,
    id_column: str | None = None,
) -> list[Row] | dict[Any, Row]:
    """Run `sql` and return its rows.

    Args:
        conn: Database connection.
        sql: Query text.
        params: Values bound to the query's placeholders.
        id_column: When given, key the rows by this column instead of
            returning a list. The last row wins on duplicate keys.

    Returns:
        List of row dicts, or dict of row dicts keyed by `id_column`.

    Raises:
        ExecutionError: The query failed, or `id_column` is not one of its
            result columns.
    """
    if not id_column:
        return list(queries.iter_rows(conn, sql, params))
    cursor = queries.execute_query(conn, sql, params)
    _require_column(cursor, id_column, "retrieval.retrieve_records_sql")
    return {row[id_column]: row for row in map(dict, cursor.fetchall())}


def retrieve_record_sql(
    conn: sqlite3.Connection,
    sql: str,
    params: tuple | dict | None = None,
) -> Row | None:
    """Run `sql` and return its last row, or None when it yields no rows."""
    record = None
    for record in queries.iter_rows(conn, sql, params):  # noqa: B007
        pass
    return record


def _id_label_select(
    table: str,
    id_column: str,
    label_column: str | None,
    where: WhereArg,
    group_by: str | None,
    order_by: str | None,
) -> tuple[QuerySpec, str, str]:
    validate_identifier(id_column)
    if not label_column or label_column == id_column:
        columns, label_column = [id_column], id_column
    else:
        columns = [id_column, validate_identifier(label_column)]
    spec = QuerySpec(
        table,
        columns,
        where=where,
        group_by=group_by,
        order_by=order_by,
        distinct=True,
    )
    return spec, _key(id_column), _key(label_column)


def retrieve_list(
    conn: sqlite3.Connection,
    table: str,
    id_column: str,
    label_column: str | None = None,
    where: WhereArg = None,
    group_by: str | None = None,
    order_by: str | None = None,
) -> list[dict[str, Any]]:
    """Return distinct ``{"id", "label"}`` pairs for selection lists.

    The id doubles as the label when no distinct label column is given.
    """
    spec, id_key, label_key = _id_label_select(table, id_column, label_column, where, group_by, order_by)
    return [
        {"id": row[id_key], "label": row[label_key]}
        for row in queries.iter_rows(conn, build_select(spec))
    ]


def retrieve_options(
    conn: sqlite3.Connection,
    table: str,
    id_column: str,
    label_column: str | None = None,
    where: WhereArg = None,
    group_by: str | None = None,
    order_by: str | None = None,
) -> dict[Any, Any]:
    """Return distinct id -> label options; a later row overwrites an earlier id."""
    spec, id_key, label_key = _id_label_select(table, id_column, label_column, where, group_by, order_by)
    return {row[id_key]: row[label_key] for row in queries.iter_rows(conn, build_select(spec))}


def iter_columns(
    conn: sqlite3.Connection,
    table: str,
    columns: Sequence[str],
    where: WhereArg = None,
    group_by: str | None = None,
    order_by: str | None = None,
) -> Iterator[Row]:
    """Stream the selected columns one row at a time.

    The query runs when iteration starts; the iterator is finite and cannot
    be restarted without calling this function again.
    """
    spec = QuerySpec(table, columns, where=where, group_by=group_by, order_by=order_by)
    return queries.iter_rows(conn, build_select(spec))


def retrieve_columns(
    conn: sqlite3.Connection,
    table: str,
    columns: Sequence[str],
    where: WhereArg = None,
    group_by: str | None = None,
    order_by: str | None = None,
    limit: int | None = None,
    *,
    log_sql: bool = False,
) -> list[Row]:
    """Return the distinct selected columns as a fully materialized list."""
    query = build_select(
        QuerySpec(
            table,
            columns,
            where=where,
            group_by=group_by,
            order_by=order_by,
            limit=limit,
            distinct=True,
        )
    )
    if log_sql:
        logger.info("sql=%s params=%s", query.sql, query.params)
    return queries.fetch_all(conn, query)


def stream_columns(
    conn: sqlite3.Connection,
    callback: Callable[[Row], Any],
    table: str,
    columns: Sequence[str],
    where: WhereArg = None,
    group_by: str | None = None,
    order_by: str | None = None,
) -> int:
    """Hand each selected row to `callback`; returns the number of rows handled."""
    count = 0
    for row in iter_columns(conn, table, columns, where, group_by, order_by):
        callback(row)
        count += 1
    return count


def retrieve_values(
    conn: sqlite3.Connection,
    table: str,
    value_columns: Sequence[str],
    id_column: str,
    id_value: Any,
    where: WhereArg = None,
    *,
    log_sql: bool = False,
) -> Row | None:
    """Return `value_columns` of the first row whose `id_column` equals `id_value`."""
    conditions = [equals(id_column, id_value)]
    extra = combine_where(where)
    if extra is not None:
        conditions.append(extra)
    query = build_select(QuerySpec(table, value_columns, where=conditions))
    if log_sql:
        logger.debug("sql=%s params=%s", query.sql, query.params)
    return queries.fetch_one(conn, query)


def retrieve_value(
    conn: sqlite3.Connection,
    table: str,
    value_column: str,
    id_column: str | None = None,
    id_value: Any = None,
    where: WhereArg = None,
) -> Any:
    """Return a single value, or ``""`` when no row matches.

    The id filter applies only when both `id_column` and `id_value` are
    given. If several rows match, the last one wins.
    """
    conditions = []
    if id_column and id_value not in (None, ""):
        conditions.append(equals(id_column, id_value))
    extra = combine_where(where)
    if extra is not None:
        conditions.append(extra)
    query = build_select(QuerySpec(table, [value_column], where=conditions))
    value: Any = ""
    for row in queries.iter_rows(conn, query):
        value = row[_key(value_column)]
    return value


def retrieve_group(
    conn: sqlite3.Connection,
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
    """Nest the items of `item_table` under their groups from `group_table`.

    One query enumerates the groups, then one query per group fetches the
    items whose `group_id` column matches it (an N+1 pattern, fine for a
    small number of groups). Groups without items are left out.

    Args:
        conn: Database connection.
        group_table: Table listing the groups.
        group_columns: Group columns to return; must include `group_id`.
        group_id: Column identifying a group in both tables.
        item_table: Table listing the items.
        item_columns: Item columns to return; must include `item_id`.
        item_id: Column identifying an item.
        item_where: Extra condition on the items.
        group_order: ORDER BY for the groups.
        item_order: ORDER BY for the items within each group.

    Returns:
        ``{group_key: {<group columns>, "items": {item_key: {<item columns>}}}}``
        in group order.

    Raises:
        ExecutionError: A query failed, or `group_id`/`item_id` is missing
            from the selected columns.
    """
    component = "retrieval.retrieve_group"
    group_key, item_key = _key(group_id), _key(item_id)
    cursor = queries.execute_query(
        conn, build_select(QuerySpec(group_table, group_columns, order_by=group_order))
    )
    _require_column(cursor, group_key, component)
    groups = [dict(row) for row in cursor.fetchall()]

    results: dict[Any, dict[str, Any]] = {}
    for group in groups:
        conditions = []
        extra = combine_where(item_where)
        if extra is not None:
            conditions.append(extra)
        conditions.append(equals(group_id, group[group_key]))
        item_query = build_select(
            QuerySpec(item_table, item_columns, where=conditions, order_by=item_order)
        )

        item_cursor = queries.execute_query(conn, item_query)
        _require_column(item_cursor, item_key, component)
        items = {
            item[item_key]: {_key(column): item[_key(column)] for column in item_columns}
            for item in map(dict, item_cursor.fetchall())
        }
        if not items:
            continue
        entry = {_key(column): group[_key(column)] for column in group_columns}
        entry["items"] = items
        results[group[group_key]] = entry
    return results
