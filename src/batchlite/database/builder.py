"""SQL text construction from table and column metadata.

Every function here is pure. Identifiers (tables, columns) are validated
and written into the SQL text; values are never written into the text but
carried alongside it as bound parameters in a `Clause`. Plain strings are
accepted wherever a `Clause` is, and are treated as trusted SQL fragments
written by the calling application.
"""

from __future__ import annotations

import re
from collections.abc import Iterable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any, Union
from urllib.parse import unquote

_IDENTIFIER_RE = re.compile(r"^[A-Za-z_][A-Za-z0-9_]*(\.[A-Za-z_][A-Za-z0-9_]*)?$")
_SORT_KEY_RE = re.compile(r"sort\(([_+ -])(.+)\)")
_BETWEEN_RE = re.compile(r"BETWEEN\s+(.+?)\s+AND\s+(.+)")


@dataclass(frozen=True)
class Clause:
    """A SQL fragment and the values bound to its ``?`` placeholders."""

    sql: str
    params: tuple[Any, ...] = ()

    def __str__(self) -> str:
        return self.sql


Fragment = Union[str, Clause]
WhereArg = Union[Fragment, Iterable[Fragment], None]


def validate_identifier(name: str) -> str:
    """Validate SQL identifier to prevent injection.

    Accepts ``name`` or ``table.name`` made of letters, digits and
    underscores, not starting with a digit.

    Args:
        name: SQL identifier (table or column name) to validate.

    Returns:
        The identifier, unchanged.

    Raises:
        ValueError: If identifier contains unsafe characters.
    """
    if not isinstance(name, str) or not _IDENTIFIER_RE.match(name):
        msg = f"Unsafe SQL identifier: {name!r}"
        raise ValueError(msg)
    return name


def validate_columns(columns: Sequence[str]) -> list[str]:
    """Validate a select list; ``*`` is allowed alongside identifiers."""
    if isinstance(columns, str):
        columns = [columns]
    if not columns:
        raise ValueError("At least one column is required")
    return [column if column == "*" else validate_identifier(column) for column in columns]


def quote(value: Any) -> str:
    """Render `value` as a SQL literal.

    Strings are single-quoted with embedded quotes doubled, None becomes
    NULL and numbers are written as-is. Builders in this module bind values
    instead; this is for callers composing trusted fragments by hand.
    """
    if value is None:
        return "NULL"
    if isinstance(value, bool):
        return str(int(value))
    if isinstance(value, (int, float)):
        return repr(value)
    return "'" + str(value).replace("'", "''") + "'"


def equals(column: str, value: Any) -> Clause:
    return Clause(f"{validate_identifier(column)} = ?", (value,))


def assignments(values: Mapping[str, Any]) -> Clause:
    """Build a ``col = ?, ...`` SET list from a column -> value mapping."""
    if not values:
        raise ValueError("At least one column to set is required")
    parts = [f"{validate_identifier(column)} = ?" for column in values]
    return Clause(", ".join(parts), tuple(values.values()))


def _as_clause(fragment: Fragment) -> Clause:
    return fragment if isinstance(fragment, Clause) else Clause(str(fragment))


def combine_where(where: WhereArg) -> Clause | None:
    """Join WHERE fragments with AND.

    Args:
        where: A fragment, an iterable of fragments, or None. Empty
            fragments are skipped.

    Returns:
        The combined clause (without the WHERE keyword), or None when
        nothing remains.
    """
    if where is None:
        return None
    if isinstance(where, (str, Clause)):
        where = [where]
    clauses = [_as_clause(fragment) for fragment in where if str(fragment).strip()]
    if not clauses:
        return None
    if len(clauses) == 1:
        return clauses[0]
    sql = " AND ".join(f"({clause.sql})" for clause in clauses)
    params = tuple(param for clause in clauses for param in clause.params)
    return Clause(sql, params)


@dataclass
class QuerySpec:
    """Description of a SELECT built per call."""

    table: str
    columns: Sequence[str] = ("*",)
    where: WhereArg = None
    group_by: str | None = None
    order_by: str | None = None
    limit: int | None = None
    distinct: bool = False


def build_select(spec: QuerySpec) -> Clause:
    """Assemble a SELECT in fixed clause order: WHERE, GROUP BY, ORDER BY, LIMIT.

    Absent parts are omitted entirely. The limit is bound as a parameter.

    Args:
        spec: Query description.

    Returns:
        Clause holding the statement text and its parameters.

    Raises:
        ValueError: If the table or a selected column is not a valid
            identifier.
    """
    table = validate_identifier(spec.table)
    columns = ",".join(validate_columns(spec.columns))
    keyword = "SELECT DISTINCT" if spec.distinct else "SELECT"
    sql = f"{keyword} {columns} FROM {table}"  # noqa: S608
    params: list[Any] = []

    where = combine_where(spec.where)
    if where is not None:
        sql += f" WHERE {where.sql}"
        params.extend(where.params)
    if spec.group_by:
        sql += f" GROUP BY {spec.group_by}"
    if spec.order_by:
        sql += f" ORDER BY {spec.order_by}"
    if spec.limit is not None:
        sql += " LIMIT ?"
        params.append(int(spec.limit))
    return Clause(sql, tuple(params))


def build_insert(table: str, columns: Sequence[str], replace: bool = False) -> tuple[str, list[str]]:
    """Build a named-parameter INSERT template.

    Returns:
        ``("INSERT [OR REPLACE] INTO t(a,b) VALUES (:a,:b)", ["a", "b"])``.
    """
    validate_identifier(table)
    keys = [validate_identifier(column) for column in columns]
    if not keys:
        raise ValueError(f"No columns given for INSERT into {table}")
    verb = "INSERT OR REPLACE" if replace else "INSERT"
    placeholders = ",".join(f":{key}" for key in keys)
    sql = f"{verb} INTO {table}({','.join(keys)}) VALUES ({placeholders})"  # noqa: S608
    return sql, keys


def build_update(table: str, columns: Sequence[str], id_column: str) -> tuple[str, list[str]]:
    """Build a named-parameter UPDATE template keyed on `id_column`.

    Returns:
        ``("UPDATE t SET a = :a,b = :b WHERE id = :id", ["a", "b", "id"])``.
    """
    validate_identifier(table)
    keys = [validate_identifier(column) for column in columns]
    if not keys:
        raise ValueError(f"No columns given for UPDATE of {table}")
    validate_identifier(id_column)
    sets = ",".join(f"{key} = :{key}" for key in keys)
    sql = f"UPDATE {table} SET {sets} WHERE {id_column} = :{id_column}"  # noqa: S608
    return sql, [*keys, id_column]


@dataclass
class Criteria:
    """Filter and sort criteria taken from request parameters."""

    filters: list[Clause] = field(default_factory=list)
    sort: list[str] = field(default_factory=list)

    @property
    def order_by(self) -> str | None:
        return ", ".join(self.sort) if self.sort else None


def _strip_quotes(value: str) -> str:
    value = value.strip()
    if len(value) >= 2 and value[0] == value[-1] and value[0] in "'\"":
        return value[1:-1]
    return value


def translate_criteria(params: Mapping[str, str]) -> Criteria:
    """Turn request query parameters into filter clauses and a sort order.

    - ``sort(+field)`` / ``sort(-field)`` keys become ``field ASC`` /
      ``field DESC``.
    - A value containing ``BETWEEN x AND y`` becomes
      ``field BETWEEN ? AND ?`` with both bounds bound.
    - A value containing ``*`` becomes ``field LIKE ?`` with ``*`` mapped
      to ``%``.
    - Anything else becomes ``field = ?``.

    Args:
        params: Query parameters, name -> raw (possibly url-encoded) value.

    Returns:
        Criteria with filters in parameter order.

    Raises:
        ValueError: If a filtered or sorted field is not a valid identifier.
    """
    criteria = Criteria()
    for key, raw in params.items():
        sort = _SORT_KEY_RE.fullmatch(key)
        if sort:
            direction = "DESC" if sort.group(1) == "-" else "ASC"
            criteria.sort.append(f"{validate_identifier(sort.group(2))} {direction}")
            continue

        column = validate_identifier(key)
        value = unquote(str(raw))
        between = _BETWEEN_RE.search(value)
        if between:
            low, high = (_strip_quotes(bound) for bound in between.groups())
            criteria.filters.append(Clause(f"{column} BETWEEN ? AND ?", (low, high)))
        elif "*" in value:
            criteria.filters.append(Clause(f"{column} LIKE ?", (value.replace("*", "%"),)))
        else:
            criteria.filters.append(Clause(f"{column} = ?", (value,)))
    return criteria
