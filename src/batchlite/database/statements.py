"""Named prepared statements.

Each entry pairs a logical name (``"<table>.insert"``, ``"<table>.update"``
or any caller-chosen name) with its SQL template and the ordered list of
named parameters it expects. The compiled form is held by sqlite3's own
per-connection statement cache, keyed by the SQL text.
"""

from __future__ import annotations

import logging
import sqlite3
from collections import OrderedDict
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from typing import Any

from ..logsink import EventLevel, log_event
from .errors import check_error, ensure_found

logger = logging.getLogger(__name__)


def insert_name(table: str) -> str:
    return f"{table}.insert"


def update_name(table: str) -> str:
    return f"{table}.update"


@dataclass(frozen=True)
class PreparedStatementEntry:
    """A registered statement template."""

    name: str
    sql: str
    parameter_names: tuple[str, ...]

    def bind(self, values: Mapping[str, Any]) -> dict[str, Any]:
        """Build the named-parameter mapping for one execution.

        Declared parameters missing from `values` bind as NULL; keys that
        are not declared parameters are ignored. Keys may carry the
        placeholder's leading colon (``":name"``).
        """
        given = {str(key).lstrip(":"): value for key, value in values.items()}
        return {name: given.get(name) for name in self.parameter_names}


class StatementCache:
    """Registry of prepared statements for one connection.

    Unbounded by default. With `max_entries` set, the least recently used
    entry is evicted once the limit is exceeded.
    """

    def __init__(self, conn: sqlite3.Connection, *, max_entries: int | None = None) -> None:
        self._conn = conn
        self._entries: OrderedDict[str, PreparedStatementEntry] = OrderedDict()
        self.max_entries = max_entries

    def __contains__(self, name: object) -> bool:
        return name in self._entries

    def __len__(self) -> int:
        return len(self._entries)

    def names(self) -> list[str]:
        return list(self._entries)

    def _compile(self, sql: str, parameter_names: tuple[str, ...]) -> sqlite3.Error | None:
        # EXPLAIN compiles the statement without running it
        params: dict[str, Any] | tuple = dict.fromkeys(parameter_names) if parameter_names else ()
        try:
            self._conn.execute(f"EXPLAIN {sql}", params).fetchall()
        except sqlite3.Error as exc:
            return exc
        return None

    def prepare(self, name: str, sql: str, parameter_names: Iterable[str]) -> bool:
        """Compile `sql` and register it under `name`.

        An existing entry with the same name is replaced.

        Args:
            name: Logical statement name.
            sql: Statement text using ``:name`` placeholders.
            parameter_names: Placeholder names, in binding order.

        Returns:
            True if the statement compiled and was registered.

        Logs:
            - DEBUG: "Prepared statement: {name}" on success.
            - ERROR: via check_error if the statement fails to compile.
            - WARNING: "Evicted prepared statement: {name}" when bounded.
        """
        component = "StatementCache.prepare"
        names = tuple(parameter_names)
        error = self._compile(sql, names)
        if error is not None:
            check_error(error, component)
            return False

        self._entries[name] = PreparedStatementEntry(name=name, sql=sql, parameter_names=names)
        self._entries.move_to_end(name)
        log_event(component, f"Prepared statement: {name}")

        if self.max_entries is not None:
            while len(self._entries) > self.max_entries:
                evicted, _ = self._entries.popitem(last=False)
                log_event(component, f"Evicted prepared statement: {evicted}", EventLevel.WARNING)
        return True

    def get(self, name: str) -> PreparedStatementEntry:
        """Return the entry registered under `name`.

        Raises:
            StatementNotFoundError: If nothing is registered under `name`.
        """
        entry = ensure_found(self._entries.get(name), f"Cannot find statement: {name}")
        self._entries.move_to_end(name)
        return entry

    def is_prepared(self, table: str, insert: bool = True) -> bool:
        """Whether the generated INSERT (or UPDATE) template for `table` exists."""
        return (insert_name(table) if insert else update_name(table)) in self._entries
