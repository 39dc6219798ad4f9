"""CLI commands for database maintenance."""

from pathlib import Path
from typing import Annotated, Any

import typer
from rich.console import Console
from rich.table import Table

from ... import global_config as g
from ...database import Database, DatabaseConfig
from ..base import BaseCLI

db_app = typer.Typer(help="Database maintenance commands.")

DbPathOption = Annotated[
    Path,
    typer.Option(
        "--db-path",
        help="Path to SQLite database file (defaults to global config)",
    ),
]


def _open(db_path: Path, **kwargs: Any) -> Database:
    return Database(db_path, config=DatabaseConfig(raise_on_error=True), **kwargs)


class DatabaseCLI(BaseCLI):
    """CLI helpers for database maintenance."""

    def __init__(self) -> None:
        """Initialize DatabaseCLI with db domain name."""
        super().__init__("db")

    def init_db(self, *, db_path: Path, script: Path, page_size: int | None) -> dict[str, Any]:
        """Create or extend a database by running a bootstrap script.

        Returns:
            Standardized result dictionary listing the resulting tables.
        """
        return self.handle_cli_operation(
            operation="db init",
            op_callable=lambda: self._init_operation(db_path=db_path, script=script, page_size=page_size),
            pre_message=f"Initializing {db_path}...",
        )

    def exec_file(self, *, db_path: Path, sql_file: Path) -> dict[str, Any]:
        """Run a SQL script file against an existing database."""
        return self.handle_cli_operation(
            operation="db exec",
            op_callable=lambda: self._exec_operation(db_path=db_path, sql_file=sql_file),
            pre_message=f"Executing {sql_file.name}...",
        )

    def query(self, *, db_path: Path, sql: str, limit: int | None) -> list[dict[str, Any]]:
        """Run a read-only query and return its rows."""
        return self.handle_cli_operation(
            operation="db query",
            op_callable=lambda: self._query_operation(db_path=db_path, sql=sql, limit=limit),
            quiet=True,
        )

    def vacuum(self, *, db_path: Path) -> dict[str, Any]:
        """Rebuild the database file."""
        return self.handle_cli_operation(
            operation="db vacuum",
            op_callable=lambda: self._vacuum_operation(db_path=db_path),
            pre_message="Vacuuming database...",
        )

    def empty(self, *, db_path: Path, tables: list[str] | None) -> dict[str, Any]:
        """Delete every row of the given tables (all tables by default)."""
        return self.handle_cli_operation(
            operation="db empty",
            op_callable=lambda: self._empty_operation(db_path=db_path, tables=tables),
            pre_message="Emptying tables...",
        )

    def list_tables(self, *, db_path: Path) -> list[str]:
        """List the user tables of the database."""
        return self.handle_cli_operation(
            operation="db tables",
            op_callable=lambda: self._tables_operation(db_path=db_path),
        )

    def _init_operation(self, *, db_path: Path, script: Path, page_size: int | None) -> dict[str, Any]:
        if not script.exists():
            raise FileNotFoundError(f"Bootstrap script not found: {script}")
        with _open(db_path, init_script=script, page_size=page_size) as db:
            tables = db.tables()
        return {
            "success": True,
            "total": len(tables),
            "message": "Database initialized",
            "items": tables,
        }

    def _exec_operation(self, *, db_path: Path, sql_file: Path) -> dict[str, Any]:
        with _open(db_path) as db:
            db.execute_sql_file(sql_file)
        return {"success": True, "message": f"Executed {sql_file.name}"}

    def _query_operation(self, *, db_path: Path, sql: str, limit: int | None) -> list[dict[str, Any]]:
        with _open(db_path) as db:
            rows = db.retrieve_records_sql(sql)
        return rows[:limit] if limit is not None else rows

    def _vacuum_operation(self, *, db_path: Path) -> dict[str, Any]:
        with _open(db_path) as db:
            db.vacuum()
        return {"success": True, "message": "Database vacuumed"}

    def _empty_operation(self, *, db_path: Path, tables: list[str] | None) -> dict[str, Any]:
        with _open(db_path) as db:
            deleted = db.empty_tables(tables or None)
        return {
            "success": True,
            "total": sum(deleted.values()),
            "message": "Rows deleted per table",
            "items": deleted,
        }

    def _tables_operation(self, *, db_path: Path) -> list[str]:
        with _open(db_path) as db:
            return db.tables()


def render_rows(rows: list[dict[str, Any]], *, title: str | None = None) -> Table:
    """Build a rich table with one column per key of the first row."""
    table = Table(title=title)
    columns = list(rows[0]) if rows else []
    for column in columns:
        table.add_column(str(column))
    for row in rows:
        table.add_row(*("NULL" if row[column] is None else str(row[column]) for column in columns))
    return table


cli = DatabaseCLI()


@db_app.command("init")
def init_command(
    script: Annotated[Path, typer.Argument(help="Bootstrap script of ;-separated statements")],
    db_path: DbPathOption = g.DEFAULT_DB_PATH,
    page_size: Annotated[
        int | None,
        typer.Option("--page-size", help="Page size for a new database file"),
    ] = None,
) -> None:
    """Create a database (or extend an existing one) from a bootstrap script.

    Exits with code 1 if the script is missing or any statement fails.
    """
    cli.init_db(db_path=db_path, script=script, page_size=page_size)


@db_app.command("exec")
def exec_command(
    sql_file: Annotated[Path, typer.Argument(help="SQL script to execute")],
    db_path: DbPathOption = g.DEFAULT_DB_PATH,
) -> None:
    """Execute a SQL script file outside of any batching transaction."""
    cli.exec_file(db_path=db_path, sql_file=sql_file)


@db_app.command("query")
def query_command(
    sql: Annotated[str, typer.Argument(help="SELECT statement to run")],
    db_path: DbPathOption = g.DEFAULT_DB_PATH,
    limit: Annotated[
        int | None,
        typer.Option("--limit", "-n", help="Show at most this many rows"),
    ] = None,
) -> None:
    """Run a query and print the rows as a table."""
    rows = cli.query(db_path=db_path, sql=sql, limit=limit)
    Console().print(render_rows(rows, title=f"{len(rows)} row(s)"))


@db_app.command("vacuum")
def vacuum_command(db_path: DbPathOption = g.DEFAULT_DB_PATH) -> None:
    """Rebuild the database file, reclaiming free pages."""
    cli.vacuum(db_path=db_path)


@db_app.command("empty")
def empty_command(
    db_path: DbPathOption = g.DEFAULT_DB_PATH,
    tables: Annotated[
        list[str] | None,
        typer.Option("--table", "-t", help="Table to empty (repeatable; default: all)"),
    ] = None,
) -> None:
    """Delete every row of the selected tables."""
    cli.empty(db_path=db_path, tables=tables)


@db_app.command("tables")
def tables_command(db_path: DbPathOption = g.DEFAULT_DB_PATH) -> None:
    """List the user tables."""
    cli.list_tables(db_path=db_path)


app = db_app
