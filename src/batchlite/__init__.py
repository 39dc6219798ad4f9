"""
batchlite core package.

A transactional SQL execution layer over a single embedded SQLite file:
- `batchlite.database`: the `Database` facade, batched transactions,
  prepared-statement cache, SQL builders and retrieval helpers
- `batchlite.logsink`: leveled event logging with console, rotating file
  and syslog sinks
- `batchlite.cli`: a Typer-based CLI for maintenance tasks

Configuration:
- Shared, project-wide anchors and defaults live in `batchlite.global_config`.
- Per-instance settings live on `batchlite.database.DatabaseConfig`.
"""

from .database import Database, DatabaseConfig

__all__ = ["Database", "DatabaseConfig"]
