"""Leveled event logging shared by every batchlite component.

Components report through `log_event(component, message, level)`, which
forwards to the stdlib `logging` tree under the ``batchlite`` namespace.
Where the records end up (console, rotating file, system log) is decided
once, by `configure_logging`.
"""

from __future__ import annotations

import enum
import logging
import logging.handlers
import sys
from pathlib import Path

from . import global_config as g

logger = logging.getLogger(g.PACKAGE_NAME)

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
LOG_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"

_LOGGING_CONFIGURED = False
_CONFIGURED_HANDLERS: list[logging.Handler] = []


class EventLevel(enum.IntEnum):
    """Severity of a logged event, valued as the matching stdlib level."""

    DEBUG = logging.DEBUG
    INFORMATION = logging.INFO
    WARNING = logging.WARNING
    CRITICAL = logging.CRITICAL
    ERROR = logging.ERROR


def log_event(
    component: str,
    message: str,
    level: EventLevel = EventLevel.DEBUG,
) -> None:
    """Record an event raised by `component`.

    The component is rendered as a ``{component}`` prefix so every line can
    be traced to the operation that produced it. Never raises; handler
    failures are reported by the logging module itself.

    Args:
        component: Name of the emitting operation, e.g. ``Database.commit``.
        message: Human-readable message.
        level: Event severity. Defaults to DEBUG.
    """
    if component:
        logger.log(int(level), "{%s} %s", component, message)
    else:
        logger.log(int(level), "%s", message)


def configure_logging(
    level: int = logging.INFO,
    *,
    console: bool = True,
    log_file: Path | None = None,
    max_bytes: int = g.LOG_MAX_BYTES,
    backup_count: int = g.LOG_BACKUP_COUNT,
    syslog_address: str | tuple[str, int] | None = None,
) -> None:
    """Attach the enabled sinks to the ``batchlite`` logger once.

    Safe to call multiple times; only the first call installs handlers
    (call `reset_logging` first to reconfigure).

    Args:
        level: Minimum level recorded by every sink.
        console: Write to stderr.
        log_file: Path of a size-rotated log file, or None to disable.
        max_bytes: Size at which the log file is rotated.
        backup_count: Number of rotated segments kept.
        syslog_address: Unix socket path or ``(host, port)`` of a syslog
            daemon, or None to disable.

    Side Effects:
        - Creates the log file's parent directory when file logging is on.
        - Adds handlers to the ``batchlite`` logger and sets its level.
    """
    global _LOGGING_CONFIGURED
    if _LOGGING_CONFIGURED:
        return

    formatter = logging.Formatter(LOG_FORMAT, datefmt=LOG_TIME_FORMAT)
    handlers: list[logging.Handler] = []

    if console:
        handlers.append(logging.StreamHandler(sys.stderr))

    if log_file is not None:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        handlers.append(
            logging.handlers.RotatingFileHandler(
                log_file,
                maxBytes=max_bytes,
                backupCount=backup_count,
                encoding="utf-8",
            )
        )

    if syslog_address is not None:
        handlers.append(logging.handlers.SysLogHandler(address=syslog_address))

    for handler in handlers:
        handler.setFormatter(formatter)
        logger.addHandler(handler)
        _CONFIGURED_HANDLERS.append(handler)

    logger.setLevel(level)
    _LOGGING_CONFIGURED = True


def reset_logging() -> None:
    """Detach and close every handler installed by `configure_logging`."""
    global _LOGGING_CONFIGURED
    while _CONFIGURED_HANDLERS:
        handler = _CONFIGURED_HANDLERS.pop()
        logger.removeHandler(handler)
        handler.close()
    logger.setLevel(logging.NOTSET)
    _LOGGING_CONFIGURED = False
