"""Project-wide constants.

Only filesystem anchors and default values live here, no behaviour.
Per-instance database settings live on `batchlite.database.DatabaseConfig`,
whose defaults are taken from this module.
"""

from pathlib import Path

PACKAGE_ROOT: Path = Path(__file__).resolve().parent
# src/batchlite -> src -> repo root
PROJECT_ROOT: Path = PACKAGE_ROOT.parent.parent

PROJECT_NAME = "batchlite"
PACKAGE_NAME = "batchlite"

# Default database used by the CLI
DB_DIR: Path = PROJECT_ROOT / "db"
DEFAULT_DB_PATH: Path = DB_DIR / f"{PROJECT_NAME}.sqlite"

# Rotating log file (10 MB per segment, 20 segments kept)
LOGS_DIR: Path = PROJECT_ROOT / "logs"
DEFAULT_LOG_FILE: Path = LOGS_DIR / f"{PROJECT_NAME}.log"
LOG_MAX_BYTES = 10_000_000
LOG_BACKUP_COUNT = 20

# Pending write operations that trigger an automatic commit
DEFAULT_COMMIT_INTERVAL = 30000

# Seconds the driver waits on a locked database before giving up
DEFAULT_TIMEOUT_S = 1.0

# SQLSTATE meaning "no error"
SUCCESS_STATE = "00000"
