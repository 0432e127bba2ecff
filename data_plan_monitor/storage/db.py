"""
Database connection management.

Provides the SQLite connection behind the reading history.
"""

import sqlite3
from pathlib import Path

DEFAULT_DB_PATH = "data_plan_monitor.db"

# Seconds a writer waits for a concurrent importer to release the lock
BUSY_TIMEOUT_SECONDS = 10.0


def get_connection(db_path: str = DEFAULT_DB_PATH) -> sqlite3.Connection:
    """Open a connection to the reading store.

    Several importers may write at once; instead of failing on a locked
    database they wait up to BUSY_TIMEOUT_SECONDS.

    Args:
        db_path: Path to SQLite database file
    """
    return sqlite3.connect(str(Path(db_path)), timeout=BUSY_TIMEOUT_SECONDS)
