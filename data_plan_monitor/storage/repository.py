"""
Repository pattern for data access.

Handles the append-only reading history: insert-if-absent keyed by
timestamp and ordered retrieval.
"""

import logging
import sqlite3
from datetime import datetime, timezone
from typing import List, Optional

from .db import DEFAULT_DB_PATH, get_connection
from .models import UsageReading

logger = logging.getLogger(__name__)


class StoreFailure(Exception):
    """Raised when the reading store fails for any reason other than a duplicate."""


def to_storage_timestamp(timestamp: datetime) -> str:
    """Render a timestamp as a fixed-width UTC string.

    Fixed width keeps lexical order identical to chronological order.
    Naive datetimes are taken to be UTC.
    """
    if timestamp.tzinfo is None:
        timestamp = timestamp.replace(tzinfo=timezone.utc)
    return timestamp.astimezone(timezone.utc).isoformat(timespec="microseconds")


def _row_to_reading(row) -> UsageReading:
    return UsageReading(
        timestamp=datetime.fromisoformat(row[0]),
        used_mb=row[1],
        total_mb=row[2],
        raw_text=row[3]
    )


class ReadingRepository:
    """Repository for the usage reading history.

    Every call opens its own connection, so one instance can be shared by
    several importers. Uniqueness of the timestamp is enforced by the
    database, which makes insert-if-absent atomic across processes.
    """

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """Initialize the repository with a database path.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path

    def initialize_schema(self) -> None:
        """Create the usage_reading table if it doesn't exist.

        No UPDATE or DELETE operations are ever performed on this table.

        Raises:
            StoreFailure: If the database cannot be initialized
        """
        try:
            conn = get_connection(self.db_path)
            try:
                conn.execute("""
                    CREATE TABLE IF NOT EXISTS usage_reading (
                        id INTEGER PRIMARY KEY AUTOINCREMENT,
                        timestamp TEXT NOT NULL UNIQUE,
                        used_mb REAL NOT NULL,
                        total_mb REAL NOT NULL,
                        raw_text TEXT NOT NULL,
                        created_at TEXT NOT NULL
                    )
                """)
                conn.commit()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreFailure(f"Cannot initialize reading store at {self.db_path}: {e}") from e

    def insert_if_absent(self, reading: UsageReading) -> bool:
        """Insert a reading unless one with the same timestamp exists.

        Args:
            reading: The reading to record

        Returns:
            True if the reading was inserted, False if it was a duplicate

        Raises:
            StoreFailure: On any database error
        """
        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute("""
                    INSERT INTO usage_reading
                    (timestamp, used_mb, total_mb, raw_text, created_at)
                    VALUES (?, ?, ?, ?, ?)
                    ON CONFLICT(timestamp) DO NOTHING
                """, (
                    to_storage_timestamp(reading.timestamp),
                    reading.used_mb,
                    reading.total_mb,
                    reading.raw_text,
                    to_storage_timestamp(datetime.now(timezone.utc))
                ))
                conn.commit()
                inserted = cursor.rowcount == 1
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to insert reading at {reading.timestamp}: {e}") from e

        if not inserted:
            logger.debug("Duplicate reading at %s ignored", reading.timestamp)
        return inserted

    def list_ordered_by_timestamp(
        self,
        start: Optional[datetime] = None,
        end: Optional[datetime] = None
    ) -> List[UsageReading]:
        """Get readings in ascending timestamp order.

        Args:
            start: Optional inclusive lower bound
            end: Optional exclusive upper bound

        Returns:
            List of readings ordered by timestamp (oldest first)

        Raises:
            StoreFailure: On any database error
        """
        query = "SELECT timestamp, used_mb, total_mb, raw_text FROM usage_reading"
        params = []
        conditions = []

        if start is not None:
            conditions.append("timestamp >= ?")
            params.append(to_storage_timestamp(start))
        if end is not None:
            conditions.append("timestamp < ?")
            params.append(to_storage_timestamp(end))

        if conditions:
            query += " WHERE " + " AND ".join(conditions)
        query += " ORDER BY timestamp ASC"

        try:
            conn = get_connection(self.db_path)
            try:
                cursor = conn.execute(query, params)
                return [_row_to_reading(row) for row in cursor.fetchall()]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to list readings: {e}") from e

    def get_latest_reading(self) -> Optional[UsageReading]:
        """Get the most recent reading, or None for an empty store."""
        try:
            conn = get_connection(self.db_path)
            try:
                row = conn.execute("""
                    SELECT timestamp, used_mb, total_mb, raw_text
                    FROM usage_reading
                    ORDER BY timestamp DESC LIMIT 1
                """).fetchone()
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to fetch latest reading: {e}") from e
        return _row_to_reading(row) if row else None

    def count_readings(self) -> int:
        """Count stored readings."""
        try:
            conn = get_connection(self.db_path)
            try:
                return conn.execute("SELECT COUNT(*) FROM usage_reading").fetchone()[0]
            finally:
                conn.close()
        except sqlite3.Error as e:
            raise StoreFailure(f"Failed to count readings: {e}") from e


# Global repository instance
_default_repository: Optional[ReadingRepository] = None


def get_repository(db_path: str = DEFAULT_DB_PATH) -> ReadingRepository:
    """Get a repository instance.

    Returns a process-wide ReadingRepository, replacing it when a different
    database path is requested.

    Args:
        db_path: Path to SQLite database file

    Returns:
        An instance of ReadingRepository
    """
    global _default_repository
    if _default_repository is None or _default_repository.db_path != db_path:
        _default_repository = ReadingRepository(db_path)
    return _default_repository
