#!/usr/bin/env python3
"""
Persistent Log for the Commander

Simple SQLite-based storage for rows streamed back by targets.
Each row keeps the source device id so rows from many targets can share
one table.
"""

import sqlite3
import time
from dataclasses import dataclass
from typing import List, Optional

from .models import DEFAULT_DB_PATH


# =============================================================================
# Constants
# =============================================================================

# Maximum rows to return in a single query
MAX_QUERY_RESULTS = 10000


# =============================================================================
# Data Classes
# =============================================================================

@dataclass
class StoredRow:
    """A single stored row."""
    id: int
    device_id: int
    sensor: str
    time_ms: str
    reading: str
    event: str
    received_at: int


# =============================================================================
# Storage Manager
# =============================================================================

class DataStorage:
    """SQLite-based persistent log of relayed rows."""

    def __init__(self, db_path: str = DEFAULT_DB_PATH):
        """
        Initialize storage.

        Args:
            db_path: Path to SQLite database file.
        """
        self.db_path = db_path
        self._init_db()

    def _init_db(self):
        """Initialize database schema."""
        with sqlite3.connect(self.db_path) as conn:
            conn.execute("""
                CREATE TABLE IF NOT EXISTS rows (
                    id INTEGER PRIMARY KEY AUTOINCREMENT,
                    device_id INTEGER NOT NULL,
                    sensor TEXT NOT NULL,
                    time_ms TEXT NOT NULL,
                    reading TEXT NOT NULL,
                    event TEXT NOT NULL,
                    received_at INTEGER NOT NULL
                )
            """)

            conn.execute("""
                CREATE INDEX IF NOT EXISTS idx_device
                ON rows(device_id, id)
            """)

            conn.commit()

    def append(self, device_id: int, sensor: str, time_ms: str, reading: str, event: str) -> int:
        """
        Append one row.

        Returns:
            Database id of the new row.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                """
                INSERT INTO rows (device_id, sensor, time_ms, reading, event, received_at)
                VALUES (?, ?, ?, ?, ?, ?)
                """,
                (int(device_id), sensor, str(time_ms), str(reading), str(event), int(time.time()))
            )
            conn.commit()
            return cursor.lastrowid

    def row_count(self, device_id: int = None) -> int:
        """
        Get total row count.

        Args:
            device_id: Optional device id to filter by.
        """
        with sqlite3.connect(self.db_path) as conn:
            if device_id is not None:
                cursor = conn.execute(
                    "SELECT COUNT(*) FROM rows WHERE device_id = ?",
                    (device_id,)
                )
            else:
                cursor = conn.execute("SELECT COUNT(*) FROM rows")
            return cursor.fetchone()[0]

    def get_rows(
        self,
        limit: int = 100,
        offset: int = 0,
        device_id: Optional[int] = None,
    ) -> List[StoredRow]:
        """
        Get rows in arrival order.

        Args:
            limit: Maximum rows to return (capped at MAX_QUERY_RESULTS).
            offset: Rows to skip.
            device_id: Optional device id to filter by.
        """
        limit = min(limit, MAX_QUERY_RESULTS)
        query = "SELECT id, device_id, sensor, time_ms, reading, event, received_at FROM rows"
        params = []
        if device_id is not None:
            query += " WHERE device_id = ?"
            params.append(device_id)
        query += " ORDER BY id LIMIT ? OFFSET ?"
        params.extend([limit, offset])

        with sqlite3.connect(self.db_path) as conn:
            conn.row_factory = sqlite3.Row
            cursor = conn.execute(query, params)

            return [
                StoredRow(
                    id=row["id"],
                    device_id=row["device_id"],
                    sensor=row["sensor"],
                    time_ms=row["time_ms"],
                    reading=row["reading"],
                    event=row["event"],
                    received_at=row["received_at"],
                )
                for row in cursor
            ]

    def get_device_ids(self) -> List[int]:
        """Get list of all device ids with stored rows."""
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute(
                "SELECT DISTINCT device_id FROM rows ORDER BY device_id"
            )
            return [row[0] for row in cursor]

    def clear(self) -> int:
        """
        Delete every row.

        Returns:
            Number of rows deleted.
        """
        with sqlite3.connect(self.db_path) as conn:
            cursor = conn.execute("DELETE FROM rows")
            conn.commit()
            return cursor.rowcount
