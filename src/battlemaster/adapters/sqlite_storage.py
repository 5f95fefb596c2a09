"""SQLite storage adapter.

Implements the core CursorStorePort using a simple SQLite database.
"""

from __future__ import annotations

import logging
import os
import sqlite3
from typing import Optional

LOGGER = logging.getLogger(__name__)

CURSOR_KEY = "cursor"


class SQLiteStorage:
    """Thin SQLite wrapper that satisfies the CursorStorePort contract."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._conn: Optional[sqlite3.Connection] = None

    def _connect(self) -> sqlite3.Connection:
        if self._conn is None:
            directory = os.path.dirname(self._db_path)
            if directory:
                os.makedirs(directory, exist_ok=True)
            conn = sqlite3.connect(self._db_path)
            conn.row_factory = sqlite3.Row
            self._conn = conn
        return self._conn

    def init_db(self) -> None:
        """Create tables if they do not exist.

        Tables:
        - cursor_state: single-row key/value checkpoint of the feed position
        """

        with self._connect() as conn:
            # cursor_state keeps one integer per key so we can restart the
            # service without losing our place in the feed.
            # Fields:
            # - key: name of the checkpoint (PRIMARY KEY), always "cursor"
            # - value: microseconds since epoch of the last safe position
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS cursor_state (
                    key TEXT PRIMARY KEY,
                    value INTEGER NOT NULL
                )
                """
            )

    def get_cursor(self) -> Optional[int]:
        """Return the stored cursor, if any."""

        with self._connect() as conn:
            row = conn.execute(
                "SELECT value FROM cursor_state WHERE key = ?",
                (CURSOR_KEY,),
            ).fetchone()
        return int(row["value"]) if row else None

    def load_cursor(self, default: int) -> int:
        """Return the stored cursor, persisting ``default`` on first run."""

        stored = self.get_cursor()
        if stored is not None:
            return stored
        LOGGER.info("No stored cursor, initializing to %s", default)
        self.save_cursor(default)
        return default

    def save_cursor(self, cursor: int) -> None:
        """Upsert the cursor. A lower value never replaces a higher one."""

        with self._connect() as conn:
            conn.execute(
                """
                INSERT INTO cursor_state (key, value)
                VALUES (?, ?)
                ON CONFLICT(key) DO UPDATE SET value = MAX(value, excluded.value)
                """,
                (CURSOR_KEY, int(cursor)),
            )

    def close(self) -> None:
        if self._conn is not None:
            self._conn.close()
            self._conn = None
