"""
Structured storage backend using SQLite.

A single versioned object collection keyed by the same string keys as
the other backends. The schema version lives in ``PRAGMA user_version``;
opening an empty or older database runs the upgrade path, which creates
the collection if it is absent.
"""

import asyncio
import logging
import sqlite3
import threading
from pathlib import Path
from typing import Optional

from .errors import BackendUnavailableError, StorageError

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1
DB_FILENAME = "serpentnote.db"


class ObjectStore:
    """
    SQLite-backed key/value object collection.

    Blocking SQLite calls run in a worker thread; a lock serializes them
    because the connection is shared across those threads.
    """

    kind = "sqlite"

    def __init__(self, db_path: Path):
        """
        Args:
            db_path: Path to SQLite database file

        Raises:
            BackendUnavailableError: if the database cannot be opened or upgraded
        """
        self._db_path = Path(db_path)
        self._conn: Optional[sqlite3.Connection] = None
        self._lock = threading.Lock()
        try:
            self._init_db()
        except (sqlite3.Error, OSError) as e:
            if self._conn is not None:
                self._conn.close()
                self._conn = None
            raise BackendUnavailableError(f"Cannot open object store {self._db_path}: {e}") from e

    def _init_db(self) -> None:
        """Initialize the SQLite database."""
        self._db_path.parent.mkdir(parents=True, exist_ok=True)
        self._conn = sqlite3.connect(str(self._db_path), check_same_thread=False)

        # Wait up to 5 seconds for locks instead of failing immediately
        self._conn.execute("PRAGMA busy_timeout=5000")
        self._migrate()

    def _migrate(self) -> None:
        """Upgrade the database to SCHEMA_VERSION."""
        version = self._conn.execute("PRAGMA user_version").fetchone()[0]
        if version > SCHEMA_VERSION:
            raise sqlite3.DatabaseError(
                f"Database schema version {version} is newer than supported ({SCHEMA_VERSION})"
            )

        if version < 1:
            self._conn.execute("""
                CREATE TABLE IF NOT EXISTS data (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL,
                    updated_at TEXT NOT NULL DEFAULT (strftime('%Y-%m-%dT%H:%M:%f', 'now'))
                )
            """)
            logger.info("Created object store collection in %s", self._db_path)

        self._conn.execute(f"PRAGMA user_version = {SCHEMA_VERSION}")
        self._conn.commit()

    @property
    def schema_version(self) -> int:
        with self._lock:
            return self._conn.execute("PRAGMA user_version").fetchone()[0]

    def _get(self, key: str) -> Optional[str]:
        with self._lock:
            try:
                row = self._conn.execute(
                    "SELECT value FROM data WHERE key = ?", (key,)
                ).fetchone()
            except sqlite3.Error as e:
                raise StorageError(f"Failed to read {key!r}: {e}") from e
        return row[0] if row else None

    def _set(self, key: str, value: str) -> None:
        with self._lock:
            try:
                self._conn.execute("""
                    INSERT INTO data (key, value, updated_at)
                    VALUES (?, ?, strftime('%Y-%m-%dT%H:%M:%f', 'now'))
                    ON CONFLICT(key) DO UPDATE SET
                        value = excluded.value,
                        updated_at = excluded.updated_at
                """, (key, value))
                self._conn.commit()
            except sqlite3.Error as e:
                self._conn.rollback()
                raise StorageError(f"Failed to write {key!r}: {e}") from e

    async def get(self, key: str) -> Optional[str]:
        return await asyncio.to_thread(self._get, key)

    async def set(self, key: str, value: str) -> None:
        if not isinstance(value, str):
            raise TypeError(f"ObjectStore values must be str, got {type(value).__name__}")
        await asyncio.to_thread(self._set, key, value)
        logger.debug("Stored %s (%d chars)", key, len(value))

    def keys(self) -> list[str]:
        with self._lock:
            return [row[0] for row in self._conn.execute("SELECT key FROM data ORDER BY key")]

    def close(self) -> None:
        """Close the database connection."""
        if self._conn is not None:
            self._conn.close()
            self._conn = None
