"""SQLite connection handling for the dedup history database."""

from __future__ import annotations

import sqlite3
from pathlib import Path
from threading import Lock
from typing import Dict

SCHEMA_VERSION = 1
BUSY_TIMEOUT_MS = 5000

_MIGRATIONS = {
    1: (
        """
        CREATE TABLE IF NOT EXISTS dedup_records (
            key TEXT PRIMARY KEY,
            inserted_at REAL NOT NULL
        )
        """,
        "CREATE INDEX IF NOT EXISTS idx_dedup_inserted_at ON dedup_records(inserted_at)",
    ),
}

# Files SQLite keeps next to the database in WAL mode
_SIDECAR_SUFFIXES = ("-wal", "-shm")


class SQLiteManager:
    """Hand out one shared connection per history file.

    Connections run in WAL mode so the CLI can read the history while the
    relay writes to it; the schema is migrated up to ``SCHEMA_VERSION`` on
    first connect and tracked through ``PRAGMA user_version``.
    """

    def __init__(self) -> None:
        self._connections: Dict[Path, sqlite3.Connection] = {}
        self._lock = Lock()

    def connect(self, path: Path) -> sqlite3.Connection:
        with self._lock:
            conn = self._connections.get(path)
            if conn is None:
                path.parent.mkdir(parents=True, exist_ok=True)
                conn = sqlite3.connect(path, check_same_thread=False)
                conn.row_factory = sqlite3.Row
                conn.execute(f"PRAGMA busy_timeout = {BUSY_TIMEOUT_MS}")
                conn.execute("PRAGMA journal_mode = WAL")
                self._migrate(conn)
                self._connections[path] = conn
            return conn

    def reset(self, path: Path) -> None:
        """Close the connection to ``path`` and delete the database files."""

        with self._lock:
            conn = self._connections.pop(path, None)
        if conn is not None:
            conn.close()
        for candidate in (path, *(path.with_name(path.name + suffix) for suffix in _SIDECAR_SUFFIXES)):
            candidate.unlink(missing_ok=True)

    def close_all(self) -> None:
        with self._lock:
            for conn in self._connections.values():
                conn.close()
            self._connections.clear()

    @staticmethod
    def schema_version(conn: sqlite3.Connection) -> int:
        return conn.execute("PRAGMA user_version").fetchone()[0]

    def _migrate(self, conn: sqlite3.Connection) -> None:
        current = self.schema_version(conn)
        for version in range(current + 1, SCHEMA_VERSION + 1):
            for statement in _MIGRATIONS[version]:
                conn.execute(statement)
            conn.execute(f"PRAGMA user_version = {version}")
        conn.commit()


__all__ = ["SQLiteManager", "SCHEMA_VERSION"]
