"""Deduplication layer: persistent member-id → timestamp records in SQLite."""

from __future__ import annotations

import sqlite3
import time
from datetime import timedelta
from pathlib import Path
from threading import Lock
from typing import Callable

from ..errors import StoreError
from ..infra.storage import SQLiteManager


class DedupStore:
    """Remember which post ids were already scheduled for delivery.

    A record is kept until it is older than the retention window; the age is
    measured from the last ``insert`` of the key.
    """

    def __init__(
        self,
        manager: SQLiteManager,
        db_path: Path,
        clock: Callable[[], float] = time.time,
    ) -> None:
        self.manager = manager
        self.db_path = db_path
        self.clock = clock
        self._lock = Lock()
        try:
            self._conn = self.manager.connect(db_path)
        except (sqlite3.Error, OSError) as exc:
            raise StoreError(f"cannot open dedup store at {db_path}: {exc}") from exc

    def contains(self, key: str) -> bool:
        with self._lock:
            try:
                cur = self._conn.execute("SELECT 1 FROM dedup_records WHERE key = ?", (key,))
                return cur.fetchone() is not None
            except sqlite3.Error as exc:
                raise StoreError(f"lookup of {key!r} failed: {exc}") from exc

    def insert(self, key: str) -> None:
        with self._lock:
            try:
                self._conn.execute(
                    "INSERT OR REPLACE INTO dedup_records(key, inserted_at) VALUES (?, ?)",
                    (key, self.clock()),
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"insert of {key!r} failed: {exc}") from exc

    def evict_older_than(self, window: timedelta | float) -> int:
        """Remove every record strictly older than ``window``; return the count."""

        seconds = window.total_seconds() if isinstance(window, timedelta) else float(window)
        now = self.clock()
        with self._lock:
            try:
                expired = [
                    row["key"]
                    for row in self._conn.execute("SELECT key, inserted_at FROM dedup_records")
                    if now - row["inserted_at"] > seconds
                ]
                self._conn.executemany(
                    "DELETE FROM dedup_records WHERE key = ?", [(key,) for key in expired]
                )
                self._conn.commit()
            except sqlite3.Error as exc:
                raise StoreError(f"eviction failed: {exc}") from exc
        return len(expired)

    def recent(self, limit: int = 20) -> list[tuple[str, float]]:
        with self._lock:
            try:
                rows = self._conn.execute(
                    "SELECT key, inserted_at FROM dedup_records ORDER BY inserted_at DESC LIMIT ?",
                    (limit,),
                ).fetchall()
            except sqlite3.Error as exc:
                raise StoreError(f"history query failed: {exc}") from exc
        return [(row["key"], row["inserted_at"]) for row in rows]

    def count(self) -> int:
        with self._lock:
            try:
                return self._conn.execute("SELECT count(*) FROM dedup_records").fetchone()[0]
            except sqlite3.Error as exc:
                raise StoreError(f"count query failed: {exc}") from exc

    def reset(self) -> None:
        with self._lock:
            try:
                self.manager.reset(self.db_path)
                self._conn = self.manager.connect(self.db_path)
            except (sqlite3.Error, OSError) as exc:
                raise StoreError(f"reset failed: {exc}") from exc


__all__ = ["DedupStore"]
