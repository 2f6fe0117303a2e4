"""SQLite-backed persistent key-value store."""
from __future__ import annotations

import json
import sqlite3
import threading
from typing import Any, Optional

from .models import utc_now_iso


def connect(db_path: str) -> sqlite3.Connection:
    conn = sqlite3.connect(db_path, check_same_thread=False, timeout=30.0)
    conn.row_factory = sqlite3.Row
    cur = conn.cursor()
    try:
        cur.execute("PRAGMA journal_mode=WAL")
        cur.fetchone()
    except sqlite3.DatabaseError:
        pass
    try:
        cur.execute("PRAGMA synchronous=NORMAL")
    except sqlite3.DatabaseError:
        pass
    return conn


class KeyValueStore:
    """Named key -> JSON value store; entries never expire."""

    def __init__(self, db_path: str, name: str, commit_every: int = 1) -> None:
        self.db_path = db_path
        self.name = name
        self.conn = connect(db_path)
        self._lock = threading.Lock()
        self._pending_writes = 0
        self._commit_every = max(1, int(commit_every))
        self._init_db()

    def _init_db(self) -> None:
        with self._lock:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS kv_store (
                    store TEXT NOT NULL,
                    key TEXT NOT NULL,
                    value_json TEXT,
                    created_at TEXT,
                    PRIMARY KEY (store, key)
                )
                """
            )
            self.conn.commit()

    def _mark_dirty(self) -> None:
        self._pending_writes += 1
        if self._pending_writes >= self._commit_every:
            self.conn.commit()
            self._pending_writes = 0

    def commit(self) -> None:
        with self._lock:
            if self._pending_writes:
                self.conn.commit()
                self._pending_writes = 0

    def close(self) -> None:
        self.commit()
        self.conn.close()

    def get(self, key: str) -> Optional[Any]:
        with self._lock:
            row = self.conn.execute(
                "SELECT value_json FROM kv_store WHERE store = ? AND key = ?",
                (self.name, key),
            ).fetchone()
        if not row:
            return None
        return json.loads(row["value_json"])

    def set(self, key: str, value: Any) -> None:
        with self._lock:
            self.conn.execute(
                """
                INSERT OR REPLACE INTO kv_store (store, key, value_json, created_at)
                VALUES (?, ?, ?, ?)
                """,
                (self.name, key, json.dumps(value), utc_now_iso()),
            )
            self._mark_dirty()

    def count(self) -> int:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM kv_store WHERE store = ?", (self.name,)
            ).fetchone()
        return int(row["n"])
