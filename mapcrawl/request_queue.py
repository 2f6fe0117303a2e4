"""Persistent request queue shared by all crawl workers."""
from __future__ import annotations

import json
import logging
import threading
import time
from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

from .models import CrawlRequest, request_from_user_data, request_to_user_data, utc_now_iso
from .storage import connect

logger = logging.getLogger(__name__)

STATE_PENDING = "pending"
STATE_IN_PROGRESS = "in_progress"
STATE_HANDLED = "handled"
STATE_FAILED = "failed"


@dataclass(frozen=True)
class QueuedRequest:
    url: str
    unique_key: str
    user_data: Dict[str, Any]
    retry_count: int

    @property
    def request(self) -> CrawlRequest:
        return request_from_user_data(self.user_data)


class RequestQueue:
    """FIFO queue keyed by unique_key; a key is only ever enqueued once.

    Requests left in progress by an interrupted run are returned to pending on
    open so the crawl can resume.
    """

    def __init__(self, db_path: str, clock: Callable[[], float] = time.time) -> None:
        self.db_path = db_path
        self.conn = connect(db_path)
        self._lock = threading.Lock()
        self._clock = clock
        self._init_db()
        self._recover_in_progress()

    def _init_db(self) -> None:
        with self._lock:
            self.conn.execute(
                """
                CREATE TABLE IF NOT EXISTS request_queue (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    unique_key TEXT NOT NULL UNIQUE,
                    url TEXT NOT NULL,
                    request_type TEXT,
                    user_data_json TEXT NOT NULL,
                    state TEXT NOT NULL,
                    retry_count INTEGER NOT NULL DEFAULT 0,
                    not_before REAL NOT NULL DEFAULT 0,
                    last_error TEXT,
                    created_at TEXT,
                    updated_at TEXT
                )
                """
            )
            self.conn.execute(
                "CREATE INDEX IF NOT EXISTS idx_request_queue_state ON request_queue (state, not_before, seq)"
            )
            self.conn.commit()

    def _recover_in_progress(self) -> None:
        with self._lock:
            cur = self.conn.execute(
                "UPDATE request_queue SET state = ?, updated_at = ? WHERE state = ?",
                (STATE_PENDING, utc_now_iso(), STATE_IN_PROGRESS),
            )
            self.conn.commit()
        if cur.rowcount:
            logger.info("Recovered %s in-progress requests from a previous run", cur.rowcount)

    def close(self) -> None:
        with self._lock:
            self.conn.commit()
            self.conn.close()

    def add_request(self, url: str, unique_key: str, user_data: Dict[str, Any]) -> bool:
        """Enqueue a request; returns False when unique_key is already known."""
        now = utc_now_iso()
        with self._lock:
            cur = self.conn.execute(
                """
                INSERT OR IGNORE INTO request_queue (
                    unique_key, url, request_type, user_data_json, state, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    unique_key,
                    url,
                    user_data.get("requestType"),
                    json.dumps(user_data, ensure_ascii=False),
                    STATE_PENDING,
                    now,
                    now,
                ),
            )
            self.conn.commit()
        added = cur.rowcount > 0
        if not added:
            logger.debug("Request already enqueued: %s", unique_key)
        return added

    def add(self, url: str, unique_key: str, request: CrawlRequest) -> bool:
        return self.add_request(url, unique_key, request_to_user_data(request))

    def fetch_next(self) -> Optional[QueuedRequest]:
        with self._lock:
            row = self.conn.execute(
                """
                SELECT unique_key, url, user_data_json, retry_count FROM request_queue
                WHERE state = ? AND not_before <= ?
                ORDER BY seq LIMIT 1
                """,
                (STATE_PENDING, self._clock()),
            ).fetchone()
            if not row:
                return None
            self.conn.execute(
                "UPDATE request_queue SET state = ?, updated_at = ? WHERE unique_key = ?",
                (STATE_IN_PROGRESS, utc_now_iso(), row["unique_key"]),
            )
            self.conn.commit()
        return QueuedRequest(
            url=row["url"],
            unique_key=row["unique_key"],
            user_data=json.loads(row["user_data_json"]),
            retry_count=int(row["retry_count"]),
        )

    def _set_state(self, unique_key: str, state: str, error: Optional[str] = None) -> None:
        with self._lock:
            self.conn.execute(
                "UPDATE request_queue SET state = ?, last_error = ?, updated_at = ? WHERE unique_key = ?",
                (state, error, utc_now_iso(), unique_key),
            )
            self.conn.commit()

    def mark_handled(self, unique_key: str) -> None:
        self._set_state(unique_key, STATE_HANDLED)

    def mark_failed(self, unique_key: str, error: str) -> None:
        self._set_state(unique_key, STATE_FAILED, error)

    def reclaim(self, unique_key: str, error: str, delay_seconds: float = 0.0) -> None:
        """Return a request to pending for another attempt after delay_seconds."""
        with self._lock:
            self.conn.execute(
                """
                UPDATE request_queue
                SET state = ?, retry_count = retry_count + 1, not_before = ?, last_error = ?, updated_at = ?
                WHERE unique_key = ?
                """,
                (STATE_PENDING, self._clock() + max(0.0, delay_seconds), error, utc_now_iso(), unique_key),
            )
            self.conn.commit()

    def update_user_data(self, unique_key: str, user_data: Dict[str, Any]) -> None:
        with self._lock:
            self.conn.execute(
                "UPDATE request_queue SET user_data_json = ?, updated_at = ? WHERE unique_key = ?",
                (json.dumps(user_data, ensure_ascii=False), utc_now_iso(), unique_key),
            )
            self.conn.commit()

    def get(self, unique_key: str) -> Optional[Dict[str, Any]]:
        with self._lock:
            row = self.conn.execute(
                "SELECT * FROM request_queue WHERE unique_key = ?", (unique_key,)
            ).fetchone()
        if not row:
            return None
        out = dict(row)
        out["user_data"] = json.loads(out.pop("user_data_json"))
        return out

    def count(self, state: Optional[str] = None) -> int:
        with self._lock:
            if state is None:
                row = self.conn.execute("SELECT COUNT(*) AS n FROM request_queue").fetchone()
            else:
                row = self.conn.execute(
                    "SELECT COUNT(*) AS n FROM request_queue WHERE state = ?", (state,)
                ).fetchone()
        return int(row["n"])

    def is_finished(self) -> bool:
        with self._lock:
            row = self.conn.execute(
                "SELECT COUNT(*) AS n FROM request_queue WHERE state IN (?, ?)",
                (STATE_PENDING, STATE_IN_PROGRESS),
            ).fetchone()
        return int(row["n"]) == 0
