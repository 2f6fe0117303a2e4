"""Output reporting helpers."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
import time
from contextlib import contextmanager
from typing import Any, Callable, Dict, Iterator, List, Optional, Protocol, TextIO

from .models import utc_now_iso

COLLECTION_PLACES = "places"
COLLECTION_REVIEWS = "reviews"
COLLECTION_LEADS = "leads"


class RecordSink(Protocol):
    def append(self, collection: str, records: List[Dict[str, Any]]) -> None: ...


def ensure_dir(path: str) -> None:
    os.makedirs(path, exist_ok=True)


def _fsync_dir(path: str) -> None:
    try:
        dir_fd = os.open(path, os.O_DIRECTORY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


@contextmanager
def atomic_writer(
    path: str,
    mode: str = "w",
    encoding: str = "utf-8",
    newline: Optional[str] = None,
) -> Iterator[TextIO]:
    dir_path = os.path.dirname(path) or "."
    base = os.path.basename(path)
    fd, tmp_path = tempfile.mkstemp(prefix=f".{base}.", suffix=".tmp", dir=dir_path)
    try:
        with os.fdopen(fd, mode, encoding=encoding, newline=newline) as f:
            yield f
            f.flush()
            os.fsync(f.fileno())
        os.replace(tmp_path, path)
        _fsync_dir(dir_path)
    except BaseException:
        try:
            os.unlink(tmp_path)
        except OSError:
            pass
        raise


def atomic_write_text(path: str, text: str) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        f.write(text)


def write_json_object(path: str, payload: Dict[str, Any]) -> None:
    with atomic_writer(path, mode="w", encoding="utf-8") as f:
        json.dump(payload, f, ensure_ascii=False, indent=2)


def write_summary(path: str, summary_lines: List[str]) -> None:
    atomic_write_text(path, "\n".join(summary_lines))


class JsonlDatasetSink:
    """Append-only record collections stored as `<output_dir>/<collection>.jsonl`."""

    def __init__(self, output_dir: str) -> None:
        self.output_dir = output_dir
        ensure_dir(output_dir)
        self._lock = threading.Lock()
        self.counts: Dict[str, int] = {}

    def path_for(self, collection: str) -> str:
        return os.path.join(self.output_dir, f"{collection}.jsonl")

    def append(self, collection: str, records: List[Dict[str, Any]]) -> None:
        if not records:
            return
        lines = "".join(json.dumps(r, ensure_ascii=False) + "\n" for r in records)
        with self._lock:
            with open(self.path_for(collection), "a", encoding="utf-8") as f:
                f.write(lines)
                f.flush()
            self.counts[collection] = self.counts.get(collection, 0) + len(records)


def read_jsonl(path: str) -> List[Dict[str, Any]]:
    if not os.path.exists(path):
        return []
    rows: List[Dict[str, Any]] = []
    with open(path, "r", encoding="utf-8") as f:
        for line in f:
            line = line.strip()
            if line:
                rows.append(json.loads(line))
    return rows


def render_summary(summary: Dict[str, Any]) -> List[str]:
    enrichment = summary.get("enrichmentStats") or {}
    requests_stats = summary.get("requests") or {}
    dedup = summary.get("dedup") or {}
    return [
        f"Run finished: {summary.get('finishedAt')}",
        f"Search jobs: {summary.get('searchJobs', 0)}",
        f"Places scraped: {summary.get('placesScraped', 0)}",
        f"Reviews scraped: {summary.get('reviewsScraped', 0)}",
        f"Contacts enriched: {enrichment.get('contactsEnrichedCount', 0)}",
        f"Leads enriched: {enrichment.get('leadsEnrichedCount', 0)}",
        f"Social profiles enriched: {enrichment.get('socialProfilesEnrichedCount', 0)}",
        f"Places enqueued: {dedup.get('placesEnqueued', 0)} (dedup skips: {dedup.get('placeSkips', 0)})",
        f"Review dedup skips: {dedup.get('reviewSkips', 0)}",
        "Requests: handled={handled} retried={retried} failed={failed} soft_blocks={blocks}".format(
            handled=requests_stats.get("handled", 0),
            retried=requests_stats.get("retried", 0),
            failed=requests_stats.get("failed", 0),
            blocks=requests_stats.get("softBlocks", 0),
        ),
    ]


def write_run_summary(output_dir: str, summary: Dict[str, Any]) -> None:
    ensure_dir(output_dir)
    write_json_object(os.path.join(output_dir, "summary.json"), summary)
    write_summary(os.path.join(output_dir, "summary.txt"), render_summary(summary))


class ProgressReporter:
    def __init__(
        self,
        output_path: Optional[str],
        log_every: int = 25,
        write_interval_seconds: float = 5.0,
        logger: Optional[logging.Logger] = None,
        counters: Optional[Callable[[], Dict[str, int]]] = None,
    ) -> None:
        self.output_path = output_path
        self.log_every = max(1, int(log_every)) if log_every else 0
        self.write_interval_seconds = float(write_interval_seconds)
        self.logger = logger or logging.getLogger(__name__)
        self._counters = counters
        self.stage = "init"
        self.processed_count = 0
        self._next_log = self.log_every if self.log_every else 0
        self._last_write = 0.0
        self._lock = threading.Lock()

    def set_stage(self, stage: str) -> None:
        with self._lock:
            self.stage = stage
            self.processed_count = 0
            self._next_log = self.log_every if self.log_every else 0
        self._write_if_due(force=True)

    def advance(self, count: int = 1) -> None:
        if count <= 0:
            return
        with self._lock:
            self.processed_count += count
            due = bool(self.log_every) and self.processed_count >= self._next_log
            if due:
                self._next_log += self.log_every
            processed = self.processed_count
        if due:
            self.logger.info(
                "Progress: stage=%s processed=%s %s",
                self.stage,
                processed,
                " ".join(f"{k}={v}" for k, v in self._get_counts().items()),
            )
        self._write_if_due()

    def flush(self) -> None:
        self._write_if_due(force=True)

    def _get_counts(self) -> Dict[str, int]:
        if self._counters is None:
            return {}
        return dict(self._counters())

    def _write_if_due(self, force: bool = False) -> None:
        if not self.output_path:
            return
        now = time.monotonic()
        with self._lock:
            if not force and (now - self._last_write) < self.write_interval_seconds:
                return
            self._last_write = now
            payload: Dict[str, Any] = {
                "stage": self.stage,
                "processed_count": self.processed_count,
                "timestamp": utc_now_iso(),
            }
            payload.update(self._get_counts())
            with atomic_writer(self.output_path, mode="w", encoding="utf-8") as f:
                json.dump(payload, f, ensure_ascii=False, indent=2)
