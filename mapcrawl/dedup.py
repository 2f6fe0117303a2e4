"""Entity deduplication for places and reviews.

A DedupStore answers "have we already seen this key?" and records the key as
seen when it has not. Keys live forever in the persistent store; only the
in-memory mirror is bounded. Two workers racing on the same unseen key may
both get False before either write lands, so the guarantee is best-effort
at-least-once: the worst case is a duplicate output record.
"""
from __future__ import annotations

import logging
import threading
from collections import OrderedDict

from . import config
from .storage import KeyValueStore

logger = logging.getLogger(__name__)

PLACE_DEDUP_STORE = "place-dedup"
REVIEW_DEDUP_STORE = "review-dedup"


class DedupStore:
    def __init__(self, store: KeyValueStore, max_size: int) -> None:
        if max_size < 1:
            raise ValueError("max_size must be >= 1")
        self.store = store
        self.max_size = int(max_size)
        self._memory: "OrderedDict[str, bool]" = OrderedDict()
        self._lock = threading.Lock()

    def __len__(self) -> int:
        return len(self._memory)

    def _touch(self, key: str) -> None:
        with self._lock:
            self._memory.pop(key, None)
            self._memory[key] = True
            while len(self._memory) > self.max_size:
                self._memory.popitem(last=False)

    def in_memory(self, key: str) -> bool:
        with self._lock:
            return key in self._memory

    def is_duplicate(self, key: str) -> bool:
        if not key:
            return False
        if self.in_memory(key):
            return True
        if self.store.get(key):
            self._touch(key)
            return True
        self.store.set(key, True)
        self._touch(key)
        return False


def open_place_dedup(db_path: str, max_size: int = config.PLACE_DEDUP_MAX_SIZE) -> DedupStore:
    store = KeyValueStore(db_path, PLACE_DEDUP_STORE)
    logger.info("Place dedup initialized: max_size=%s persisted=%s", max_size, store.count())
    return DedupStore(store, max_size)


def open_review_dedup(db_path: str, max_size: int = config.REVIEW_DEDUP_MAX_SIZE) -> DedupStore:
    store = KeyValueStore(db_path, REVIEW_DEDUP_STORE)
    logger.info("Review dedup initialized: max_size=%s persisted=%s", max_size, store.count())
    return DedupStore(store, max_size)
