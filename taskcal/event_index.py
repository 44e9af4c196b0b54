from __future__ import annotations

import logging
import os
import threading

from taskcal.cache_store import JsonCacheFile
from taskcal.errors import CacheLoadFailure

logger = logging.getLogger(__name__)


class EventIndex:
    """Persistent ``task_id -> event_id`` mapping with a dirty flag."""

    def __init__(self, store: JsonCacheFile | None = None, mappings: dict[str, str] | None = None) -> None:
        self.store = store
        self._mappings: dict[str, str] = dict(mappings or {})
        self._lock = threading.RLock()
        self._dirty = False

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> "EventIndex":
        store = JsonCacheFile(path)
        data = store.read()
        if data is None:
            return cls(store)
        if not isinstance(data, dict):
            raise CacheLoadFailure(str(store.path), "expected a JSON object")
        raw = data.get("mappings", data)
        if not isinstance(raw, dict):
            raise CacheLoadFailure(str(store.path), "mappings must be an object")
        mappings: dict[str, str] = {}
        for task_id, event_id in raw.items():
            if not isinstance(event_id, str):
                raise CacheLoadFailure(str(store.path), f"event id for {task_id} is not a string")
            if task_id and event_id:
                mappings[str(task_id)] = event_id
        index = cls(store, mappings)
        # Rewrite documents stored in the legacy flat shape.
        index._dirty = "mappings" not in data and bool(mappings)
        return index

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __len__(self) -> int:
        with self._lock:
            return len(self._mappings)

    def lookup(self, task_id: str) -> str | None:
        with self._lock:
            return self._mappings.get(task_id)

    def record(self, task_id: str, event_id: str) -> None:
        if not task_id or not event_id:
            raise ValueError("task_id and event_id must be non-empty")
        with self._lock:
            if self._mappings.get(task_id) != event_id:
                self._mappings[task_id] = event_id
                self._dirty = True

    def forget(self, task_id: str) -> None:
        with self._lock:
            if task_id in self._mappings:
                del self._mappings[task_id]
                self._dirty = True

    def snapshot(self) -> dict[str, str]:
        with self._lock:
            return dict(self._mappings)

    def flush(self) -> bool:
        with self._lock:
            if not self._dirty:
                return False
            if self.store is None:
                self._dirty = False
                return False
            self.store.write({"mappings": dict(sorted(self._mappings.items()))})
            self._dirty = False
            logger.debug("Flushed %d index mappings to %s", len(self._mappings), self.store.path)
            return True
