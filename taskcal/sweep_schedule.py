from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime

from taskcal.cache_store import JsonCacheFile
from taskcal.errors import CacheLoadFailure
from taskcal.models import PENDING, TaskSnapshot, format_rfc3339, parse_iso_datetime

logger = logging.getLogger(__name__)


@dataclass
class SweepEntry:
    task_id: str
    scheduled: datetime


class SweepSchedule:
    """Time-ordered list of tasks whose title/color must be refreshed once their time passes.

    Only timing is stored here. The caller re-fetches each swept task and runs it
    through the normal materialize/patch pipeline.
    """

    def __init__(self, store: JsonCacheFile | None = None, entries: list[SweepEntry] | None = None) -> None:
        self.store = store
        self._entries: list[SweepEntry] = []
        self._dirty = False
        for entry in entries or []:
            self._insert(entry.task_id, entry.scheduled)
        self._dirty = False

    @classmethod
    def load(cls, path: str | os.PathLike[str]) -> "SweepSchedule":
        store = JsonCacheFile(path)
        data = store.read()
        if data is None:
            return cls(store)
        if not isinstance(data, dict) or not isinstance(data.get("entries", []), list):
            raise CacheLoadFailure(str(store.path), "expected an object with an entries list")
        entries: list[SweepEntry] = []
        for raw in data.get("entries", []):
            if not isinstance(raw, dict):
                raise CacheLoadFailure(str(store.path), "schedule entry is not an object")
            task_id = str(raw.get("uuid", "")).strip()
            try:
                scheduled = parse_iso_datetime(raw.get("scheduled"))
            except (TypeError, ValueError) as exc:
                raise CacheLoadFailure(str(store.path), f"entry {task_id}: {exc}") from exc
            if task_id and scheduled is not None:
                entries.append(SweepEntry(task_id=task_id, scheduled=scheduled))
        return cls(store, entries)

    @property
    def dirty(self) -> bool:
        return self._dirty

    @property
    def entries(self) -> list[SweepEntry]:
        return list(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, task_id: str) -> bool:
        return any(entry.task_id == task_id for entry in self._entries)

    def _insert(self, task_id: str, scheduled: datetime) -> None:
        self._entries = [entry for entry in self._entries if entry.task_id != task_id]
        self._entries.append(SweepEntry(task_id=task_id, scheduled=scheduled))
        self._entries.sort(key=lambda entry: entry.scheduled)
        self._dirty = True

    def update(self, task_id: str, scheduled: datetime | None) -> None:
        if scheduled is None:
            self.remove(task_id)
            return
        for entry in self._entries:
            if entry.task_id == task_id and entry.scheduled == scheduled:
                return
        self._insert(task_id, scheduled)

    def remove(self, task_id: str) -> None:
        for position, entry in enumerate(self._entries):
            if entry.task_id == task_id:
                del self._entries[position]
                self._dirty = True
                return

    def track(self, task: TaskSnapshot, now: datetime) -> None:
        """Keep an entry only for a pending task whose scheduled time is still ahead of ``now``.

        An elapsed scheduled time is removed rather than re-added, otherwise every
        later invocation would sweep the same task again.
        """
        if task.status == PENDING and task.scheduled is not None and task.scheduled >= now:
            self.update(task.task_id, task.scheduled)
        else:
            self.remove(task.task_id)

    def sweep(self, now: datetime) -> list[str]:
        due = 0
        while due < len(self._entries) and self._entries[due].scheduled < now:
            due += 1
        if not due:
            return []
        swept = [entry.task_id for entry in self._entries[:due]]
        del self._entries[:due]
        self._dirty = True
        logger.debug("Swept %d overdue entries", len(swept))
        return swept

    def to_dict(self) -> dict[str, list[dict[str, str]]]:
        return {
            "entries": [
                {"uuid": entry.task_id, "scheduled": format_rfc3339(entry.scheduled)} for entry in self._entries
            ]
        }

    def flush(self) -> bool:
        if not self._dirty:
            return False
        if self.store is not None:
            self.store.write(self.to_dict())
        self._dirty = False
        return self.store is not None
