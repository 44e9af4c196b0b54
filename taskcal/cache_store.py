from __future__ import annotations

import errno
import json
import logging
import os
import threading
from pathlib import Path
from typing import Any

from taskcal.errors import CacheLoadFailure

logger = logging.getLogger(__name__)

INDEX_FILE = "events.json"
COLORS_FILE = "project_colors.json"
SCHEDULE_FILE = "pending_tasks.json"


def write_private_text(path: Path, text: str) -> None:
    """Replace ``path`` with ``text`` through an owner-only temp file."""
    path.parent.mkdir(mode=0o700, parents=True, exist_ok=True)
    tmp_path = path.with_suffix(path.suffix + ".tmp")
    fd = os.open(tmp_path, os.O_WRONLY | os.O_CREAT | os.O_TRUNC, 0o600)
    with os.fdopen(fd, "w", encoding="utf-8") as handle:
        handle.write(text)
    try:
        tmp_path.replace(path)
    except OSError as exc:
        # Some bind-mounted single files in containers cannot be atomically replaced.
        if exc.errno != errno.EBUSY:
            raise
        with path.open("w", encoding="utf-8") as handle:
            handle.write(text)
        if tmp_path.exists():
            tmp_path.unlink()


class JsonCacheFile:
    """One human-readable JSON document on disk, written whole or not at all."""

    def __init__(self, path: str | os.PathLike[str]) -> None:
        self.path = Path(path).expanduser()
        self._lock = threading.RLock()

    def exists(self) -> bool:
        return self.path.exists()

    def read(self) -> Any | None:
        with self._lock:
            if not self.path.exists():
                return None
            try:
                with self.path.open("r", encoding="utf-8") as handle:
                    text = handle.read()
            except OSError as exc:
                raise CacheLoadFailure(str(self.path), str(exc)) from exc
            if not text.strip():
                return None
            try:
                return json.loads(text)
            except ValueError as exc:
                raise CacheLoadFailure(str(self.path), str(exc)) from exc

    def write(self, payload: Any) -> None:
        with self._lock:
            text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
            write_private_text(self.path, text)
            logger.debug("Wrote cache %s", self.path)
