from __future__ import annotations

import logging
import os
from dataclasses import dataclass, replace
from datetime import datetime
from typing import Any, Callable

from taskcal.cache_store import JsonCacheFile
from taskcal.errors import CacheLoadFailure
from taskcal.models import DEFAULT_PALETTE_SIZE, NEUTRAL_COLOR_ID, parse_iso_datetime, serialize_datetime, utc_now

logger = logging.getLogger(__name__)


@dataclass
class ProjectColor:
    color_id: str
    last_used: datetime
    active_tasks: int = 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "color_id": self.color_id,
            "active_tasks": self.active_tasks,
            "last_modified": serialize_datetime(self.last_used),
        }


class ColorCache:
    """Project -> color assignment over a fixed palette with least-recently-used eviction.

    Colors are the ids ``"1"`` .. ``str(palette_size)``. A project keeps its color
    until the palette is saturated and it is the entry touched longest ago, at
    which point its color moves to the newcomer.
    """

    def __init__(
        self,
        store: JsonCacheFile | None = None,
        projects: dict[str, ProjectColor] | None = None,
        *,
        palette_size: int = DEFAULT_PALETTE_SIZE,
        neutral_color_id: str = NEUTRAL_COLOR_ID,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        if palette_size < 1:
            raise ValueError("palette_size must be at least 1")
        self.store = store
        self.palette_size = palette_size
        self.neutral_color_id = neutral_color_id
        self._clock = clock
        self._projects: dict[str, ProjectColor] = dict(projects or {})
        self._dirty = False

    @classmethod
    def load(
        cls,
        path: str | os.PathLike[str],
        *,
        palette_size: int = DEFAULT_PALETTE_SIZE,
        neutral_color_id: str = NEUTRAL_COLOR_ID,
        clock: Callable[[], datetime] = utc_now,
    ) -> "ColorCache":
        store = JsonCacheFile(path)
        data = store.read()
        cache = cls(store, palette_size=palette_size, neutral_color_id=neutral_color_id, clock=clock)
        if data is None:
            return cache
        if not isinstance(data, dict):
            raise CacheLoadFailure(str(store.path), "expected a JSON object")
        palette = set(cache.palette)
        taken: set[str] = set()
        for project, raw in data.items():
            if not isinstance(raw, dict):
                raise CacheLoadFailure(str(store.path), f"entry for {project!r} is not an object")
            color_id = str(raw.get("color_id", "")).strip()
            try:
                last_used = parse_iso_datetime(raw.get("last_modified")) or cache._clock()
                active_tasks = int(raw.get("active_tasks", 0) or 0)
            except (TypeError, ValueError) as exc:
                raise CacheLoadFailure(str(store.path), f"entry for {project!r}: {exc}") from exc
            if not project or color_id not in palette or color_id in taken:
                # Out-of-palette or duplicate colors (palette shrunk, hand edits) are dropped.
                logger.warning("Dropping color cache entry %r with color %r", project, color_id)
                cache._dirty = True
                continue
            taken.add(color_id)
            cache._projects[str(project)] = ProjectColor(
                color_id=color_id,
                last_used=last_used,
                active_tasks=active_tasks,
            )
        return cache

    @property
    def palette(self) -> list[str]:
        return [str(i) for i in range(1, self.palette_size + 1)]

    @property
    def dirty(self) -> bool:
        return self._dirty

    def __contains__(self, project: str) -> bool:
        return project in self._projects

    def __len__(self) -> int:
        return len(self._projects)

    def get(self, project: str) -> ProjectColor | None:
        return self._projects.get(project)

    def color_for(self, project: str, is_active: bool = True) -> str:
        # is_active is accepted for callers but no occupancy accounting is kept.
        if not project:
            return self.neutral_color_id

        state = self._projects.get(project)
        if state is not None:
            state.last_used = self._clock()
            self._dirty = True
            return state.color_id

        return self._assign(project)

    def _assign(self, project: str) -> str:
        used = {state.color_id for state in self._projects.values()}
        for color_id in self.palette:
            if color_id not in used:
                self._projects[project] = ProjectColor(color_id=color_id, last_used=self._clock())
                self._dirty = True
                logger.debug("Assigned free color %s to project %r", color_id, project)
                return color_id

        oldest_project = ""
        oldest: ProjectColor | None = None
        for name, state in self._projects.items():
            if oldest is None or state.last_used < oldest.last_used:
                oldest_project = name
                oldest = state

        if oldest is None:
            return self.palette[0]

        recycled = oldest.color_id
        del self._projects[oldest_project]
        self._projects[project] = ProjectColor(color_id=recycled, last_used=self._clock())
        self._dirty = True
        logger.info("Color %s moved from project %r to %r", recycled, oldest_project, project)
        return recycled

    def checkpoint(self) -> tuple[dict[str, ProjectColor], bool]:
        return {project: replace(state) for project, state in self._projects.items()}, self._dirty

    def restore(self, saved: tuple[dict[str, ProjectColor], bool]) -> None:
        """Undo every assignment made since ``checkpoint``."""
        projects, dirty = saved
        self._projects = {project: replace(state) for project, state in projects.items()}
        self._dirty = dirty

    def to_dict(self) -> dict[str, Any]:
        return {project: state.to_dict() for project, state in self._projects.items()}

    def flush(self) -> bool:
        if not self._dirty:
            return False
        if self.store is not None:
            self.store.write(self.to_dict())
        self._dirty = False
        return self.store is not None
