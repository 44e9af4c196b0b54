from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Callable, Sequence

from taskcal.cache_store import COLORS_FILE, INDEX_FILE, SCHEDULE_FILE, JsonCacheFile
from taskcal.calendar_client import CalendarService, GoogleCalendarService
from taskcal.color_cache import ColorCache
from taskcal.errors import CacheLoadFailure
from taskcal.event_index import EventIndex
from taskcal.models import AppConfig, HookResult, TaskSnapshot, utc_now
from taskcal.sweep_schedule import SweepSchedule
from taskcal.sync_engine import SyncEngine
from taskcal.task_source import TaskSource, TaskwarriorExporter

logger = logging.getLogger(__name__)


@dataclass
class Caches:
    index: EventIndex
    colors: ColorCache
    schedule: SweepSchedule


def open_caches(config: AppConfig, clock: Callable[[], datetime] = utc_now) -> Caches:
    """Load the three caches; a corrupt file costs only its own cache."""
    directory = config.cache.path
    index_path = directory / INDEX_FILE
    colors_path = directory / COLORS_FILE
    schedule_path = directory / SCHEDULE_FILE

    try:
        index = EventIndex.load(index_path)
    except CacheLoadFailure as exc:
        logger.error("Index cache unusable, starting empty: %s", exc)
        index = EventIndex(JsonCacheFile(index_path))

    try:
        colors = ColorCache.load(
            colors_path,
            palette_size=config.cache.palette_size,
            neutral_color_id=config.cache.neutral_color_id,
            clock=clock,
        )
    except CacheLoadFailure as exc:
        logger.error("Color cache unusable, starting empty: %s", exc)
        colors = ColorCache(
            JsonCacheFile(colors_path),
            palette_size=config.cache.palette_size,
            neutral_color_id=config.cache.neutral_color_id,
            clock=clock,
        )

    try:
        schedule = SweepSchedule.load(schedule_path)
    except CacheLoadFailure as exc:
        logger.error("Sweep schedule unusable, starting empty: %s", exc)
        schedule = SweepSchedule(JsonCacheFile(schedule_path))

    return Caches(index=index, colors=colors, schedule=schedule)


def build_engine(
    config: AppConfig,
    caches: Caches,
    *,
    calendar: CalendarService | None = None,
    task_source: TaskSource | None = None,
    clock: Callable[[], datetime] = utc_now,
) -> SyncEngine:
    return SyncEngine(
        calendar or GoogleCalendarService(config.calendar),
        caches.index,
        caches.colors,
        caches.schedule,
        task_source=task_source,
        blocking_tags=config.sync.blocking_tags,
        default_duration=config.sync.default_duration,
        clock=clock,
    )


def run_invocation(
    config: AppConfig,
    snapshots: Sequence[TaskSnapshot],
    *,
    calendar: CalendarService | None = None,
    task_source: TaskSource | None = None,
    now: datetime | None = None,
) -> HookResult:
    """One hook invocation: sweep pass (flushed first), then the hook's own task."""
    now = now or utc_now()
    caches = open_caches(config, clock=lambda: now)
    engine = build_engine(
        config,
        caches,
        calendar=calendar,
        task_source=task_source if task_source is not None else TaskwarriorExporter(),
        clock=lambda: now,
    )

    swept = engine.run_sweep(now)
    engine.flush()

    result = engine.process_hook(snapshots, now=now)
    result.swept = swept
    engine.flush()

    for outcome in result.errors:
        logger.warning("Task %s not synced: %s %s", outcome.task_id, outcome.error_kind, outcome.message)
    return result
