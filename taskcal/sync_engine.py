from __future__ import annotations

import logging
from datetime import datetime, timedelta
from typing import Callable, Iterable, Sequence

from taskcal.calendar_client import CalendarService
from taskcal.color_cache import ColorCache
from taskcal.errors import TaskcalError
from taskcal.event_index import EventIndex
from taskcal.materializer import DEFAULT_DURATION, materialize
from taskcal.models import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_ERROR,
    ACTION_NOOP,
    ACTION_PATCH,
    ACTION_SKIPPED,
    DELETED,
    WAITING,
    CalendarEvent,
    HookResult,
    TaskOutcome,
    TaskSnapshot,
    utc_now,
)
from taskcal.patcher import compute_patch
from taskcal.sweep_schedule import SweepSchedule
from taskcal.task_source import TaskSource

logger = logging.getLogger(__name__)

SYNC = "sync"
DELETE = "delete"


class SyncEngine:
    """Decides create/patch/no-op/delete for one hook event and keeps the caches consistent.

    The engine is the only writer of the index and the sweep schedule; the
    color cache is written through the materializer. Nothing here flushes
    implicitly: callers decide when the invocation's state is final.
    """

    def __init__(
        self,
        calendar: CalendarService,
        index: EventIndex,
        colors: ColorCache,
        schedule: SweepSchedule,
        *,
        task_source: TaskSource | None = None,
        blocking_tags: Iterable[str] = ("blocked",),
        default_duration: timedelta = DEFAULT_DURATION,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self.calendar = calendar
        self.index = index
        self.colors = colors
        self.schedule = schedule
        self.task_source = task_source
        self.blocking_tags = [tag for tag in blocking_tags if tag]
        self.default_duration = default_duration
        self._clock = clock

    def classify(self, snapshots: Sequence[TaskSnapshot]) -> tuple[TaskSnapshot | None, str]:
        if not snapshots:
            return None, SYNC
        # on-modify delivers (old, new); the new snapshot is authoritative.
        task = snapshots[1] if len(snapshots) >= 2 else snapshots[0]
        if task.status in {DELETED, WAITING}:
            return task, DELETE
        if any(task.has_tag(tag) for tag in self.blocking_tags):
            return task, DELETE
        return task, SYNC

    def resolve_event(self, task_id: str) -> CalendarEvent | None:
        event_id = self.index.lookup(task_id)
        if event_id:
            event = self.calendar.get(event_id)
            if event is not None:
                return event
            logger.info("Indexed event %s for task %s no longer exists", event_id, task_id)

        event = self.calendar.find_by_task_id(task_id)
        if event is not None and event.event_id:
            self.index.record(task_id, event.event_id)
            return event
        if event_id:
            self.index.forget(task_id)
        return None

    def process_hook(self, snapshots: Sequence[TaskSnapshot], now: datetime | None = None) -> HookResult:
        now = now or self._clock()
        result = HookResult(run_at=now)
        task, action = self.classify(snapshots)
        if task is None:
            return result
        result.outcomes.append(self._apply(task, action, now))
        return result

    def run_sweep(self, now: datetime | None = None) -> list[tuple[str, TaskOutcome]]:
        now = now or self._clock()
        pending = {entry.task_id: entry.scheduled for entry in self.schedule.entries}
        swept = self.schedule.sweep(now)
        results: list[tuple[str, TaskOutcome]] = []
        for task_id in swept:
            outcome = self._refresh_swept(task_id, now)
            if outcome.failed:
                # Keep the entry so the next invocation retries it.
                self.schedule.update(task_id, pending[task_id])
            results.append((task_id, outcome))
        if swept:
            logger.info("Sweep processed %d overdue tasks", len(swept))
        return results

    def _refresh_swept(self, task_id: str, now: datetime) -> TaskOutcome:
        if self.task_source is None:
            return TaskOutcome(task_id=task_id, action=ACTION_SKIPPED, message="no task source configured")
        try:
            task = self.task_source.get(task_id)
        except (OSError, RuntimeError, ValueError) as exc:
            logger.warning("Could not re-fetch swept task %s: %s", task_id, exc)
            return TaskOutcome(task_id=task_id, action=ACTION_ERROR, error_kind="task_source_failure", message=str(exc))
        if task is None:
            return TaskOutcome(task_id=task_id, action=ACTION_SKIPPED, message="task not found")
        _, action = self.classify([task])
        return self._apply(task, action, now)

    def _apply(self, task: TaskSnapshot, action: str, now: datetime) -> TaskOutcome:
        try:
            if action == DELETE:
                return self._delete(task)
            return self._sync(task, now)
        except TaskcalError as exc:
            logger.error("Task %s %s failed (%s): %s", task.task_id, action, exc.kind, exc)
            return TaskOutcome(task_id=task.task_id, action=ACTION_ERROR, error_kind=exc.kind, message=str(exc))

    def _delete(self, task: TaskSnapshot) -> TaskOutcome:
        event = self.resolve_event(task.task_id)
        outcome = TaskOutcome(task_id=task.task_id, action=ACTION_NOOP, message="no event to delete")
        if event is not None:
            self.calendar.delete(event.event_id)
            outcome = TaskOutcome(task_id=task.task_id, action=ACTION_DELETE, event_id=event.event_id)
            logger.info("Deleted event %s for task %s (%s)", event.event_id, task.task_id, task.status)
        self.index.forget(task.task_id)
        self.schedule.remove(task.task_id)
        return outcome

    def _sync(self, task: TaskSnapshot, now: datetime) -> TaskOutcome:
        # A color assignment only sticks once the event write went through.
        saved_colors = self.colors.checkpoint()
        try:
            outcome = self._write_event(task, now)
        except TaskcalError:
            self.colors.restore(saved_colors)
            raise
        self.schedule.track(task, now)
        logger.info("Task %s: %s %s", task.task_id, outcome.action, outcome.event_id)
        return outcome

    def _write_event(self, task: TaskSnapshot, now: datetime) -> TaskOutcome:
        target = materialize(task, self.colors, now=now, default_duration=self.default_duration)
        existing = self.resolve_event(task.task_id)

        if existing is None:
            event_id = self.calendar.create(target)
            self.index.record(task.task_id, event_id)
            outcome = TaskOutcome(task_id=task.task_id, action=ACTION_CREATE, event_id=event_id)
        else:
            patch = compute_patch(existing, target)
            if patch is None:
                outcome = TaskOutcome(task_id=task.task_id, action=ACTION_NOOP, event_id=existing.event_id)
            else:
                updated = self.calendar.patch(existing.event_id, patch)
                event_id = updated.event_id or existing.event_id
                self.index.record(task.task_id, event_id)
                outcome = TaskOutcome(
                    task_id=task.task_id,
                    action=ACTION_PATCH,
                    event_id=event_id,
                    message=",".join(patch.fields()),
                )
        return outcome

    def flush(self) -> dict[str, bool]:
        written: dict[str, bool] = {}
        for name, cache in (("index", self.index), ("colors", self.colors), ("schedule", self.schedule)):
            try:
                written[name] = cache.flush()
            except OSError as exc:
                logger.error("Could not persist %s cache: %s", name, exc)
                written[name] = False
        return written
