import unittest
from datetime import datetime, timedelta, timezone
from unittest import mock

from taskcal.color_cache import ColorCache
from taskcal.errors import RemoteWriteFailure
from taskcal.event_index import EventIndex
from taskcal.models import (
    ACTION_CREATE,
    ACTION_DELETE,
    ACTION_ERROR,
    ACTION_NOOP,
    ACTION_PATCH,
    ACTION_SKIPPED,
    COMPLETED,
    DELETED,
    PENDING,
    WAITING,
    CalendarEvent,
    EventPatch,
    TaskSnapshot,
)
from taskcal.sweep_schedule import SweepSchedule
from taskcal.sync_engine import DELETE, SYNC, SyncEngine

NOW = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class _FakeCalendar:
    def __init__(self) -> None:
        self.events: dict[str, CalendarEvent] = {}
        self.calls: list[tuple[str, str]] = []
        self._next = 0

    def add(self, event: CalendarEvent) -> CalendarEvent:
        self.events[event.event_id] = event
        return event

    def create(self, event: CalendarEvent) -> str:
        self._next += 1
        event_id = f"evt-{self._next}"
        self.events[event_id] = CalendarEvent(**dict(event.to_dict(), event_id=event_id))
        self.calls.append(("create", event_id))
        return event_id

    def get(self, event_id: str) -> CalendarEvent | None:
        self.calls.append(("get", event_id))
        return self.events.get(event_id)

    def patch(self, event_id: str, patch: EventPatch) -> CalendarEvent:
        self.calls.append(("patch", event_id))
        event = self.events[event_id]
        for field in patch.fields():
            setattr(event, field, getattr(patch, field))
        return event

    def delete(self, event_id: str) -> None:
        self.calls.append(("delete", event_id))
        self.events.pop(event_id, None)

    def find_by_task_id(self, task_id: str) -> CalendarEvent | None:
        self.calls.append(("find", task_id))
        for event in self.events.values():
            if event.task_id == task_id:
                return event
        return None

    def writes(self) -> list[tuple[str, str]]:
        return [call for call in self.calls if call[0] in {"create", "patch", "delete"}]


def _task(**overrides) -> TaskSnapshot:
    values = {
        "task_id": "task-1",
        "description": "Write report",
        "status": PENDING,
        "project": "work",
        "scheduled": NOW + timedelta(hours=2),
    }
    values.update(overrides)
    return TaskSnapshot(**values)


class SyncEngineTests(unittest.TestCase):
    def setUp(self) -> None:
        self.calendar = _FakeCalendar()
        self.index = EventIndex()
        self.colors = ColorCache(clock=lambda: NOW)
        self.schedule = SweepSchedule()
        self.task_source = mock.Mock()
        self.engine = SyncEngine(
            self.calendar,
            self.index,
            self.colors,
            self.schedule,
            task_source=self.task_source,
            clock=lambda: NOW,
        )

    def test_classify(self) -> None:
        old = _task()
        self.assertEqual(self.engine.classify([]), (None, SYNC))
        self.assertEqual(self.engine.classify([old])[1], SYNC)
        self.assertEqual(self.engine.classify([old, _task(status=WAITING)])[1], DELETE)
        self.assertEqual(self.engine.classify([old, _task(status=DELETED)])[1], DELETE)
        self.assertEqual(self.engine.classify([old, _task(tags=["Blocked"])])[1], DELETE)
        self.assertEqual(self.engine.classify([old, _task(status=COMPLETED)])[1], SYNC)
        task, _ = self.engine.classify([old, _task(description="new")])
        self.assertEqual(task.description, "new")

    def test_new_task_is_created_and_indexed(self) -> None:
        result = self.engine.process_hook([_task()])
        outcome = result.outcomes[0]
        self.assertEqual(outcome.action, ACTION_CREATE)
        self.assertEqual(self.index.lookup("task-1"), outcome.event_id)
        self.assertIn("task-1", self.schedule)
        created = self.calendar.events[outcome.event_id]
        self.assertEqual(created.task_id, "task-1")
        self.assertEqual(created.color_id, "1")

    def test_unchanged_task_makes_no_remote_write(self) -> None:
        self.engine.process_hook([_task()])
        self.calendar.calls.clear()
        result = self.engine.process_hook([_task(), _task()])
        self.assertEqual(result.outcomes[0].action, ACTION_NOOP)
        self.assertEqual(self.calendar.writes(), [])

    def test_changed_task_is_patched(self) -> None:
        created = self.engine.process_hook([_task()]).outcomes[0]
        result = self.engine.process_hook([_task(), _task(description="Write final report")])
        outcome = result.outcomes[0]
        self.assertEqual(outcome.action, ACTION_PATCH)
        self.assertEqual(outcome.event_id, created.event_id)
        self.assertEqual(outcome.message, "title")
        self.assertEqual(self.calendar.events[created.event_id].title, "Write final report")

    def test_waiting_task_deletes_event_and_cache_entries(self) -> None:
        created = self.engine.process_hook([_task()]).outcomes[0]
        self.assertIn("task-1", self.schedule)

        result = self.engine.process_hook([_task(), _task(status=WAITING)])
        outcome = result.outcomes[0]
        self.assertEqual(outcome.action, ACTION_DELETE)
        self.assertEqual(outcome.event_id, created.event_id)
        self.assertNotIn(created.event_id, self.calendar.events)
        self.assertIsNone(self.index.lookup("task-1"))
        self.assertNotIn("task-1", self.schedule)

    def test_delete_without_event_is_noop(self) -> None:
        result = self.engine.process_hook([_task(), _task(status=DELETED)])
        self.assertEqual(result.outcomes[0].action, ACTION_NOOP)
        self.assertEqual(self.calendar.writes(), [])

    def test_delete_failure_keeps_index_entry(self) -> None:
        created = self.engine.process_hook([_task()]).outcomes[0]
        with mock.patch.object(self.calendar, "delete", side_effect=RemoteWriteFailure("boom", status_code=500)):
            result = self.engine.process_hook([_task(), _task(status=DELETED)])
        self.assertEqual(result.outcomes[0].action, ACTION_ERROR)
        self.assertEqual(result.outcomes[0].error_kind, "remote_write_failure")
        self.assertEqual(self.index.lookup("task-1"), created.event_id)

    def test_failed_create_keeps_existing_color_assignment(self) -> None:
        self.engine.colors = ColorCache(palette_size=1, clock=lambda: NOW)
        self.engine.colors.color_for("home")
        self.engine.colors.flush()
        with mock.patch.object(self.calendar, "create", side_effect=RemoteWriteFailure("boom", status_code=503)):
            result = self.engine.process_hook([_task()])
        self.assertEqual(result.outcomes[0].error_kind, "remote_write_failure")
        self.assertIn("home", self.engine.colors)
        self.assertNotIn("work", self.engine.colors)
        self.assertFalse(self.engine.colors.dirty)
        self.assertIsNone(self.index.lookup("task-1"))

    def test_stale_index_entry_is_replaced_by_remote_lookup(self) -> None:
        self.index.record("task-1", "evt-gone")
        found = self.calendar.add(
            CalendarEvent(
                event_id="evt-found",
                title="Write report",
                start="2024-01-01T14:00:00Z",
                end="2024-01-01T14:30:00Z",
                task_id="task-1",
            )
        )
        event = self.engine.resolve_event("task-1")
        self.assertEqual(event.event_id, found.event_id)
        self.assertEqual(self.index.lookup("task-1"), "evt-found")

    def test_stale_index_entry_without_remote_event_is_forgotten(self) -> None:
        self.index.record("task-1", "evt-gone")
        self.assertIsNone(self.engine.resolve_event("task-1"))
        self.assertIsNone(self.index.lookup("task-1"))

    def test_unschedulable_task_reports_error(self) -> None:
        result = self.engine.process_hook([_task(scheduled=None)])
        outcome = result.outcomes[0]
        self.assertEqual(outcome.action, ACTION_ERROR)
        self.assertEqual(outcome.error_kind, "no_schedulable_time")
        self.assertEqual(self.calendar.calls, [])
        self.assertEqual(result.errors, [outcome])

    def test_malformed_remote_event_left_untouched(self) -> None:
        self.index.record("task-1", "evt-bad")
        self.calendar.add(CalendarEvent(event_id="evt-bad", title="x", start="garbage", end="", task_id="task-1"))
        result = self.engine.process_hook([_task()])
        self.assertEqual(result.outcomes[0].error_kind, "malformed_timestamp")
        self.assertEqual(self.calendar.writes(), [])
        self.assertNotIn("task-1", self.schedule)

    def test_sweep_refreshes_overdue_tasks(self) -> None:
        self.engine.process_hook([_task()])
        later = NOW + timedelta(hours=3)
        self.task_source.get.return_value = _task()

        swept = self.engine.run_sweep(later)
        self.assertEqual([task_id for task_id, _ in swept], ["task-1"])
        outcome = swept[0][1]
        self.assertEqual(outcome.action, ACTION_PATCH)
        event = self.calendar.events[outcome.event_id]
        self.assertEqual(event.title, "! Write report")
        self.assertNotIn("task-1", self.schedule)
        self.assertEqual(self.engine.run_sweep(later), [])

    def test_sweep_without_task_source_skips(self) -> None:
        self.engine.task_source = None
        self.schedule.update("task-1", NOW - timedelta(minutes=1))
        swept = self.engine.run_sweep(NOW)
        self.assertEqual(swept[0][1].action, ACTION_SKIPPED)
        self.assertNotIn("task-1", self.schedule)

    def test_sweep_retries_after_task_source_failure(self) -> None:
        scheduled = NOW - timedelta(minutes=1)
        self.schedule.update("task-1", scheduled)
        self.task_source.get.side_effect = RuntimeError("task export failed")
        swept = self.engine.run_sweep(NOW)
        self.assertEqual(swept[0][1].error_kind, "task_source_failure")
        self.assertEqual(self.schedule.entries[0].scheduled, scheduled)

    def test_flush_continues_after_failing_cache(self) -> None:
        self.index.record("task-1", "evt-1")
        self.colors.color_for("home")
        with mock.patch.object(self.index, "flush", side_effect=OSError("disk full")):
            written = self.engine.flush()
        self.assertFalse(written["index"])
        self.assertFalse(self.colors.dirty)


if __name__ == "__main__":
    unittest.main()
