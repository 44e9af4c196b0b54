import unittest

from taskcal.errors import MalformedTimestamp
from taskcal.models import CalendarEvent
from taskcal.patcher import compute_patch, parse_rfc3339


def _event(**overrides) -> CalendarEvent:
    values = {
        "event_id": "evt-1",
        "title": "Write report",
        "description": "Status: pending\n",
        "color_id": "3",
        "start": "2024-01-01T09:00:00Z",
        "end": "2024-01-01T10:00:00Z",
        "task_id": "task-1",
    }
    values.update(overrides)
    return CalendarEvent(**values)


class PatcherTests(unittest.TestCase):
    def test_identical_events_need_no_patch(self) -> None:
        event = _event()
        self.assertIsNone(compute_patch(event, event))

    def test_offsets_compared_as_instants(self) -> None:
        existing = _event(start="2024-01-01T10:00:00+01:00", end="2024-01-01T11:00:00+01:00")
        self.assertIsNone(compute_patch(existing, _event(event_id="")))

    def test_only_changed_text_fields_included(self) -> None:
        patch = compute_patch(_event(), _event(title="! Write report", color_id="5"))
        self.assertIsNotNone(patch)
        self.assertEqual(patch.fields(), ["title", "color_id"])
        self.assertEqual(patch.to_api(), {"summary": "! Write report", "colorId": "5"})

    def test_start_and_end_replaced_together(self) -> None:
        patch = compute_patch(_event(), _event(end="2024-01-01T10:30:00Z"))
        self.assertEqual(patch.fields(), ["start", "end"])
        self.assertEqual(patch.start, "2024-01-01T09:00:00Z")
        self.assertEqual(patch.end, "2024-01-01T10:30:00Z")

    def test_malformed_existing_timestamp_is_reported(self) -> None:
        with self.assertRaises(MalformedTimestamp) as ctx:
            compute_patch(_event(start="yesterday"), _event())
        self.assertEqual(ctx.exception.field, "start")
        self.assertEqual(ctx.exception.event_id, "evt-1")

    def test_timestamp_without_offset_is_malformed(self) -> None:
        with self.assertRaises(MalformedTimestamp):
            compute_patch(_event(end="2024-01-01T10:00:00"), _event())

    def test_parse_rfc3339_fractional_seconds(self) -> None:
        parsed = parse_rfc3339("2024-01-01T09:00:00.250Z")
        self.assertEqual(parsed.microsecond, 250000)


if __name__ == "__main__":
    unittest.main()
