from __future__ import annotations

import re
from datetime import datetime

from taskcal.errors import MalformedTimestamp
from taskcal.models import CalendarEvent, EventPatch

RFC3339_PATTERN = re.compile(
    r"^\d{4}-\d{2}-\d{2}[Tt ]\d{2}:\d{2}:\d{2}(\.\d+)?([Zz]|[+-]\d{2}:\d{2})$"
)
TEXT_FIELDS = ("title", "description", "color_id")


def parse_rfc3339(value: str) -> datetime:
    text = (value or "").strip()
    if not RFC3339_PATTERN.match(text):
        raise ValueError(f"not an RFC3339 timestamp: {value!r}")
    if text[-1] in "Zz":
        text = text[:-1] + "+00:00"
    return datetime.fromisoformat(text.replace("t", "T"))


def _event_window(event: CalendarEvent) -> tuple[datetime, datetime]:
    parsed: list[datetime] = []
    for field in ("start", "end"):
        value = getattr(event, field)
        try:
            parsed.append(parse_rfc3339(value))
        except ValueError as exc:
            raise MalformedTimestamp(event_id=event.event_id, field=field, value=value) from exc
    return parsed[0], parsed[1]


def compute_patch(existing: CalendarEvent, target: CalendarEvent) -> EventPatch | None:
    existing_window = _event_window(existing)
    target_window = _event_window(target)

    patch = EventPatch()
    for field in TEXT_FIELDS:
        wanted = getattr(target, field)
        if getattr(existing, field) != wanted:
            setattr(patch, field, wanted)

    # Instants are compared, not strings: the service may echo a different offset.
    if existing_window != target_window:
        patch.start = target.start
        patch.end = target.end

    if patch.is_empty():
        return None
    return patch

