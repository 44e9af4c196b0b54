from __future__ import annotations

from datetime import datetime, timedelta

from taskcal.color_cache import ColorCache
from taskcal.errors import NoSchedulableTime
from taskcal.models import COMPLETED, CalendarEvent, TaskSnapshot, format_rfc3339, utc_now

DEFAULT_DURATION = timedelta(minutes=30)

COMPLETED_MARKER = "✓"
STARTED_MARKER = "‣"
OVERDUE_MARKER = "!"
NOTE_BULLET = "‣"
ACCOUNTING_BULLET = "•"


def format_duration(value: timedelta) -> str:
    total = int(round(abs(value.total_seconds())))
    hours, remainder = divmod(total, 3600)
    minutes, seconds = divmod(remainder, 60)
    parts = []
    if hours:
        parts.append(f"{hours}h")
    if minutes:
        parts.append(f"{minutes}m")
    if seconds or not parts:
        parts.append(f"{seconds}s")
    return "".join(parts)


def _positive(value: timedelta | None) -> timedelta | None:
    if value is not None and value > timedelta(0):
        return value
    return None


def title_prefix(task: TaskSnapshot, now: datetime) -> str:
    if task.status == COMPLETED:
        return COMPLETED_MARKER
    if task.start is not None:
        return STARTED_MARKER
    if (task.due is not None and task.due < now) or (task.scheduled is not None and task.scheduled < now):
        return OVERDUE_MARKER
    return ""


def build_title(task: TaskSnapshot, now: datetime) -> str:
    prefix = title_prefix(task, now)
    if prefix:
        return f"{prefix} {task.description}"
    return task.description


def event_window(
    task: TaskSnapshot,
    now: datetime,
    default_duration: timedelta = DEFAULT_DURATION,
) -> tuple[datetime, datetime]:
    estimate = _positive(task.estimate)
    actual = _positive(task.actual)

    if task.status == COMPLETED:
        end = task.end or now
        return end - (actual or estimate or default_duration), end

    for anchor in (task.start, task.scheduled, task.due):
        if anchor is not None:
            return anchor, anchor + (estimate or default_duration)

    raise NoSchedulableTime(task.task_id)


def build_description(task: TaskSnapshot) -> str:
    lines: list[str] = []

    if task.tags:
        lines.append(" ".join(f"#{tag}" for tag in task.tags))
        lines.append("")

    lines.append(f"Status: {task.status}")
    if task.project:
        lines.append(f"Project: {task.project}")
    lines.append(f"UUID: {task.task_id}")

    lines.append("")
    lines.append("Accounting:")
    estimate = _positive(task.estimate)
    if estimate is not None:
        lines.append(f"{ACCOUNTING_BULLET} estimated: {format_duration(estimate)}")

    if task.start is not None and task.scheduled is not None:
        drift = task.start - task.scheduled
        if drift > timedelta(minutes=1):
            lines.append(f"{ACCOUNTING_BULLET} started late by: {format_duration(_round_minutes(drift))}")
        elif drift < -timedelta(minutes=1):
            lines.append(f"{ACCOUNTING_BULLET} started early by: {format_duration(_round_minutes(-drift))}")

    if task.status == COMPLETED:
        spent = _positive(task.actual)
        if spent is None and task.start is not None and task.end is not None:
            spent = _positive(task.end - task.start)
        if spent is not None:
            lines.append(f"{ACCOUNTING_BULLET} spent: {format_duration(spent)}")
            if estimate is not None:
                delta = spent - estimate
                if delta > timedelta(0):
                    lines.append(f"{ACCOUNTING_BULLET} over estimate by: {format_duration(delta)}")
                elif delta < timedelta(0):
                    lines.append(f"{ACCOUNTING_BULLET} under estimate by: {format_duration(-delta)}")

    if task.annotations:
        lines.append("")
        lines.append("Notes:")
        lines.extend(f"{NOTE_BULLET} {note}" for note in task.annotations)

    return "\n".join(lines) + "\n"


def _round_minutes(value: timedelta) -> timedelta:
    # Halves round away from zero.
    minutes = int(abs(value.total_seconds()) / 60 + 0.5)
    return timedelta(minutes=minutes if value >= timedelta(0) else -minutes)


def materialize(
    task: TaskSnapshot,
    colors: ColorCache,
    *,
    now: datetime | None = None,
    default_duration: timedelta = DEFAULT_DURATION,
) -> CalendarEvent:
    now = now or utc_now()
    start, end = event_window(task, now, default_duration)
    return CalendarEvent(
        title=build_title(task, now),
        description=build_description(task),
        color_id=colors.color_for(task.project, task.is_active),
        start=format_rfc3339(start),
        end=format_rfc3339(end),
        task_id=task.task_id,
    )
