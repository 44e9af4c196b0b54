from __future__ import annotations

import json
import logging
import re
import subprocess
from datetime import datetime, timedelta, timezone
from typing import Any, Iterable, Protocol

from taskcal.models import PENDING, TASK_STATUSES, TaskSnapshot, parse_iso_datetime

logger = logging.getLogger(__name__)

TASKWARRIOR_TIME_FORMAT = "%Y%m%dT%H%M%SZ"
DURATION_PATTERN = re.compile(
    r"^P(?:(?P<days>\d+)D)?(?:T(?:(?P<hours>\d+)H)?(?:(?P<minutes>\d+)M)?(?:(?P<seconds>\d+)S)?)?$"
)


class TaskSource(Protocol):
    def get(self, task_id: str) -> TaskSnapshot | None:
        ...


def parse_taskwarrior_time(value: Any) -> datetime | None:
    if value is None:
        return None
    text = str(value).strip()
    if text in {"", "0"}:
        return None
    try:
        return datetime.strptime(text, TASKWARRIOR_TIME_FORMAT).replace(tzinfo=timezone.utc)
    except ValueError:
        # Exports piped through other tools sometimes carry ISO 8601 instead.
        return parse_iso_datetime(text)


def parse_duration(value: Any) -> timedelta | None:
    """Parse an ISO 8601 duration such as ``PT1H30M`` as exported for duration UDAs."""
    if value is None:
        return None
    text = str(value).strip().upper()
    if not text:
        return None
    match = DURATION_PATTERN.match(text)
    if match is None or text in {"P", "PT"}:
        logger.warning("Ignoring unparseable duration %r", value)
        return None
    parts = {key: int(amount) for key, amount in match.groupdict().items() if amount}
    duration = timedelta(**parts)
    return duration or None


def snapshot_from_taskwarrior(payload: dict[str, Any]) -> TaskSnapshot:
    task_id = str(payload.get("uuid", "")).strip()
    if not task_id:
        raise ValueError("task export has no uuid")
    status = str(payload.get("status", PENDING)).strip().lower() or PENDING
    if status not in TASK_STATUSES:
        logger.warning("Unknown status %r for task %s, treating as pending", status, task_id)
        status = PENDING
    annotations: list[str] = []
    for item in payload.get("annotations") or []:
        if isinstance(item, dict):
            text = str(item.get("description", "")).strip()
        else:
            text = str(item).strip()
        if text:
            annotations.append(text)
    raw_tags = payload.get("tags") or []
    if isinstance(raw_tags, str):
        raw_tags = [raw_tags]
    return TaskSnapshot(
        task_id=task_id,
        description=str(payload.get("description", "") or ""),
        status=status,
        project=str(payload.get("project", "") or "").strip(),
        tags=[str(tag).strip() for tag in raw_tags if str(tag).strip()],
        due=parse_taskwarrior_time(payload.get("due")),
        scheduled=parse_taskwarrior_time(payload.get("scheduled")),
        start=parse_taskwarrior_time(payload.get("start")),
        end=parse_taskwarrior_time(payload.get("end")),
        estimate=parse_duration(payload.get("est")),
        actual=parse_duration(payload.get("act")),
        annotations=annotations,
        source="taskwarrior",
    )


def iter_json_objects(text: str) -> Iterable[dict[str, Any]]:
    decoder = json.JSONDecoder()
    position = 0
    length = len(text)
    while True:
        while position < length and text[position].isspace():
            position += 1
        if position >= length:
            return
        payload, position = decoder.raw_decode(text, position)
        if isinstance(payload, list):
            for item in payload:
                if not isinstance(item, dict):
                    raise ValueError("task export array must contain objects")
                yield item
        elif isinstance(payload, dict):
            yield payload
        else:
            raise ValueError("task export must be a JSON object")


def read_hook_input(text: str) -> tuple[list[TaskSnapshot], list[dict[str, Any]]]:
    """Decode hook stdin: one object (on-add) or old/new objects (on-modify).

    Returns the snapshots and the raw payloads, the latter so the hook can echo
    the new task back unchanged.
    """
    raw = list(iter_json_objects(text))
    return [snapshot_from_taskwarrior(item) for item in raw], raw


class TaskwarriorExporter:
    def __init__(self, command: str = "task", timeout_seconds: int = 30) -> None:
        self.command = command
        self.timeout_seconds = timeout_seconds

    def export(self, filters: list[str]) -> list[TaskSnapshot]:
        args = [self.command, *filters, "export", "rc.hooks=0"]
        try:
            completed = subprocess.run(
                args,
                capture_output=True,
                text=True,
                check=True,
                timeout=self.timeout_seconds,
            )
        except subprocess.CalledProcessError as exc:
            raise RuntimeError(
                f"task export failed: exit code {exc.returncode}, stderr: {(exc.stderr or '').strip()}"
            ) from exc
        except subprocess.TimeoutExpired as exc:
            raise RuntimeError(f"task export timed out after {self.timeout_seconds}s") from exc
        return [snapshot_from_taskwarrior(item) for item in iter_json_objects(completed.stdout)]

    def get(self, task_id: str) -> TaskSnapshot | None:
        for task in self.export([task_id]):
            if task.task_id == task_id:
                return task
        return None
