from __future__ import annotations

import logging
import re
from datetime import datetime, timezone, tzinfo
from pathlib import Path
from typing import Iterable

from taskcal.models import COMPLETED, PENDING, TaskSnapshot

logger = logging.getLogger(__name__)

HEADLINE_PATTERN = re.compile(
    r"^\* (?P<keyword>TODO|DONE)\s*(?:\[#(?P<priority>[A-Z])\])?\s*(?P<title>.*?)"
    r"(?:\s+:(?P<tags>\w+(?::\w+)*):)?\s*$"
)
DEADLINE_PATTERN = re.compile(r"DEADLINE:\s+<(\d{4}-\d{2}-\d{2})\s+[A-Za-z]{3}\s+(\d{2}:\d{2})>")
ID_PATTERN = re.compile(r":ID:\s+([a-fA-F0-9-]+)")


def parse_org(lines: Iterable[str], source: str = "", local_tz: tzinfo | None = None) -> list[TaskSnapshot]:
    """Extract tasks from org-mode text.

    A headline becomes a task when its property drawer closes (``:END:``) and it
    has a title, an ``:ID:`` property and a ``DEADLINE:`` timestamp.
    Deadlines are local wall-clock times, interpreted in ``local_tz``.
    """
    zone = local_tz or datetime.now().astimezone().tzinfo or timezone.utc
    tasks: list[TaskSnapshot] = []
    current: TaskSnapshot | None = None
    if source:
        logger.debug("Parsing org file %s", source)

    for raw_line in lines:
        line = raw_line.strip()
        headline = HEADLINE_PATTERN.match(line)
        if headline:
            status = PENDING if headline.group("keyword") == "TODO" else COMPLETED
            tags = headline.group("tags")
            current = TaskSnapshot(
                task_id="",
                description=headline.group("title").strip(),
                status=status,
                tags=tags.split(":") if tags else [],
                source="orgmode",
            )
        elif current is not None:
            deadline = DEADLINE_PATTERN.search(line)
            identifier = ID_PATTERN.search(line)
            if deadline:
                try:
                    naive = datetime.strptime(f"{deadline.group(1)} {deadline.group(2)}", "%Y-%m-%d %H:%M")
                except ValueError:
                    logger.warning("Ignoring invalid deadline in %s: %s", source or "<org>", line)
                else:
                    current.due = naive.replace(tzinfo=zone).astimezone(timezone.utc)
            elif identifier:
                current.task_id = identifier.group(1)

        if line.startswith(":END:") and current is not None:
            if current.description and current.task_id and current.due is not None:
                tasks.append(current)
                current = None

    return tasks


def parse_org_files(paths: Iterable[str | Path], local_tz: tzinfo | None = None) -> list[TaskSnapshot]:
    tasks: list[TaskSnapshot] = []
    for path in paths:
        with Path(path).open("r", encoding="utf-8") as handle:
            tasks.extend(parse_org(handle, source=str(path), local_tz=local_tz))
    return tasks


def filter_by_tag(tasks: Iterable[TaskSnapshot], tag: str) -> list[TaskSnapshot]:
    return [task for task in tasks if tag in task.tags]


class OrgTaskSource:
    """Look tasks up by id across a fixed set of org files, re-reading on every call."""

    def __init__(self, paths: Iterable[str | Path], local_tz: tzinfo | None = None) -> None:
        self.paths = [Path(path) for path in paths]
        self.local_tz = local_tz

    def get(self, task_id: str) -> TaskSnapshot | None:
        for task in parse_org_files(self.paths, local_tz=self.local_tz):
            if task.task_id == task_id:
                return task
        return None
