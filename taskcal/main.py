from __future__ import annotations

import json
import logging
import os
import sys
from typing import TextIO

import uvicorn

from taskcal.calendar_client import CalendarService
from taskcal.config_manager import ConfigManager
from taskcal.runtime import run_invocation
from taskcal.task_source import TaskSource, read_hook_input

logger = logging.getLogger("taskcal")


def configure_logging(level: str) -> None:
    # stdout belongs to Taskwarrior: hooks must print the task JSON there.
    logging.basicConfig(
        stream=sys.stderr,
        level=getattr(logging, level.upper(), logging.INFO),
        format="taskcal %(levelname)s %(name)s: %(message)s",
    )


def run_hook(
    stdin: TextIO,
    stdout: TextIO,
    *,
    config_manager: ConfigManager | None = None,
    calendar: CalendarService | None = None,
    task_source: TaskSource | None = None,
) -> int:
    manager = config_manager or ConfigManager()
    config = manager.load()
    configure_logging(config.logging.level)

    try:
        snapshots, raw = read_hook_input(stdin.read())
    except ValueError as exc:
        logger.error("Could not parse hook input: %s", exc)
        return 1
    if not snapshots:
        return 0

    stdout.write(json.dumps(raw[-1], ensure_ascii=False) + "\n")
    stdout.flush()

    # The task edit is already accepted; a sync failure must not make the hook fail.
    try:
        result = run_invocation(config, snapshots, calendar=calendar, task_source=task_source)
    except RuntimeError as exc:
        logger.error("Sync skipped: %s", exc)
        return 0
    for outcome in result.outcomes:
        logger.info("%s %s %s", outcome.task_id, outcome.action, outcome.event_id or outcome.message)
    return 0


def main() -> None:
    sys.exit(run_hook(sys.stdin, sys.stdout))


def serve() -> None:
    host = os.getenv("TASKCAL_HOST", "127.0.0.1")
    port = int(os.getenv("TASKCAL_PORT", "8080"))
    uvicorn.run("taskcal.web_admin:create_app", host=host, port=port, reload=False, factory=True)


if __name__ == "__main__":
    main()
