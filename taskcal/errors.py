from __future__ import annotations


class TaskcalError(RuntimeError):
    """Base error for reconciliation failures that are reported per task."""

    kind = "error"


class NoSchedulableTime(TaskcalError):
    """Raised when a task has none of end/start/scheduled/due to place it on a calendar."""

    kind = "no_schedulable_time"

    def __init__(self, task_id: str) -> None:
        self.task_id = task_id
        super().__init__(f"task has no end, start, scheduled or due time: {task_id}")


class MalformedTimestamp(TaskcalError):
    """Raised when a stored event start/end cannot be parsed as RFC3339."""

    kind = "malformed_timestamp"

    def __init__(self, *, event_id: str, field: str, value: str) -> None:
        self.event_id = event_id
        self.field = field
        self.value = value
        super().__init__(f"event {event_id or '<target>'} has malformed {field} timestamp: {value!r}")


class RemoteFailure(TaskcalError):
    kind = "remote_failure"

    def __init__(self, message: str, *, status_code: int | None = None) -> None:
        self.status_code = status_code
        self.message = message
        if status_code is None:
            super().__init__(message)
        else:
            super().__init__(f"calendar request failed ({status_code}): {message}")


class RemoteLookupFailure(RemoteFailure):
    kind = "remote_lookup_failure"


class RemoteWriteFailure(RemoteFailure):
    kind = "remote_write_failure"


class CacheLoadFailure(TaskcalError):
    """Raised when a persisted cache file exists but cannot be decoded."""

    kind = "cache_load_failure"

    def __init__(self, path: str, reason: str) -> None:
        self.path = path
        self.reason = reason
        super().__init__(f"could not load cache {path}: {reason}")
