from __future__ import annotations

from dataclasses import asdict, dataclass, field
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any


PENDING = "pending"
COMPLETED = "completed"
WAITING = "waiting"
DELETED = "deleted"
TASK_STATUSES = (PENDING, COMPLETED, WAITING, DELETED)

TASK_ID_PROPERTY = "taskwarrior_id"
DEFAULT_CALENDAR_NAME = "Tasks"
DEFAULT_API_BASE_URL = "https://www.googleapis.com/calendar/v3"
DEFAULT_CACHE_DIR = "~/.config/taskcal"
DEFAULT_TOKEN_FILE = "~/.config/taskcal/token.json"
DEFAULT_PALETTE_SIZE = 11
NEUTRAL_COLOR_ID = "14"


def _ensure_tz(dt: datetime) -> datetime:
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def parse_iso_datetime(value: str | datetime | None) -> datetime | None:
    if value is None:
        return None
    if isinstance(value, datetime):
        return _ensure_tz(value)
    text = value.strip()
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    return _ensure_tz(parsed)


def serialize_datetime(value: datetime | None) -> str | None:
    if value is None:
        return None
    return _ensure_tz(value).isoformat()


def format_rfc3339(value: datetime) -> str:
    """Render an instant the way the calendar API stores it: UTC, seconds, ``Z``."""
    utc_value = _ensure_tz(value).astimezone(timezone.utc).replace(microsecond=0)
    return utc_value.strftime("%Y-%m-%dT%H:%M:%SZ")


@dataclass
class CalendarConfig:
    name: str = DEFAULT_CALENDAR_NAME
    calendar_id: str = ""
    api_base_url: str = DEFAULT_API_BASE_URL
    access_token: str = ""
    token_file: str = DEFAULT_TOKEN_FILE
    timeout_seconds: int = 30

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CalendarConfig":
        data = data or {}
        return cls(
            name=str(data.get("name", DEFAULT_CALENDAR_NAME)).strip() or DEFAULT_CALENDAR_NAME,
            calendar_id=str(data.get("calendar_id", "")).strip(),
            api_base_url=str(data.get("api_base_url", DEFAULT_API_BASE_URL)).strip().rstrip("/")
            or DEFAULT_API_BASE_URL,
            access_token=str(data.get("access_token", "")).strip(),
            token_file=str(data.get("token_file", DEFAULT_TOKEN_FILE)).strip(),
            timeout_seconds=max(1, int(data.get("timeout_seconds", 30))),
        )


@dataclass
class CacheConfig:
    directory: str = DEFAULT_CACHE_DIR
    palette_size: int = DEFAULT_PALETTE_SIZE
    neutral_color_id: str = NEUTRAL_COLOR_ID

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "CacheConfig":
        data = data or {}
        return cls(
            directory=str(data.get("directory", DEFAULT_CACHE_DIR)).strip() or DEFAULT_CACHE_DIR,
            palette_size=max(1, int(data.get("palette_size", DEFAULT_PALETTE_SIZE))),
            neutral_color_id=str(data.get("neutral_color_id", NEUTRAL_COLOR_ID)).strip() or NEUTRAL_COLOR_ID,
        )

    @property
    def path(self) -> Path:
        return Path(self.directory).expanduser()


@dataclass
class SyncConfig:
    default_duration_minutes: int = 30
    blocking_tags: list[str] = field(default_factory=lambda: ["blocked"])
    sweep_interval_seconds: int = 300

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "SyncConfig":
        data = data or {}
        raw_tags = data.get("blocking_tags", ["blocked"])
        if not isinstance(raw_tags, list):
            raw_tags = [raw_tags]
        return cls(
            default_duration_minutes=max(1, int(data.get("default_duration_minutes", 30))),
            blocking_tags=[str(x).strip() for x in raw_tags if str(x).strip()],
            sweep_interval_seconds=max(30, int(data.get("sweep_interval_seconds", 300))),
        )

    @property
    def default_duration(self) -> timedelta:
        return timedelta(minutes=self.default_duration_minutes)


@dataclass
class LoggingConfig:
    level: str = "INFO"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "LoggingConfig":
        data = data or {}
        level = str(data.get("level", "INFO")).strip().upper()
        if level not in {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}:
            level = "INFO"
        return cls(level=level)


@dataclass
class AppConfig:
    calendar: CalendarConfig = field(default_factory=CalendarConfig)
    cache: CacheConfig = field(default_factory=CacheConfig)
    sync: SyncConfig = field(default_factory=SyncConfig)
    logging: LoggingConfig = field(default_factory=LoggingConfig)

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> "AppConfig":
        data = data or {}
        return cls(
            calendar=CalendarConfig.from_dict(data.get("calendar")),
            cache=CacheConfig.from_dict(data.get("cache")),
            sync=SyncConfig.from_dict(data.get("sync")),
            logging=LoggingConfig.from_dict(data.get("logging")),
        )

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def default_app_config() -> AppConfig:
    return AppConfig()


@dataclass
class TaskSnapshot:
    task_id: str
    description: str = ""
    status: str = PENDING
    project: str = ""
    tags: list[str] = field(default_factory=list)
    due: datetime | None = None
    scheduled: datetime | None = None
    start: datetime | None = None
    end: datetime | None = None
    estimate: timedelta | None = None
    actual: timedelta | None = None
    annotations: list[str] = field(default_factory=list)
    source: str = "taskwarrior"

    @property
    def is_active(self) -> bool:
        return self.status in {PENDING, WAITING}

    def has_tag(self, tag: str) -> bool:
        wanted = tag.casefold()
        return any(str(item).casefold() == wanted for item in self.tags)

    def to_dict(self) -> dict[str, Any]:
        payload = asdict(self)
        for key in ("due", "scheduled", "start", "end"):
            payload[key] = serialize_datetime(getattr(self, key))
        for key in ("estimate", "actual"):
            value = getattr(self, key)
            payload[key] = value.total_seconds() if value is not None else None
        return payload


@dataclass
class CalendarEvent:
    event_id: str = ""
    title: str = ""
    description: str = ""
    color_id: str = ""
    start: str = ""
    end: str = ""
    task_id: str = ""
    status: str = ""

    @classmethod
    def from_api(cls, payload: dict[str, Any]) -> "CalendarEvent":
        start = payload.get("start") or {}
        end = payload.get("end") or {}
        private = (payload.get("extendedProperties") or {}).get("private") or {}
        return cls(
            event_id=str(payload.get("id", "") or ""),
            title=str(payload.get("summary", "") or ""),
            description=str(payload.get("description", "") or ""),
            color_id=str(payload.get("colorId", "") or ""),
            start=str(start.get("dateTime", "") or "") if isinstance(start, dict) else "",
            end=str(end.get("dateTime", "") or "") if isinstance(end, dict) else "",
            task_id=str(private.get(TASK_ID_PROPERTY, "") or ""),
            status=str(payload.get("status", "") or ""),
        )

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {
            "summary": self.title,
            "description": self.description,
            "start": {"dateTime": self.start},
            "end": {"dateTime": self.end},
        }
        if self.color_id:
            body["colorId"] = self.color_id
        if self.task_id:
            body["extendedProperties"] = {"private": {TASK_ID_PROPERTY: self.task_id}}
        return body

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class EventPatch:
    title: str | None = None
    description: str | None = None
    color_id: str | None = None
    start: str | None = None
    end: str | None = None

    def is_empty(self) -> bool:
        return not self.fields()

    def fields(self) -> list[str]:
        return [name for name in ("title", "description", "color_id", "start", "end") if getattr(self, name) is not None]

    def to_api(self) -> dict[str, Any]:
        body: dict[str, Any] = {}
        if self.title is not None:
            body["summary"] = self.title
        if self.description is not None:
            body["description"] = self.description
        if self.color_id is not None:
            body["colorId"] = self.color_id
        if self.start is not None and self.end is not None:
            body["start"] = {"dateTime": self.start}
            body["end"] = {"dateTime": self.end}
        return body


ACTION_CREATE = "create"
ACTION_PATCH = "patch"
ACTION_NOOP = "noop"
ACTION_DELETE = "delete"
ACTION_SKIPPED = "skipped"
ACTION_ERROR = "error"


@dataclass
class TaskOutcome:
    task_id: str
    action: str
    event_id: str = ""
    error_kind: str = ""
    message: str = ""

    @property
    def failed(self) -> bool:
        return self.action == ACTION_ERROR

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class HookResult:
    outcomes: list[TaskOutcome] = field(default_factory=list)
    swept: list[tuple[str, TaskOutcome]] = field(default_factory=list)
    run_at: datetime = field(default_factory=utc_now)

    @property
    def errors(self) -> list[TaskOutcome]:
        items = [outcome for outcome in self.outcomes if outcome.failed]
        items.extend(outcome for _, outcome in self.swept if outcome.failed)
        return items

    def to_dict(self) -> dict[str, Any]:
        return {
            "outcomes": [outcome.to_dict() for outcome in self.outcomes],
            "swept": [{"task_id": task_id, **outcome.to_dict()} for task_id, outcome in self.swept],
            "run_at": serialize_datetime(self.run_at),
        }
