from __future__ import annotations

import logging
import os
import threading
from typing import Any

from fastapi import FastAPI, HTTPException
from pydantic import BaseModel, Field

from taskcal.calendar_client import GoogleCalendarService
from taskcal.config_manager import MASK, ConfigManager
from taskcal.models import HookResult, TaskSnapshot
from taskcal.runtime import open_caches, run_invocation
from taskcal.scheduler import SweepScheduler
from taskcal.task_source import TaskwarriorExporter, snapshot_from_taskwarrior

logger = logging.getLogger(__name__)


class ConfigUpdateRequest(BaseModel):
    payload: dict[str, Any] = Field(default_factory=dict)


class HookRequest(BaseModel):
    tasks: list[dict[str, Any]] = Field(min_length=1, max_length=2)


class AppContext:
    def __init__(self, config_path: str | None = None) -> None:
        self.config_manager = ConfigManager(config_path)
        self.scheduler = SweepScheduler(self.sweep, self.config_manager)
        # Requests inside one server share the cache files; run them one at a time.
        self._invocation_lock = threading.Lock()

    def invoke(self, snapshots: list[TaskSnapshot]) -> HookResult:
        config = self.config_manager.load()
        with self._invocation_lock:
            return run_invocation(
                config,
                snapshots,
                calendar=GoogleCalendarService(config.calendar),
                task_source=TaskwarriorExporter(),
            )

    def sweep(self) -> HookResult:
        return self.invoke([])


def _sanitize_config_payload(payload: dict[str, Any], current: dict[str, Any]) -> dict[str, Any]:
    sanitized = dict(payload)
    current_token = str(current.get("calendar", {}).get("access_token", ""))

    calendar = sanitized.get("calendar")
    if isinstance(calendar, dict):
        calendar = dict(calendar)
        token = calendar.get("access_token")
        if token is not None and str(token).strip() in {"", MASK}:
            if current_token:
                calendar.pop("access_token", None)
            else:
                calendar["access_token"] = ""
        if calendar:
            sanitized["calendar"] = calendar
        else:
            sanitized.pop("calendar", None)
    return sanitized


def create_app() -> FastAPI:
    config_path = os.getenv("TASKCAL_CONFIG_PATH")
    context = AppContext(config_path=config_path)

    app = FastAPI(title="taskcal admin", version="0.1.0")
    app.state.context = context

    @app.on_event("startup")
    def _startup() -> None:
        app.state.context.scheduler.start()

    @app.on_event("shutdown")
    def _shutdown() -> None:
        app.state.context.scheduler.stop()

    @app.get("/healthz")
    def healthz() -> dict[str, str]:
        return {"status": "ok"}

    @app.get("/api/config")
    def get_config() -> dict[str, Any]:
        return app.state.context.config_manager.masked()

    @app.put("/api/config")
    def put_config(request: ConfigUpdateRequest) -> dict[str, Any]:
        manager = app.state.context.config_manager
        current = manager.load().to_dict()
        manager.update(_sanitize_config_payload(request.payload, current))
        return {"message": "config updated", "config": manager.masked()}

    @app.get("/api/state")
    def get_state() -> dict[str, Any]:
        caches = open_caches(app.state.context.config_manager.load())
        return {
            "index": caches.index.snapshot(),
            "colors": caches.colors.to_dict(),
            "schedule": caches.schedule.to_dict()["entries"],
        }

    @app.post("/api/hook")
    def post_hook(request: HookRequest) -> dict[str, Any]:
        try:
            snapshots = [snapshot_from_taskwarrior(item) for item in request.tasks]
        except ValueError as exc:
            raise HTTPException(status_code=400, detail=str(exc)) from exc
        try:
            return app.state.context.invoke(snapshots).to_dict()
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    @app.post("/api/sweep")
    def post_sweep() -> dict[str, Any]:
        try:
            return app.state.context.sweep().to_dict()
        except RuntimeError as exc:
            raise HTTPException(status_code=503, detail=str(exc)) from exc

    return app
