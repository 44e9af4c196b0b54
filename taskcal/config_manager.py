from __future__ import annotations

import copy
import os
import threading
from pathlib import Path
from typing import Any

import yaml

from taskcal.cache_store import write_private_text
from taskcal.models import AppConfig, default_app_config

CONFIG_PATH_ENV = "TASKCAL_CONFIG_PATH"
DEFAULT_CONFIG_PATH = "~/.config/taskcal/config.yaml"
MASK = "***"
# (section, key) pairs never returned in clear text.
SECRET_FIELDS = (("calendar", "access_token"),)


def default_config_path() -> Path:
    return Path(os.getenv(CONFIG_PATH_ENV, DEFAULT_CONFIG_PATH)).expanduser()


def _deep_merge(base: dict[str, Any], updates: dict[str, Any]) -> dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in updates.items():
        if isinstance(value, dict) and isinstance(merged.get(key), dict):
            merged[key] = _deep_merge(merged[key], value)
        else:
            merged[key] = value
    return merged


class ConfigManager:
    """YAML settings file shared by the hook and the admin server.

    A missing file is written out with defaults on first use so users have
    something to edit.
    """

    def __init__(self, config_path: str | os.PathLike[str] | None = None) -> None:
        self.config_path = Path(config_path).expanduser() if config_path else default_config_path()
        self._lock = threading.RLock()
        if not self.config_path.exists():
            self.save(default_app_config())

    def load(self) -> AppConfig:
        with self._lock:
            text = self.config_path.read_text(encoding="utf-8")
        return AppConfig.from_dict(yaml.safe_load(text) or {})

    def save(self, config: AppConfig) -> None:
        text = yaml.safe_dump(config.to_dict(), sort_keys=False, allow_unicode=True, default_flow_style=False)
        with self._lock:
            write_private_text(self.config_path, text)

    def update(self, payload: dict[str, Any]) -> AppConfig:
        with self._lock:
            config = AppConfig.from_dict(_deep_merge(self.load().to_dict(), payload))
            self.save(config)
        return config

    def masked(self) -> dict[str, Any]:
        config = self.load().to_dict()
        for section, key in SECRET_FIELDS:
            values = config.get(section) or {}
            if values.get(key):
                values[key] = MASK
        return config
