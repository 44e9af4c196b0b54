from __future__ import annotations

import logging
import threading
from typing import Callable, Optional

from taskcal.config_manager import ConfigManager

logger = logging.getLogger(__name__)


class SweepScheduler:
    """Runs the overdue sweep periodically while the admin server is up."""

    def __init__(self, run_sweep: Callable[[], object], config_manager: ConfigManager) -> None:
        self.run_sweep = run_sweep
        self.config_manager = config_manager
        self._thread: Optional[threading.Thread] = None
        self._stop_event = threading.Event()
        self._manual_trigger_event = threading.Event()

    def start(self) -> None:
        if self._thread and self._thread.is_alive():
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="taskcal-sweep-scheduler", daemon=True)
        self._thread.start()

    def stop(self) -> None:
        self._stop_event.set()
        self._manual_trigger_event.set()
        if self._thread:
            self._thread.join(timeout=5)

    def trigger_manual(self) -> None:
        self._manual_trigger_event.set()

    def _run(self, trigger: str) -> None:
        try:
            self.run_sweep()
        except Exception:
            logger.exception("Sweep (%s) failed", trigger)

    def _loop(self) -> None:
        while not self._stop_event.is_set():
            config = self.config_manager.load()
            interval_seconds = max(30, int(config.sync.sweep_interval_seconds))
            manual = self._manual_trigger_event.wait(timeout=interval_seconds)
            self._manual_trigger_event.clear()
            if self._stop_event.is_set():
                break
            self._run("manual" if manual else "scheduled")
