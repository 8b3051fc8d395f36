from __future__ import annotations

import logging
import threading
from typing import Optional

from app.storage.workspace import WorkspaceManager


class WorkspaceSweeper:
    """Background thread reclaiming aged workspaces on a fixed period."""

    def __init__(
        self,
        manager: WorkspaceManager,
        interval_minutes: float = 30.0,
        threshold_minutes: float = 60.0,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.manager = manager
        self.interval_seconds = interval_minutes * 60
        self.threshold_minutes = threshold_minutes
        self.log = logger or logging.getLogger(__name__)
        self._stop = threading.Event()
        self._thread: threading.Thread | None = None

    def start(self) -> None:
        if self._thread is not None and self._thread.is_alive():
            return
        self._stop.clear()
        self._thread = threading.Thread(target=self._run, name="workspace-sweeper", daemon=True)
        self._thread.start()

    def stop(self, timeout: float | None = 5.0) -> None:
        self._stop.set()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None

    def run_once(self) -> int:
        try:
            removed = self.manager.reclaim(self.threshold_minutes)
        except Exception:
            self.log.exception("cleanup error")
            return 0
        if removed > 0:
            self.log.info("cleanup removed %d tmp folders", removed)
        return removed

    def _run(self) -> None:
        while not self._stop.wait(self.interval_seconds):
            self.run_once()
