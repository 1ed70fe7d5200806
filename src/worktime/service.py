"""Top-level time tracking context: wiring, startup and shutdown."""

from __future__ import annotations

import logging
from datetime import datetime
from pathlib import Path
from typing import Callable, Optional

from .archival import run_archival_pass
from .archive import ArchiveStore
from .boundaries import BoundaryDetectors
from .config import TrackerSettings
from .paths import get_archives_dir
from .sanitize import prepare_snapshot
from .scheduling import Scheduler, ThreadScheduler
from .store import SnapshotStore
from .tracker import GlobalTimes, ProjectTimes, SessionTracker

logger = logging.getLogger(__name__)


class TimeTrackingService:
    """Owns the tracker, its detectors, the archive cache and the scheduler.

    Each instance is fully isolated; nothing is kept at module level.
    """

    def __init__(
        self,
        *,
        settings: Optional[TrackerSettings] = None,
        archives_dir: Optional[Path] = None,
        scheduler: Optional[Scheduler] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.settings = settings or TrackerSettings()
        self.clock = clock
        self.scheduler = scheduler or ThreadScheduler()
        self.archives = ArchiveStore(
            Path(archives_dir or get_archives_dir()),
            cache_size=self.settings.archive_cache_size,
            clock=clock,
        )
        self.tracker = SessionTracker(
            self.archives, self.scheduler, settings=self.settings, clock=clock
        )
        self.detectors = BoundaryDetectors(
            self.tracker, self.scheduler, settings=self.settings, clock=clock
        )
        self.tracker.wake_check = self.detectors.check_sleep_wake
        self._store: Optional[SnapshotStore] = None

    @property
    def initialized(self) -> bool:
        return self._store is not None

    def init(self, store: SnapshotStore) -> None:
        """Repair the snapshot, archive old sessions, then start the detectors."""
        if self._store is not None:
            logger.warning("Time tracking already initialized; ignoring init().")
            return
        now = self.clock()
        prepare_snapshot(store, now, self.archives, self.settings.max_session)
        run_archival_pass(store, now, self.archives)
        self._store = store
        self.tracker.attach(store)
        self.scheduler.start()
        self.detectors.start()
        logger.info("Time tracking initialized.")

    def shutdown(self) -> None:
        """Stop the timers, flush every active interval and save synchronously."""
        if self._store is None:
            return
        self.detectors.stop()
        self.scheduler.stop()
        self.tracker.flush_all()
        self._store = None
        logger.info("Time tracking shut down.")

    def start_tracking(self, project_id: str) -> None:
        self.tracker.start(project_id)

    def stop_tracking(self, project_id: str) -> None:
        self.tracker.stop(project_id)

    def record_activity(self, project_id: str) -> None:
        self.tracker.record_activity(project_id)

    def record_output_activity(self, project_id: str) -> None:
        self.tracker.record_output_activity(project_id)

    def switch_project(self, old_project_id: Optional[str], new_project_id: Optional[str]) -> None:
        self.tracker.switch_project(old_project_id, new_project_id)

    def get_project_times(self, project_id: str) -> ProjectTimes:
        return self.tracker.get_project_times(project_id)

    def get_global_times(self) -> GlobalTimes:
        return self.tracker.get_global_times()

    def is_tracking(self, project_id: str) -> bool:
        return self.tracker.is_tracking(project_id)

    def get_active_project_count(self) -> int:
        return self.tracker.get_active_project_count()
