"""Periodic detectors that cut active intervals at wall-clock boundaries."""

from __future__ import annotations

import logging
from datetime import date, datetime
from typing import Callable, Optional

from .config import TrackerSettings
from .periods import start_of_day
from .scheduling import Scheduler, TimerHandle
from .tracker import SessionTracker

logger = logging.getLogger(__name__)


class BoundaryDetectors:
    """Sleep/wake heartbeat, midnight/month splitter and checkpoint saver.

    Every tick first looks for a sleep gap, so whichever timer happens to fire
    first after a wake-up cuts the sleep out before anything else persists.
    """

    def __init__(
        self,
        tracker: SessionTracker,
        scheduler: Scheduler,
        *,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.tracker = tracker
        self.settings = settings or TrackerSettings()
        self._scheduler = scheduler
        self._clock = clock
        self._handles: list[TimerHandle] = []
        self.last_heartbeat: Optional[datetime] = None
        self.last_known_date: Optional[date] = None

    @property
    def running(self) -> bool:
        return bool(self._handles)

    def start(self) -> None:
        self.stop()
        now = self._clock()
        self.last_heartbeat = now
        self.last_known_date = now.date()
        self._handles = [
            self._scheduler.call_every(self.settings.heartbeat_interval, self.check_sleep_wake),
            self._scheduler.call_every(
                self.settings.midnight_check_interval, self.check_midnight
            ),
            self._scheduler.call_every(self.settings.checkpoint_interval, self.save_checkpoints),
        ]
        logger.info("Boundary detectors started.")

    def stop(self) -> None:
        for handle in self._handles:
            handle.cancel()
        if self._handles:
            logger.info("Boundary detectors stopped.")
        self._handles = []

    def check_sleep_wake(self) -> bool:
        """Cut active intervals at the last heartbeat if the machine slept."""
        now = self._clock()
        previous = self.last_heartbeat
        self.last_heartbeat = now
        if previous is None:
            return False
        gap = now - previous
        if gap <= self.settings.sleep_gap:
            return False
        logger.info("Sleep/wake detected: gap of %ds", int(gap.total_seconds()))
        self.tracker.split_active(previous, now, touch_activity=True)
        return True

    def check_midnight(self) -> bool:
        """Split active intervals at local midnight when the date changes."""
        self.check_sleep_wake()
        now = self._clock()
        today = now.date()
        previous = self.last_known_date
        self.last_known_date = today
        if previous is None or previous == today:
            return False

        logger.info("Date changed from %s to %s", previous, today)
        midnight = start_of_day(now)
        self.tracker.split_active(midnight, midnight)
        if (previous.year, previous.month) != (today.year, today.month):
            logger.info("Month boundary crossed; archiving past sessions.")
            self.tracker.run_archival_pass()
        return True

    def save_checkpoints(self) -> int:
        self.check_sleep_wake()
        split = self.tracker.checkpoint()
        if split:
            logger.debug("Checkpoint saved for %d intervals", split)
        return split
