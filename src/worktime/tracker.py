"""Per-project and global active/idle session tracking.

Every project being tracked owns one ``RuntimeInterval``; a separate global
interval measures real time worked across all projects (not their sum).
Closing an interval emits a ``PersistedSession`` into the live snapshot, or
straight into the monthly archive when the session began in an earlier month.

All state lives in one immutable ``TrackingState`` that is replaced wholesale
under ``self._lock``. Timer callbacks take the same lock, so a callback never
observes a half-applied transition.
"""

from __future__ import annotations

import itertools
import logging
import threading
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Callable, Mapping, Optional

from .archival import run_archival_pass
from .archive import ArchiveStore, ProjectArchive
from .config import TrackerSettings
from .models import GlobalTimeTracking, PersistedSession, ProjectTimeTracking
from .periods import (
    day_string,
    same_month,
    start_of_day,
    start_of_month,
    start_of_week,
)
from .sanitize import roll_global_periods
from .scheduling import Scheduler, TimerHandle
from .store import SnapshotStore
from .totals import month_total, today_total, week_total

logger = logging.getLogger(__name__)

GLOBAL_ENTITY = "__global__"


@dataclass(frozen=True, slots=True)
class RuntimeInterval:
    session_start: Optional[datetime]
    last_activity: datetime
    idle: bool = False

    @property
    def active(self) -> bool:
        return self.session_start is not None and not self.idle


@dataclass(frozen=True, slots=True)
class TrackingState:
    intervals: Mapping[str, RuntimeInterval] = field(default_factory=dict)
    global_interval: Optional[RuntimeInterval] = None

    def active_count(self) -> int:
        return sum(1 for interval in self.intervals.values() if interval.active)


@dataclass(frozen=True, slots=True)
class ProjectTimes:
    today: timedelta
    total: timedelta


@dataclass(frozen=True, slots=True)
class GlobalTimes:
    today: timedelta
    week: timedelta
    month: timedelta


@dataclass(slots=True)
class _IdleTimer:
    handle: TimerHandle
    token: int


def _ms(value: float) -> timedelta:
    return timedelta(milliseconds=value)


def _elapsed_since(start: datetime, period_start: datetime, now: datetime) -> timedelta:
    effective = max(start, period_start)
    return max(now - effective, timedelta(0))


class SessionTracker:
    """The tracking state machine. Inert until ``attach`` supplies a store."""

    def __init__(
        self,
        archives: ArchiveStore,
        scheduler: Scheduler,
        *,
        settings: Optional[TrackerSettings] = None,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.archives = archives
        self.settings = settings or TrackerSettings()
        self._scheduler = scheduler
        self._clock = clock
        self._lock = threading.Lock()
        self._state = TrackingState()
        self._store: Optional[SnapshotStore] = None
        self._idle_timers: dict[str, _IdleTimer] = {}
        self._tokens = itertools.count()
        self._last_output: dict[str, datetime] = {}
        self.wake_check: Optional[Callable[[], Any]] = None

    # ------------------------------------------------------------------
    # lifecycle

    @property
    def attached(self) -> bool:
        return self._store is not None

    def attach(self, store: SnapshotStore) -> None:
        with self._lock:
            self._store = store

    def flush_all(self) -> None:
        """Close every active interval at now, then force a synchronous save."""
        with self._lock:
            store = self._store
            if store is None:
                return
            now = self._clock()
            state = self._state
            for entity_id, interval in state.intervals.items():
                if interval.active:
                    self._persist_project_session_locked(entity_id, interval.session_start, now)
            if state.global_interval is not None and state.global_interval.active:
                self._persist_global_session_locked(state.global_interval.session_start, now)
            for timer in self._idle_timers.values():
                timer.handle.cancel()
            self._idle_timers.clear()
            self._last_output.clear()
            self._state = TrackingState()
            self._store = None
        store.save_immediate()
        logger.info("Flushed active sessions and saved immediately.")

    # ------------------------------------------------------------------
    # inbound signals

    def start(self, entity_id: str) -> None:
        with self._lock:
            if self._accepts(entity_id, "start"):
                self._start_locked(entity_id)

    def stop(self, entity_id: str) -> None:
        with self._lock:
            if self._accepts(entity_id, "stop"):
                self._stop_locked(entity_id)

    def record_activity(self, entity_id: str) -> None:
        with self._lock:
            if self._accepts(entity_id, "activity"):
                self._record_activity_locked(entity_id)

    def record_output_activity(self, entity_id: str) -> None:
        with self._lock:
            if not self._accepts(entity_id, "output"):
                return
            interval = self._state.intervals.get(entity_id)
            if interval is None or not interval.active:
                return
            now = self._clock()
            self._last_output[entity_id] = now
            self._last_output[GLOBAL_ENTITY] = now

    def pause(self, entity_id: str) -> None:
        with self._lock:
            if self._accepts(entity_id, "pause"):
                self._pause_locked(entity_id, self._clock())

    def resume(self, entity_id: str) -> None:
        with self._lock:
            if self._accepts(entity_id, "resume"):
                self._resume_locked(entity_id)

    def switch_project(self, old_entity_id: Optional[str], new_entity_id: Optional[str]) -> None:
        """Make sure ``new_entity_id`` is tracked; the old project keeps running."""
        if new_entity_id:
            self.start(new_entity_id)

    # ------------------------------------------------------------------
    # boundary operations used by the detectors

    def split_active(
        self,
        boundary: datetime,
        reopen_at: datetime,
        *,
        touch_activity: bool = False,
        skip_short: bool = False,
    ) -> int:
        """Close every active interval at ``boundary`` and reopen it at ``reopen_at``.

        Only the part of an interval before ``boundary`` is persisted. Without
        ``touch_activity`` intervals that started at or after ``boundary`` are
        left alone. With ``touch_activity`` (a wake-up) every active interval
        is reopened at ``reopen_at``, counts it as its last activity and gets
        a fresh idle deadline. With ``skip_short`` intervals younger than the
        minimum session length are not split. Returns the number of
        intervals reopened.
        """
        with self._lock:
            if self._store is None:
                return 0
            state = self._state
            split = 0

            intervals = dict(state.intervals)
            for entity_id, interval in state.intervals.items():
                if not interval.active:
                    continue
                cut = self._cuts_before(interval.session_start, boundary, skip_short)
                if not (cut or touch_activity):
                    continue
                if cut:
                    self._persist_project_session_locked(
                        entity_id, interval.session_start, boundary
                    )
                intervals[entity_id] = self._reopened(interval, reopen_at, touch_activity)
                if touch_activity:
                    self._arm_idle_timer_locked(entity_id, self.settings.idle_timeout)
                split += 1

            global_interval = state.global_interval
            if global_interval is not None and global_interval.active:
                cut = self._cuts_before(global_interval.session_start, boundary, skip_short)
                if cut:
                    self._persist_global_session_locked(global_interval.session_start, boundary)
                if cut or touch_activity:
                    global_interval = self._reopened(global_interval, reopen_at, touch_activity)
                    if touch_activity:
                        self._arm_idle_timer_locked(GLOBAL_ENTITY, self.settings.idle_timeout)
                    split += 1

            self._state = TrackingState(intervals=intervals, global_interval=global_interval)
            return split

    def _cuts_before(self, start: datetime, boundary: datetime, skip_short: bool) -> bool:
        if start >= boundary:
            return False
        return not (skip_short and boundary - start < self.settings.min_session)

    def checkpoint(self) -> int:
        """Persist the elapsed part of every active interval without ending it."""
        now = self._clock()
        return self.split_active(now, now, skip_short=True)

    def run_archival_pass(self) -> int:
        with self._lock:
            if self._store is None:
                return 0
            return run_archival_pass(self._store, self._clock(), self.archives)

    # ------------------------------------------------------------------
    # queries

    def is_tracking(self, entity_id: str) -> bool:
        interval = self._state.intervals.get(entity_id)
        return interval is not None and interval.active

    def get_active_project_count(self) -> int:
        return self._state.active_count()

    def tracking_state(self) -> TrackingState:
        return self._state

    def get_project_times(self, entity_id: str) -> ProjectTimes:
        with self._lock:
            zero = ProjectTimes(today=timedelta(0), total=timedelta(0))
            if self._store is None:
                return zero
            project = self._store.get().project(entity_id)
            if project is None or project.time_tracking is None:
                return zero
            tracking = project.time_tracking
            now = self._clock()
            today = _ms(today_total(tracking.sessions, now))
            total = _ms(tracking.total_time)
            interval = self._state.intervals.get(entity_id)
            if interval is not None and interval.active:
                total += now - interval.session_start
                today += _elapsed_since(interval.session_start, start_of_day(now), now)
            return ProjectTimes(today=today, total=total)

    def get_global_times(self) -> GlobalTimes:
        with self._lock:
            if self._store is None:
                return GlobalTimes(timedelta(0), timedelta(0), timedelta(0))
            now = self._clock()
            tracking = self._store.get().global_tracking or GlobalTimeTracking()
            sessions = tracking.sessions
            today = _ms(today_total(sessions, now))
            week = _ms(week_total(sessions, now, self.archives))
            month = _ms(month_total(sessions, now))
            interval = self._state.global_interval
            if interval is not None and interval.active:
                start = interval.session_start
                today += _elapsed_since(start, start_of_day(now), now)
                week += _elapsed_since(start, start_of_week(now), now)
                month += _elapsed_since(start, start_of_month(now), now)
            return GlobalTimes(today=today, week=week, month=month)

    # ------------------------------------------------------------------
    # state transitions (callers hold self._lock)

    def _accepts(self, entity_id: str, operation: str) -> bool:
        if self._store is None:
            logger.debug("Ignoring %s for %s before init.", operation, entity_id)
            return False
        if not entity_id or entity_id == GLOBAL_ENTITY:
            logger.warning("Ignoring %s for invalid project id %r.", operation, entity_id)
            return False
        return True

    def _set_interval_locked(self, entity_id: str, interval: Optional[RuntimeInterval]) -> None:
        intervals = dict(self._state.intervals)
        if interval is None:
            intervals.pop(entity_id, None)
        else:
            intervals[entity_id] = interval
        self._state = replace(self._state, intervals=intervals)

    def _start_locked(self, entity_id: str) -> None:
        interval = self._state.intervals.get(entity_id)
        if interval is not None and interval.active:
            logger.debug("Already tracking project %s", entity_id)
            return
        if interval is not None and interval.idle:
            self._resume_locked(entity_id)
            return
        now = self._clock()
        self._set_interval_locked(entity_id, RuntimeInterval(now, now))
        self._touch_global_locked(now)
        self._arm_idle_timer_locked(entity_id, self.settings.idle_timeout)
        logger.debug(
            "Started tracking project %s; active=%d",
            entity_id,
            self._state.active_count(),
        )

    def _resume_locked(self, entity_id: str) -> None:
        interval = self._state.intervals.get(entity_id)
        if interval is None or not interval.idle:
            return
        now = self._clock()
        self._set_interval_locked(entity_id, RuntimeInterval(now, now))
        self._touch_global_locked(now)
        self._arm_idle_timer_locked(entity_id, self.settings.idle_timeout)
        logger.debug("Resumed tracking project %s", entity_id)

    def _record_activity_locked(self, entity_id: str) -> None:
        interval = self._state.intervals.get(entity_id)
        if interval is None:
            self._start_locked(entity_id)
            return
        if interval.idle:
            self._resume_locked(entity_id)
            return
        now = self._clock()
        self._arm_idle_timer_locked(entity_id, self.settings.idle_timeout)
        self._set_interval_locked(entity_id, replace(interval, last_activity=now))
        self._touch_global_locked(now)

    def _stop_locked(self, entity_id: str) -> None:
        interval = self._state.intervals.get(entity_id)
        if interval is None:
            return
        now = self._clock()
        if interval.active:
            self._persist_project_session_locked(entity_id, interval.session_start, now)
        self._cancel_idle_timer_locked(entity_id)
        self._last_output.pop(entity_id, None)
        self._set_interval_locked(entity_id, None)
        logger.debug(
            "Stopped tracking project %s; remaining active=%d",
            entity_id,
            self._state.active_count(),
        )
        if self._state.active_count() == 0:
            self._stop_global_locked(now)

    def _pause_locked(self, entity_id: str, now: datetime) -> None:
        interval = self._state.intervals.get(entity_id)
        if interval is None or not interval.active:
            return
        self._persist_project_session_locked(entity_id, interval.session_start, now)
        self._cancel_idle_timer_locked(entity_id)
        self._last_output.pop(entity_id, None)
        self._set_interval_locked(
            entity_id, replace(interval, session_start=None, idle=True)
        )
        logger.debug("Paused tracking (idle) for project %s", entity_id)
        if self._state.active_count() == 0:
            self._pause_global_locked(now)

    def _touch_global_locked(self, now: datetime) -> None:
        """Start or resume the global interval, or push back its idle deadline."""
        interval = self._state.global_interval
        if interval is None or not interval.active:
            self._state = replace(self._state, global_interval=RuntimeInterval(now, now))
            logger.debug("Global timer started")
        else:
            self._state = replace(
                self._state, global_interval=replace(interval, last_activity=now)
            )
        self._arm_idle_timer_locked(GLOBAL_ENTITY, self.settings.idle_timeout)

    def _pause_global_locked(self, now: datetime) -> None:
        interval = self._state.global_interval
        if interval is None or not interval.active:
            return
        self._persist_global_session_locked(interval.session_start, now)
        self._cancel_idle_timer_locked(GLOBAL_ENTITY)
        self._last_output.pop(GLOBAL_ENTITY, None)
        self._state = replace(
            self._state,
            global_interval=replace(interval, session_start=None, idle=True),
        )
        logger.debug("Global timer paused (idle)")

    def _stop_global_locked(self, now: datetime) -> None:
        interval = self._state.global_interval
        if interval is not None and interval.active:
            self._persist_global_session_locked(interval.session_start, now)
        self._cancel_idle_timer_locked(GLOBAL_ENTITY)
        self._last_output.pop(GLOBAL_ENTITY, None)
        self._state = replace(self._state, global_interval=None)
        logger.debug("Global timer stopped")

    @staticmethod
    def _reopened(
        interval: RuntimeInterval, reopen_at: datetime, touch_activity: bool
    ) -> RuntimeInterval:
        if touch_activity:
            return replace(interval, session_start=reopen_at, last_activity=reopen_at)
        return replace(interval, session_start=reopen_at)

    # ------------------------------------------------------------------
    # idle timers

    def _arm_idle_timer_locked(self, key: str, delay: timedelta) -> None:
        self._cancel_idle_timer_locked(key)
        token = next(self._tokens)
        handle = self._scheduler.call_later(
            delay, lambda: self._on_idle_timeout(key, token)
        )
        self._idle_timers[key] = _IdleTimer(handle=handle, token=token)

    def _cancel_idle_timer_locked(self, key: str) -> None:
        timer = self._idle_timers.pop(key, None)
        if timer is not None:
            timer.handle.cancel()

    def _on_idle_timeout(self, key: str, token: int) -> None:
        if self.wake_check is not None:
            self.wake_check()
        with self._lock:
            timer = self._idle_timers.get(key)
            if timer is None or timer.token != token:
                return
            del self._idle_timers[key]
            now = self._clock()

            last_output = self._last_output.get(key)
            grace = self.settings.output_grace
            if last_output is not None and now - last_output < grace:
                delay = grace - (now - last_output) + self.settings.output_grace_epsilon
                self._arm_idle_timer_locked(key, delay)
                return

            if key == GLOBAL_ENTITY:
                if self._state.active_count() > 0:
                    self._arm_idle_timer_locked(key, self.settings.idle_timeout)
                    return
                self._pause_global_locked(now)
            else:
                self._pause_locked(key, now)

    # ------------------------------------------------------------------
    # persistence

    def _persist_project_session_locked(
        self, entity_id: str, start: datetime, end: datetime
    ) -> None:
        duration = end - start
        if duration < self.settings.min_session:
            return
        store = self._store
        snapshot = store.get()
        project = snapshot.project(entity_id)
        if project is None:
            logger.warning(
                "Dropping %ds session for unknown project %s",
                duration.total_seconds(),
                entity_id,
            )
            return

        now = self._clock()
        today = day_string(now)
        session = PersistedSession.create(start, end)
        tracking = project.time_tracking or ProjectTimeTracking()

        today_time = (
            tracking.today_time
            if tracking.last_active_date == today
            else today_total(tracking.sessions, now)
        )
        if start >= start_of_day(now):
            today_time += session.duration

        sessions = tracking.sessions
        if same_month(start, now):
            sessions = sessions + (session,)
        else:
            self.archives.append_to_archive(
                start.year,
                start.month,
                [],
                {entity_id: ProjectArchive(project_name=project.name, sessions=[session])},
            )

        updated = replace(
            tracking,
            total_time=tracking.total_time + session.duration,
            today_time=today_time,
            last_active_date=today,
            sessions=sessions,
        )
        store.set(snapshot.with_project(replace(project, time_tracking=updated)))
        store.save()
        logger.debug(
            "Saved session for %s: %ds", entity_id, int(duration.total_seconds())
        )

    def _persist_global_session_locked(self, start: datetime, end: datetime) -> None:
        duration = end - start
        if duration < self.settings.min_session:
            return
        store = self._store
        snapshot = store.get()
        now = self._clock()
        today = day_string(now)
        session = PersistedSession.create(start, end)
        previous = roll_global_periods(
            snapshot.global_tracking or GlobalTimeTracking(), now, self.archives
        )

        today_time = (
            previous.today_time
            if previous.last_active_date == today
            else today_total(previous.sessions, now)
        )
        week_time = previous.week_time
        month_time = previous.month_time
        if start >= start_of_day(now):
            today_time += session.duration
        if start >= start_of_week(now):
            week_time += session.duration
        if same_month(start, now):
            month_time += session.duration

        sessions = previous.sessions
        if same_month(start, now):
            sessions = sessions + (session,)
        else:
            self.archives.append_to_archive(start.year, start.month, [session], {})

        updated = replace(
            previous,
            total_time=previous.total_time + session.duration,
            today_time=today_time,
            week_time=week_time,
            month_time=month_time,
            last_active_date=today,
            sessions=sessions,
        )
        store.set(replace(snapshot, global_tracking=updated))
        store.save()
        logger.debug("Saved global session: %ds", int(duration.total_seconds()))
