"""Startup repair and schema migration for the live snapshot."""

from __future__ import annotations

import logging
import math
from dataclasses import replace
from datetime import datetime, timedelta
from typing import Optional

from .archive import ArchiveStore
from .models import (
    SCHEMA_VERSION,
    GlobalTimeTracking,
    PersistedSession,
    ProjectTimeTracking,
    Snapshot,
    new_session_id,
)
from .periods import DATE_FMT, day_string, month_key, start_of_week
from .store import SnapshotStore
from .totals import month_total, week_total

logger = logging.getLogger(__name__)

MAX_SESSION = timedelta(hours=24)
_FUTURE_TOLERANCE = timedelta(days=1)


def is_valid_session(session: PersistedSession, max_session: timedelta = MAX_SESSION) -> bool:
    if not session.start_time or not session.end_time:
        return False
    duration = session.duration
    if not math.isfinite(duration) or duration <= 0:
        return False
    if duration > max_session.total_seconds() * 1000:
        return False
    start, end = session.start, session.end
    if start is None or end is None:
        return False
    return end >= start


def _clean_counter(value: float) -> float:
    if not math.isfinite(value) or value < 0:
        return 0.0
    return value


def _clean_sessions(
    sessions: tuple[PersistedSession, ...], owner: str, max_session: timedelta
) -> tuple[PersistedSession, ...]:
    valid = []
    for session in sessions:
        if not is_valid_session(session, max_session):
            continue
        if not session.id:
            session = replace(session, id=new_session_id())
        valid.append(session)
    dropped = len(sessions) - len(valid)
    if dropped:
        logger.warning("Sanitize: %s removed %d invalid sessions", owner, dropped)
    return tuple(valid)


def _check_last_active(
    value: Optional[str], owner: str, now: datetime
) -> tuple[Optional[str], bool]:
    """Return the date to keep and whether it lay in the future.

    Unparseable dates are dropped but leave ``todayTime`` alone; the tracker
    recomputes today from sessions whenever the date does not match.
    """
    if value is None:
        return None, False
    try:
        last = datetime.strptime(value, DATE_FMT)
    except ValueError:
        logger.warning("Sanitize: %s lastActiveDate %r unparseable, dropped", owner, value)
        return None, False
    if last > now + _FUTURE_TOLERANCE:
        logger.warning("Sanitize: %s lastActiveDate %r in the future, discarded", owner, value)
        return None, True
    return value, False


def _sanitize_project(
    tracking: ProjectTimeTracking, owner: str, now: datetime, max_session: timedelta
) -> ProjectTimeTracking:
    total_time = _clean_counter(tracking.total_time)
    if total_time != tracking.total_time:
        logger.warning(
            "Sanitize: %s totalTime was %s, reset to 0", owner, tracking.total_time
        )
    today_time = _clean_counter(tracking.today_time)
    if today_time != tracking.today_time:
        logger.warning(
            "Sanitize: %s todayTime was %s, reset to 0", owner, tracking.today_time
        )
    last_active, future = _check_last_active(tracking.last_active_date, owner, now)
    if future:
        today_time = 0.0
    return replace(
        tracking,
        total_time=total_time,
        today_time=today_time,
        last_active_date=last_active,
        sessions=_clean_sessions(tracking.sessions, owner, max_session),
    )


def _sanitize_global(
    tracking: GlobalTimeTracking, now: datetime, max_session: timedelta
) -> GlobalTimeTracking:
    counters = {
        name: _clean_counter(getattr(tracking, name))
        for name in ("total_time", "today_time", "week_time", "month_time")
    }
    for name, value in counters.items():
        if value != getattr(tracking, name):
            logger.warning("Sanitize: global %s was %s, reset to 0", name, getattr(tracking, name))
    last_active, future = _check_last_active(tracking.last_active_date, "global", now)
    if future:
        counters["today_time"] = 0.0
    return replace(
        tracking,
        **counters,
        last_active_date=last_active,
        sessions=_clean_sessions(tracking.sessions, "global", max_session),
    )


def sanitize_snapshot(
    snapshot: Snapshot, now: datetime, max_session: timedelta = MAX_SESSION
) -> tuple[Snapshot, bool]:
    """Clamp bad counters, discard future dates and drop invalid sessions."""
    projects = tuple(
        project
        if project.time_tracking is None
        else replace(
            project,
            time_tracking=_sanitize_project(
                project.time_tracking, f"project {project.id}", now, max_session
            ),
        )
        for project in snapshot.projects
    )
    global_tracking = (
        _sanitize_global(snapshot.global_tracking, now, max_session)
        if snapshot.global_tracking is not None
        else None
    )
    sanitized = replace(snapshot, projects=projects, global_tracking=global_tracking)
    return sanitized, sanitized != snapshot


def roll_global_periods(
    tracking: GlobalTimeTracking,
    now: datetime,
    archives: Optional[ArchiveStore] = None,
    *,
    force: bool = False,
) -> GlobalTimeTracking:
    """Recompute week/month counters whose anchor no longer matches ``now``."""
    week_anchor = day_string(start_of_week(now))
    month_anchor = month_key(now.year, now.month)
    if force or tracking.week_start != week_anchor:
        tracking = replace(
            tracking,
            week_time=week_total(tracking.sessions, now, archives),
            week_start=week_anchor,
        )
    if force or tracking.month_start != month_anchor:
        tracking = replace(
            tracking,
            month_time=month_total(tracking.sessions, now),
            month_start=month_anchor,
        )
    return tracking


def migrate_snapshot(
    snapshot: Snapshot, now: datetime, archives: Optional[ArchiveStore] = None
) -> tuple[Snapshot, bool]:
    """Upgrade legacy snapshots and re-anchor period counters."""
    legacy = snapshot.schema_version < SCHEMA_VERSION
    global_tracking = snapshot.global_tracking
    if global_tracking is not None:
        global_tracking = roll_global_periods(global_tracking, now, archives, force=legacy)
        if legacy:
            logger.info(
                "Migrated global counters: week=%ds month=%ds",
                global_tracking.week_time // 1000,
                global_tracking.month_time // 1000,
            )
    migrated = replace(
        snapshot, global_tracking=global_tracking, schema_version=SCHEMA_VERSION
    )
    return migrated, migrated != snapshot


def prepare_snapshot(
    store: SnapshotStore,
    now: datetime,
    archives: Optional[ArchiveStore] = None,
    max_session: timedelta = MAX_SESSION,
) -> bool:
    """Sanitize and migrate the live snapshot, writing back at most once."""
    original = store.get()
    sanitized, sanitize_changed = sanitize_snapshot(original, now, max_session)
    migrated, migrate_changed = migrate_snapshot(sanitized, now, archives)
    if not (sanitize_changed or migrate_changed):
        return False
    store.set(migrated)
    store.save()
    logger.debug("Snapshot sanitized and migrated.")
    return True
