"""Period totals computed from session history."""

from __future__ import annotations

from datetime import datetime, timedelta
from typing import Iterable, Optional

from .archive import ArchiveStore
from .models import PersistedSession
from .periods import (
    months_in_range,
    same_month,
    start_of_day,
    start_of_month,
    start_of_next_month,
    start_of_week,
)


def sum_durations(
    sessions: Iterable[PersistedSession], start: datetime, end: datetime
) -> float:
    """Total milliseconds of sessions that *started* within ``[start, end)``."""
    total = 0.0
    for session in sessions:
        started = session.start
        if started is not None and start <= started < end:
            total += session.duration
    return total


def global_sessions_between(
    live: Iterable[PersistedSession],
    start: datetime,
    end: datetime,
    now: datetime,
    archives: Optional[ArchiveStore] = None,
) -> list[PersistedSession]:
    """Live sessions plus archived ones for months of the window before ``now``'s."""
    merged: dict[str, PersistedSession] = {session.id: session for session in live}
    if archives is not None:
        for year, month in months_in_range(start, end):
            if same_month(datetime(year, month, 1), now):
                continue
            for session in archives.get_archived_global_sessions(year, month):
                merged.setdefault(session.id, session)
    return list(merged.values())


def today_total(sessions: Iterable[PersistedSession], now: datetime) -> float:
    start = start_of_day(now)
    return sum_durations(sessions, start, start + timedelta(days=1))


def week_total(
    sessions: Iterable[PersistedSession],
    now: datetime,
    archives: Optional[ArchiveStore] = None,
) -> float:
    start = start_of_week(now)
    end = start + timedelta(days=7)
    return sum_durations(global_sessions_between(sessions, start, end, now, archives), start, end)


def month_total(sessions: Iterable[PersistedSession], now: datetime) -> float:
    return sum_durations(sessions, start_of_month(now), start_of_next_month(now))
