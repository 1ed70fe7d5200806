"""Move sessions outside the current month from the live snapshot to archives."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import replace
from datetime import datetime
from typing import Iterable, Optional

from .archive import ArchiveStore, ProjectArchive
from .models import PersistedSession, Snapshot
from .store import SnapshotStore

logger = logging.getLogger(__name__)

MonthKey = tuple[int, int]


def partition_by_month(
    sessions: Iterable[PersistedSession], now: datetime
) -> tuple[list[PersistedSession], dict[MonthKey, list[PersistedSession]]]:
    """Split sessions into current-month ones and the rest grouped by month."""
    current: list[PersistedSession] = []
    past: dict[MonthKey, list[PersistedSession]] = defaultdict(list)
    for session in sessions:
        started = session.start
        if started is None or (started.year, started.month) == (now.year, now.month):
            current.append(session)
        else:
            past[(started.year, started.month)].append(session)
    return current, dict(past)


def _month_of(session: PersistedSession) -> Optional[MonthKey]:
    started = session.start
    return None if started is None else (started.year, started.month)


def _retained(
    sessions: Iterable[PersistedSession], now: datetime, failed: set[MonthKey]
) -> tuple[PersistedSession, ...]:
    """Sessions that stay live: current month, undated, or whose archive write failed."""
    current = (now.year, now.month)
    kept = []
    for session in sessions:
        key = _month_of(session)
        if key is None or key == current or key in failed:
            kept.append(session)
    return tuple(kept)


def archive_past_sessions(
    snapshot: Snapshot, now: datetime, archives: ArchiveStore
) -> tuple[Snapshot, int]:
    """Append non-current-month sessions to their archives.

    A month whose archive could not be written keeps its sessions in the
    live snapshot so the next pass retries them. Returns the trimmed
    snapshot and how many sessions were moved.
    """
    moved = 0
    global_tracking = snapshot.global_tracking
    if global_tracking is not None and global_tracking.sessions:
        _, past = partition_by_month(global_tracking.sessions, now)
        failed: set[MonthKey] = set()
        for (year, month), sessions in sorted(past.items()):
            if archives.append_to_archive(year, month, sessions, {}):
                moved += len(sessions)
            else:
                failed.add((year, month))
                logger.warning(
                    "Keeping %d global sessions for %d-%02d live; archive write failed.",
                    len(sessions),
                    year,
                    month,
                )
        if len(failed) < len(past):
            global_tracking = replace(
                global_tracking,
                sessions=_retained(global_tracking.sessions, now, failed),
            )

    per_month: dict[MonthKey, dict[str, ProjectArchive]] = defaultdict(dict)
    for project in snapshot.projects:
        tracking = project.time_tracking
        if tracking is None or not tracking.sessions:
            continue
        _, past = partition_by_month(tracking.sessions, now)
        for key, sessions in past.items():
            per_month[key][project.id] = ProjectArchive(
                project_name=project.name, sessions=sessions
            )

    failed_projects: set[MonthKey] = set()
    for (year, month), project_map in sorted(per_month.items()):
        if archives.append_to_archive(year, month, [], project_map):
            moved += sum(len(data.sessions) for data in project_map.values())
        else:
            failed_projects.add((year, month))
            logger.warning(
                "Keeping project sessions for %d-%02d live; archive write failed.", year, month
            )

    if not moved:
        return snapshot, 0
    projects = tuple(
        project
        if project.time_tracking is None
        else replace(
            project,
            time_tracking=replace(
                project.time_tracking,
                sessions=_retained(project.time_tracking.sessions, now, failed_projects),
            ),
        )
        for project in snapshot.projects
    )
    return (
        replace(snapshot, projects=projects, global_tracking=global_tracking),
        moved,
    )


def run_archival_pass(store: SnapshotStore, now: datetime, archives: ArchiveStore) -> int:
    """Archive past-month sessions and write the snapshot back in one replace."""
    snapshot, moved = archive_past_sessions(store.get(), now, archives)
    if moved:
        store.set(snapshot)
        store.save()
        logger.info("Archived %d past-month sessions.", moved)
    return moved
