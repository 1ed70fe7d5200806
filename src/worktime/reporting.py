"""Simple reporting utilities for CLI output."""

from __future__ import annotations

from datetime import datetime
from pathlib import Path
from typing import Iterable, Optional

from .archive import ArchiveStore, MonthlyArchive
from .models import PersistedSession, Snapshot
from .periods import MONTH_NAMES
from .store import JsonSnapshotStore
from .totals import month_total, today_total, week_total


class SummaryPrinter:
    """Render human-readable summaries in the console."""

    def __init__(self, archives_dir: Path, snapshot_path: Optional[Path] = None) -> None:
        self.snapshot_path = Path(snapshot_path) if snapshot_path else None
        self.archives = ArchiveStore(Path(archives_dir))

    def print_summary(self, now: datetime) -> None:
        if self.snapshot_path is None:
            raise ValueError("A snapshot path is required for summaries.")
        snapshot = JsonSnapshotStore(self.snapshot_path).get()
        global_sessions = snapshot.global_tracking.sessions if snapshot.global_tracking else ()
        if not global_sessions and not any(
            project.time_tracking for project in snapshot.projects
        ):
            print("No time recorded yet.")
            return

        print(f"Summary for {now.strftime('%Y-%m-%d')}")
        print("-" * 40)
        print(f"Today:      {format_duration(today_total(global_sessions, now) / 1000)}")
        print(
            "This week:  "
            f"{format_duration(week_total(global_sessions, now, self.archives) / 1000)}"
        )
        print(f"This month: {format_duration(month_total(global_sessions, now) / 1000)}")

        rows = project_rows(snapshot, now)
        if rows:
            print()
            print("Projects (today / total):")
            for name, today, total in rows[:10]:
                print(f"  {name[:30]:<30} {format_duration(today)}  {format_duration(total)}")

    def print_archive(self, year: int, month: int) -> None:
        archive = self.archives.load_archive(year, month)
        label = f"{MONTH_NAMES[month - 1].capitalize()} {year}"
        if archive is None:
            print(f"No archive for {label}.")
            return

        print(f"Archive for {label}")
        print("-" * 40)
        print(f"Global time: {format_duration(sessions_seconds(archive.global_sessions))}")
        print(f"Sessions:    {len(archive.global_sessions)}")
        entries = aggregate_archive_projects(archive)
        if entries:
            print()
            print("Projects:")
            for name, seconds in entries:
                print(f"  {name[:30]:<30} {format_duration(seconds)}")

    def print_archive_index(self) -> None:
        months = self.archives.list_months()
        if not months:
            print("No archives yet.")
            return
        for year, month in months:
            print(f"{year}-{month:02d}  {self.archives.path_for(year, month).name}")


def sessions_seconds(sessions: Iterable[PersistedSession]) -> float:
    return sum(session.duration for session in sessions) / 1000


def project_rows(snapshot: Snapshot, now: datetime) -> list[tuple[str, float, float]]:
    rows = []
    for project in snapshot.projects:
        tracking = project.time_tracking
        if tracking is None:
            continue
        rows.append(
            (
                project.name or project.id,
                today_total(tracking.sessions, now) / 1000,
                tracking.total_time / 1000,
            )
        )
    return sorted(rows, key=lambda row: row[2], reverse=True)


def aggregate_archive_projects(archive: MonthlyArchive) -> list[tuple[str, float]]:
    totals = [
        (data.project_name or project_id, sessions_seconds(data.sessions))
        for project_id, data in archive.project_sessions.items()
    ]
    return sorted(totals, key=lambda item: item[1], reverse=True)


def format_duration(seconds: float) -> str:
    total_seconds = int(round(seconds))
    hours, remainder = divmod(total_seconds, 3600)
    minutes, secs = divmod(remainder, 60)
    return f"{hours:02d}:{minutes:02d}:{secs:02d}"
