"""Monthly JSON archives for sessions that left the live dataset."""

from __future__ import annotations

import json
import logging
import os
import threading
import time
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Any, Callable, Iterable, Mapping, Optional

from .models import PersistedSession
from .periods import MONTH_NAMES, format_timestamp, month_key, same_month

logger = logging.getLogger(__name__)

ARCHIVE_VERSION = 1
DEFAULT_CACHE_SIZE = 3


def archive_filename(year: int, month: int) -> str:
    """Return e.g. ``february_2026.json`` for ``(2026, 2)``."""
    if not 1 <= month <= 12:
        raise ValueError(f"month must be in 1..12, got {month}")
    return f"{MONTH_NAMES[month - 1]}_{year}.json"


@dataclass(slots=True)
class ProjectArchive:
    project_name: str
    sessions: list[PersistedSession] = field(default_factory=list)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ProjectArchive":
        sessions = raw.get("sessions")
        return cls(
            project_name=str(raw.get("projectName") or "Unknown"),
            sessions=[
                PersistedSession.from_dict(item)
                for item in (sessions if isinstance(sessions, list) else [])
            ],
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "projectName": self.project_name,
            "sessions": [session.to_dict() for session in self.sessions],
        }


@dataclass(slots=True)
class MonthlyArchive:
    """One calendar month of archived global and per-project sessions."""

    month: str
    created_at: str
    last_modified_at: str
    version: int = ARCHIVE_VERSION
    global_sessions: list[PersistedSession] = field(default_factory=list)
    project_sessions: dict[str, ProjectArchive] = field(default_factory=dict)

    @classmethod
    def empty(cls, year: int, month: int, now: datetime) -> "MonthlyArchive":
        stamp = format_timestamp(now)
        return cls(month=month_key(year, month), created_at=stamp, last_modified_at=stamp)

    @classmethod
    def from_dict(cls, raw: Any) -> "MonthlyArchive":
        if not isinstance(raw, Mapping):
            raise ValueError("archive document must be a JSON object")
        global_raw = raw.get("globalSessions")
        projects_raw = raw.get("projectSessions")
        return cls(
            version=int(raw.get("version") or ARCHIVE_VERSION),
            month=str(raw.get("month") or ""),
            created_at=str(raw.get("createdAt") or ""),
            last_modified_at=str(raw.get("lastModifiedAt") or ""),
            global_sessions=[
                PersistedSession.from_dict(item)
                for item in (global_raw if isinstance(global_raw, list) else [])
            ],
            project_sessions={
                str(project_id): ProjectArchive.from_dict(data)
                for project_id, data in (
                    projects_raw.items() if isinstance(projects_raw, Mapping) else []
                )
                if isinstance(data, Mapping)
            },
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "month": self.month,
            "createdAt": self.created_at,
            "lastModifiedAt": self.last_modified_at,
            "globalSessions": [session.to_dict() for session in self.global_sessions],
            "projectSessions": {
                project_id: data.to_dict()
                for project_id, data in self.project_sessions.items()
            },
        }


def _merge_unique(
    target: list[PersistedSession], incoming: Iterable[PersistedSession]
) -> int:
    existing = {session.id for session in target}
    added = 0
    for session in incoming:
        if session.id in existing:
            continue
        target.append(session)
        existing.add(session.id)
        added += 1
    return added


class ArchiveStore:
    """Reads and writes ``<month>_<year>.json`` files with a small LRU cache."""

    def __init__(
        self,
        directory: Path,
        *,
        cache_size: int = DEFAULT_CACHE_SIZE,
        clock: Callable[[], datetime] = datetime.now,
    ) -> None:
        self.directory = Path(directory)
        self.cache_size = cache_size
        self._clock = clock
        self._cache: dict[str, tuple[MonthlyArchive, float]] = {}
        self._lock = threading.Lock()

    def path_for(self, year: int, month: int) -> Path:
        return self.directory / archive_filename(year, month)

    def is_current_month(self, year: int, month: int) -> bool:
        return same_month(datetime(year, month, 1), self._clock())

    def list_months(self) -> list[tuple[int, int]]:
        """Return ``(year, month)`` for every archive file on disk, oldest first."""
        if not self.directory.exists():
            return []
        found: list[tuple[int, int]] = []
        for path in self.directory.glob("*_*.json"):
            name, _, year_text = path.stem.rpartition("_")
            if name in MONTH_NAMES and year_text.isdigit():
                found.append((int(year_text), MONTH_NAMES.index(name) + 1))
        return sorted(found)

    def load_archive(self, year: int, month: int) -> Optional[MonthlyArchive]:
        key = month_key(year, month)
        with self._lock:
            cached = self._cache.get(key)
            if cached is not None:
                return cached[0]

        archive = self._read_from_disk(self.path_for(year, month))
        if archive is None:
            return None

        with self._lock:
            if key not in self._cache and len(self._cache) >= self.cache_size:
                oldest = min(self._cache, key=lambda k: self._cache[k][1])
                del self._cache[oldest]
            self._cache[key] = (archive, time.monotonic())
        return archive

    def append_to_archive(
        self,
        year: int,
        month: int,
        global_sessions: Iterable[PersistedSession] = (),
        project_sessions: Optional[Mapping[str, ProjectArchive]] = None,
    ) -> bool:
        """Merge sessions into the month's archive, skipping known ids.

        Always re-reads the file so concurrent appends are never lost to a
        stale cache entry. Returns ``False`` when the write failed.
        """
        path = self.path_for(year, month)
        archive = self._read_from_disk(path) or MonthlyArchive.empty(
            year, month, self._clock()
        )

        added = _merge_unique(archive.global_sessions, global_sessions)
        for project_id, data in (project_sessions or {}).items():
            entry = archive.project_sessions.get(project_id)
            if entry is None:
                entry = ProjectArchive(project_name=data.project_name or "Unknown")
                archive.project_sessions[project_id] = entry
            added += _merge_unique(entry.sessions, data.sessions)
            if data.project_name:
                entry.project_name = data.project_name

        archive.last_modified_at = format_timestamp(self._clock())
        ok = self.write_archive(year, month, archive)
        self.invalidate(year, month)
        if ok:
            logger.debug("Archived %d new sessions into %s", added, path.name)
        return ok

    def write_archive(self, year: int, month: int, archive: MonthlyArchive) -> bool:
        path = self.path_for(year, month)
        temp_path = path.with_name(path.name + ".tmp")
        try:
            self.directory.mkdir(parents=True, exist_ok=True)
            temp_path.write_text(
                json.dumps(archive.to_dict(), indent=2), encoding="utf-8"
            )
            os.replace(temp_path, path)
        except OSError:
            logger.exception("Failed to write archive %s", path)
            self._remove_temp(temp_path)
            return False
        return True

    def get_archived_global_sessions(self, year: int, month: int) -> list[PersistedSession]:
        archive = self.load_archive(year, month)
        return list(archive.global_sessions) if archive else []

    def get_archived_project_sessions(
        self, year: int, month: int, project_id: str
    ) -> list[PersistedSession]:
        archive = self.load_archive(year, month)
        if archive is None or project_id not in archive.project_sessions:
            return []
        return list(archive.project_sessions[project_id].sessions)

    def get_archived_all_project_sessions(
        self, year: int, month: int
    ) -> dict[str, ProjectArchive]:
        archive = self.load_archive(year, month)
        return dict(archive.project_sessions) if archive else {}

    def invalidate(self, year: int, month: int) -> None:
        with self._lock:
            self._cache.pop(month_key(year, month), None)

    def clear_cache(self) -> None:
        with self._lock:
            self._cache.clear()

    def cached_months(self) -> list[str]:
        with self._lock:
            return list(self._cache)

    @staticmethod
    def _read_from_disk(path: Path) -> Optional[MonthlyArchive]:
        try:
            if not path.exists():
                return None
            content = path.read_text(encoding="utf-8")
            if not content.strip():
                return None
            return MonthlyArchive.from_dict(json.loads(content))
        except (OSError, ValueError, TypeError) as exc:
            logger.warning("Failed to read archive %s: %s", path, exc)
            return None

    @staticmethod
    def _remove_temp(temp_path: Path) -> None:
        try:
            temp_path.unlink(missing_ok=True)
        except OSError:
            logger.warning("Could not remove temporary archive file %s", temp_path)
