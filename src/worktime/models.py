"""Domain models for persisted time tracking data.

The live dataset (``projects.json``) and the monthly archives share the same
camelCase JSON layout. Parsing is deliberately lenient: malformed values are
carried through as ``NaN``/``None`` so the sanitizer can repair or drop them
instead of the loader rejecting the whole file.
"""

from __future__ import annotations

import math
import time
import uuid
from dataclasses import dataclass, field, replace
from datetime import datetime, timedelta
from typing import Any, Mapping, Optional

from .periods import format_timestamp, parse_timestamp, to_millis

SCHEMA_VERSION = 2

_PROJECT_TRACKING_KEY = "timeTracking"
_GLOBAL_TRACKING_KEY = "globalTimeTracking"
_SCHEMA_KEY = "timeTrackingSchema"


def new_session_id() -> str:
    return f"sess-{int(time.time() * 1000)}-{uuid.uuid4().hex[:9]}"


def _number(value: Any) -> float:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return math.nan
    return float(value)


def _counter(raw: Mapping[str, Any], key: str) -> float:
    if key not in raw or raw[key] is None:
        return 0.0
    return _number(raw[key])


def _optional_str(value: Any) -> Optional[str]:
    return value if isinstance(value, str) and value else None


def _plain(value: float) -> float | int:
    if math.isfinite(value) and value == int(value):
        return int(value)
    return value


@dataclass(frozen=True, slots=True)
class PersistedSession:
    """A closed interval of active time. Never mutated once written."""

    id: str
    start_time: Optional[str]
    end_time: Optional[str]
    duration: float  # milliseconds

    @classmethod
    def create(cls, start: datetime, end: datetime) -> "PersistedSession":
        return cls(
            id=new_session_id(),
            start_time=format_timestamp(start),
            end_time=format_timestamp(end),
            duration=to_millis(end - start),
        )

    @property
    def start(self) -> Optional[datetime]:
        return parse_timestamp(self.start_time)

    @property
    def end(self) -> Optional[datetime]:
        return parse_timestamp(self.end_time)

    @property
    def duration_delta(self) -> timedelta:
        return timedelta(milliseconds=self.duration)

    @classmethod
    def from_dict(cls, raw: Any) -> "PersistedSession":
        if not isinstance(raw, Mapping):
            return cls(id="", start_time=None, end_time=None, duration=math.nan)
        return cls(
            id=str(raw.get("id") or ""),
            start_time=_optional_str(raw.get("startTime")),
            end_time=_optional_str(raw.get("endTime")),
            duration=_number(raw.get("duration")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "startTime": self.start_time,
            "endTime": self.end_time,
            "duration": _plain(self.duration),
        }


def _sessions_from(raw: Any) -> tuple[PersistedSession, ...]:
    if not isinstance(raw, list):
        return ()
    return tuple(PersistedSession.from_dict(item) for item in raw)


@dataclass(frozen=True, slots=True)
class ProjectTimeTracking:
    total_time: float = 0.0
    today_time: float = 0.0
    last_active_date: Optional[str] = None
    sessions: tuple[PersistedSession, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ProjectTimeTracking":
        return cls(
            total_time=_counter(raw, "totalTime"),
            today_time=_counter(raw, "todayTime"),
            last_active_date=_optional_str(raw.get("lastActiveDate")),
            sessions=_sessions_from(raw.get("sessions")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTime": _plain(self.total_time),
            "todayTime": _plain(self.today_time),
            "lastActiveDate": self.last_active_date,
            "sessions": [session.to_dict() for session in self.sessions],
        }


@dataclass(frozen=True, slots=True)
class GlobalTimeTracking:
    """Aggregate wall time across all projects (not the sum of projects)."""

    total_time: float = 0.0
    today_time: float = 0.0
    week_time: float = 0.0
    month_time: float = 0.0
    last_active_date: Optional[str] = None
    week_start: Optional[str] = None
    month_start: Optional[str] = None
    sessions: tuple[PersistedSession, ...] = ()

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "GlobalTimeTracking":
        return cls(
            total_time=_counter(raw, "totalTime"),
            today_time=_counter(raw, "todayTime"),
            week_time=_counter(raw, "weekTime"),
            month_time=_counter(raw, "monthTime"),
            last_active_date=_optional_str(raw.get("lastActiveDate")),
            week_start=_optional_str(raw.get("weekStart")),
            month_start=_optional_str(raw.get("monthStart")),
            sessions=_sessions_from(raw.get("sessions")),
        )

    def to_dict(self) -> dict[str, Any]:
        return {
            "totalTime": _plain(self.total_time),
            "todayTime": _plain(self.today_time),
            "weekTime": _plain(self.week_time),
            "monthTime": _plain(self.month_time),
            "lastActiveDate": self.last_active_date,
            "weekStart": self.week_start,
            "monthStart": self.month_start,
            "sessions": [session.to_dict() for session in self.sessions],
        }


@dataclass(frozen=True, slots=True)
class ProjectRecord:
    """A project from the external project list.

    Only ``timeTracking`` is owned here; every other field is round-tripped
    untouched through ``extra``.
    """

    id: str
    name: str
    time_tracking: Optional[ProjectTimeTracking] = None
    extra: Mapping[str, Any] = field(default_factory=dict)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "ProjectRecord":
        tracking_raw = raw.get(_PROJECT_TRACKING_KEY)
        extra = {
            key: value
            for key, value in raw.items()
            if key not in ("id", "name", _PROJECT_TRACKING_KEY)
        }
        return cls(
            id=str(raw.get("id", "")),
            name=str(raw.get("name") or ""),
            time_tracking=(
                ProjectTimeTracking.from_dict(tracking_raw)
                if isinstance(tracking_raw, Mapping)
                else None
            ),
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {"id": self.id, "name": self.name, **self.extra}
        if self.time_tracking is not None:
            payload[_PROJECT_TRACKING_KEY] = self.time_tracking.to_dict()
        return payload


@dataclass(frozen=True, slots=True)
class Snapshot:
    """The live dataset: all projects plus global tracking."""

    projects: tuple[ProjectRecord, ...] = ()
    global_tracking: Optional[GlobalTimeTracking] = None
    schema_version: int = SCHEMA_VERSION
    extra: Mapping[str, Any] = field(default_factory=dict)

    def project(self, project_id: str) -> Optional[ProjectRecord]:
        for project in self.projects:
            if project.id == project_id:
                return project
        return None

    def with_project(self, record: ProjectRecord) -> "Snapshot":
        projects = tuple(
            record if project.id == record.id else project for project in self.projects
        )
        return replace(self, projects=projects)

    @classmethod
    def from_dict(cls, raw: Mapping[str, Any]) -> "Snapshot":
        projects_raw = raw.get("projects")
        global_raw = raw.get(_GLOBAL_TRACKING_KEY)
        version = raw.get(_SCHEMA_KEY)
        extra = {
            key: value
            for key, value in raw.items()
            if key not in ("projects", _GLOBAL_TRACKING_KEY, _SCHEMA_KEY)
        }
        return cls(
            projects=tuple(
                ProjectRecord.from_dict(item)
                for item in (projects_raw if isinstance(projects_raw, list) else [])
                if isinstance(item, Mapping)
            ),
            global_tracking=(
                GlobalTimeTracking.from_dict(global_raw)
                if isinstance(global_raw, Mapping)
                else None
            ),
            schema_version=version if isinstance(version, int) else 1,
            extra=extra,
        )

    def to_dict(self) -> dict[str, Any]:
        payload: dict[str, Any] = {
            **self.extra,
            "projects": [project.to_dict() for project in self.projects],
            _SCHEMA_KEY: self.schema_version,
        }
        if self.global_tracking is not None:
            payload[_GLOBAL_TRACKING_KEY] = self.global_tracking.to_dict()
        return payload
