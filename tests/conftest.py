"""Shared pytest fixtures and configuration."""

from datetime import datetime

import pytest

from worktime.archive import ArchiveStore
from worktime.models import PersistedSession, ProjectRecord, Snapshot
from worktime.scheduling import ManualScheduler
from worktime.service import TimeTrackingService
from worktime.store import MemorySnapshotStore
from worktime.tracker import SessionTracker

# A Tuesday; the week started on Monday 2026-02-09.
START = datetime(2026, 2, 10, 9, 0)


def make_snapshot(*project_ids, **kwargs):
    """Build a snapshot with one project per id and no tracking data yet."""
    projects = tuple(ProjectRecord(id=pid, name=pid.title()) for pid in project_ids)
    return Snapshot(projects=projects, **kwargs)


def project_sessions(store, project_id):
    project = store.get().project(project_id)
    if project is None or project.time_tracking is None:
        return []
    return list(project.time_tracking.sessions)


def global_sessions(store):
    tracking = store.get().global_tracking
    return list(tracking.sessions) if tracking else []


def session(start, end, session_id=None):
    built = PersistedSession.create(start, end)
    if session_id is None:
        return built
    return PersistedSession(
        id=session_id,
        start_time=built.start_time,
        end_time=built.end_time,
        duration=built.duration,
    )


@pytest.fixture
def scheduler():
    return ManualScheduler(START)


@pytest.fixture
def store():
    return MemorySnapshotStore(make_snapshot("proj-1", "proj-2"))


@pytest.fixture
def archives(tmp_path, scheduler):
    return ArchiveStore(tmp_path / "archives", clock=scheduler.now)


@pytest.fixture
def tracker(archives, scheduler, store):
    """A bare tracker (no boundary detectors) attached to an in-memory store."""
    tracker = SessionTracker(archives, scheduler, clock=scheduler.now)
    tracker.attach(store)
    return tracker


@pytest.fixture
def make_service(tmp_path):
    """Factory returning an initialized service driven by a manual scheduler."""
    created = []

    def factory(start=START, snapshot=None):
        scheduler = ManualScheduler(start)
        store = MemorySnapshotStore(snapshot or make_snapshot("proj-1", "proj-2"))
        service = TimeTrackingService(
            archives_dir=tmp_path / "archives",
            scheduler=scheduler,
            clock=scheduler.now,
        )
        service.init(store)
        created.append(service)
        return service, scheduler, store

    yield factory

    for service in created:
        service.shutdown()
