"""Tests for the FastAPI surface."""

from contextlib import ExitStack
from datetime import datetime, timedelta

import pytest
from fastapi.testclient import TestClient

from conftest import START, make_snapshot, session

from worktime.archive import ArchiveStore
from worktime.scheduling import ManualScheduler
from worktime.service import TimeTrackingService
from worktime.store import MemorySnapshotStore
from worktime.webapp import create_app

MINUTE = timedelta(minutes=1)


@pytest.fixture
def make_client(tmp_path):
    """Factory returning a started TestClient plus its scheduler and store."""
    with ExitStack() as stack:

        def factory(start=START):
            scheduler = ManualScheduler(start)
            store = MemorySnapshotStore(make_snapshot("proj-1", "proj-2"))
            service = TimeTrackingService(
                archives_dir=tmp_path / "archives",
                scheduler=scheduler,
                clock=scheduler.now,
            )
            app = create_app(
                service=service, store=store, snapshot_path=tmp_path / "projects.json"
            )
            client = stack.enter_context(TestClient(app))
            return client, scheduler, store

        yield factory


@pytest.fixture
def api(make_client):
    return make_client()


def test_status_reports_configuration(api):
    client, _, _ = api

    payload = client.get("/api/status").json()

    assert payload["initialized"] is True
    assert payload["active_projects"] == 0
    assert payload["idle_minutes"] == 15.0
    assert payload["checkpoint_minutes"] == 5.0
    assert payload["snapshot_path"].endswith("projects.json")


class TestProjectEndpoints:
    def test_start_and_stop(self, api):
        client, scheduler, _ = api

        started = client.post("/api/projects/proj-1/start").json()
        assert started == {
            "project_id": "proj-1",
            "tracking": True,
            "today_seconds": 0.0,
            "total_seconds": 0.0,
        }

        scheduler.advance(2 * MINUTE)
        stopped = client.post("/api/projects/proj-1/stop").json()
        assert stopped["tracking"] is False
        assert stopped["today_seconds"] == 120.0
        assert stopped["total_seconds"] == 120.0

    def test_activity_resumes_idle_project(self, api):
        client, scheduler, _ = api
        client.post("/api/projects/proj-1/start")
        scheduler.advance(16 * MINUTE)
        assert client.get("/api/projects/proj-1/times").json()["tracking"] is False

        resumed = client.post("/api/projects/proj-1/activity").json()

        assert resumed["tracking"] is True
        assert resumed["total_seconds"] == 900.0

    def test_output_does_not_start_tracking(self, api):
        client, _, _ = api

        payload = client.post("/api/projects/proj-1/output").json()

        assert payload["tracking"] is False

    def test_switch_keeps_both_projects_running(self, api):
        client, _, _ = api
        client.post("/api/projects/proj-1/start")

        payload = client.post(
            "/api/projects/switch",
            json={"old_project_id": "proj-1", "new_project_id": "proj-2"},
        ).json()

        assert payload["project_id"] == "proj-2"
        assert payload["tracking"] is True
        assert client.get("/api/status").json()["active_projects"] == 2

    def test_switch_requires_new_project(self, api):
        client, _, _ = api

        response = client.post("/api/projects/switch", json={"new_project_id": "  "})

        assert response.status_code == 400

    def test_switch_rejects_unknown_fields(self, api):
        client, _, _ = api

        response = client.post(
            "/api/projects/switch", json={"new_project_id": "proj-2", "force": True}
        )

        assert response.status_code == 422


class TestGlobalTimes:
    def test_running_interval_counts_toward_all_periods(self, api):
        client, scheduler, _ = api
        client.post("/api/projects/proj-1/start")
        client.post("/api/projects/proj-2/start")
        scheduler.advance(10 * MINUTE)

        payload = client.get("/api/global/times").json()

        assert payload == {
            "today_seconds": 600.0,
            "week_seconds": 600.0,
            "month_seconds": 600.0,
            "active_projects": 2,
        }

    def test_week_includes_previous_month_archive(self, make_client, tmp_path):
        now = datetime(2026, 4, 1, 12, 0)
        seeded = ArchiveStore(tmp_path / "archives", clock=lambda: now)
        seeded.append_to_archive(
            2026, 3, [session(datetime(2026, 3, 30, 9), datetime(2026, 3, 30, 10))]
        )
        client, scheduler, _ = make_client(start=now)

        client.post("/api/projects/proj-1/start")
        scheduler.advance(30 * MINUTE)
        payload = client.get("/api/global/times").json()

        assert payload["today_seconds"] == 1800.0
        assert payload["week_seconds"] == 5400.0
        assert payload["month_seconds"] == 1800.0


class TestArchiveEndpoints:
    def test_list_and_fetch_archive(self, make_client, tmp_path):
        seeded = ArchiveStore(tmp_path / "archives", clock=lambda: START)
        seeded.append_to_archive(
            2026, 1, [session(datetime(2026, 1, 5, 9), datetime(2026, 1, 5, 10))]
        )
        client, _, _ = make_client()

        months = client.get("/api/archives").json()["months"]
        assert months == [{"year": 2026, "month": 1, "file": "january_2026.json"}]

        archive = client.get("/api/archives/2026/1").json()
        assert archive["month"] == "2026-01"
        assert archive["globalSessions"][0]["duration"] == 3_600_000

    def test_missing_archive_is_404(self, api):
        client, _, _ = api
        assert client.get("/api/archives/2025/1").status_code == 404

    def test_invalid_month_is_400(self, api):
        client, _, _ = api
        assert client.get("/api/archives/2026/13").status_code == 400


def test_shutdown_flushes_active_sessions(tmp_path):
    scheduler = ManualScheduler(START)
    store = MemorySnapshotStore(make_snapshot("proj-1"))
    service = TimeTrackingService(
        archives_dir=tmp_path / "archives", scheduler=scheduler, clock=scheduler.now
    )
    app = create_app(service=service, store=store, snapshot_path=tmp_path / "projects.json")

    with TestClient(app) as client:
        client.post("/api/projects/proj-1/start")
        scheduler.advance(3 * MINUTE)

    assert store.immediate_saves == 1
    sessions = store.get().project("proj-1").time_tracking.sessions
    assert [s.duration for s in sessions] == [180_000]
    assert not service.initialized
