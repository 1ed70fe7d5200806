"""Tests for snapshot persistence and the JSON models."""

import json
import math

import pytest

from conftest import START, session

from worktime.models import (
    SCHEMA_VERSION,
    PersistedSession,
    ProjectRecord,
    ProjectTimeTracking,
    Snapshot,
)
from worktime.store import JsonSnapshotStore

RAW = {
    "projects": [
        {
            "id": "proj-1",
            "name": "Website",
            "path": "/work/site",
            "color": "#ff0000",
            "timeTracking": {
                "totalTime": 3_600_000,
                "todayTime": 0,
                "lastActiveDate": "2026-02-09",
                "sessions": [
                    {
                        "id": "sess-1",
                        "startTime": "2026-02-09T09:00:00.000",
                        "endTime": "2026-02-09T10:00:00.000",
                        "duration": 3_600_000,
                    }
                ],
            },
        },
        {"id": "proj-2", "name": "Docs"},
    ],
    "settings": {"theme": "dark"},
    "timeTrackingSchema": 2,
}


class TestModels:
    def test_unknown_keys_survive_round_trip(self):
        snapshot = Snapshot.from_dict(RAW)

        assert snapshot.to_dict() == RAW

    def test_project_lookup(self):
        snapshot = Snapshot.from_dict(RAW)

        assert snapshot.project("proj-1").extra == {"path": "/work/site", "color": "#ff0000"}
        assert snapshot.project("proj-2").time_tracking is None
        assert snapshot.project("missing") is None

    def test_with_project_replaces_by_id(self):
        snapshot = Snapshot.from_dict(RAW)
        renamed = ProjectRecord(id="proj-2", name="Manual")

        updated = snapshot.with_project(renamed)

        assert updated.project("proj-2").name == "Manual"
        assert updated.project("proj-1") == snapshot.project("proj-1")

    def test_lenient_parsing_keeps_bad_values_for_sanitizer(self):
        tracking = ProjectTimeTracking.from_dict(
            {"totalTime": "lots", "sessions": [{"id": "x", "duration": "1h"}, 5]}
        )

        assert math.isnan(tracking.total_time)
        assert tracking.today_time == 0
        assert len(tracking.sessions) == 2
        assert math.isnan(tracking.sessions[0].duration)
        assert tracking.sessions[1].id == ""

    def test_non_list_sessions_become_empty(self):
        tracking = ProjectTimeTracking.from_dict({"sessions": {"id": "x"}})
        assert tracking.sessions == ()

    def test_missing_schema_means_legacy(self):
        assert Snapshot.from_dict({"projects": []}).schema_version == 1

    def test_session_create_uses_milliseconds(self):
        item = session(START, START.replace(minute=1, second=30))

        assert item.duration == 90_000
        assert item.start_time == "2026-02-10T09:00:00.000"
        assert item.to_dict()["duration"] == 90_000
        assert isinstance(item.to_dict()["duration"], int)

    def test_session_timestamps_with_zone_are_converted(self):
        item = PersistedSession.from_dict(
            {
                "id": "z",
                "startTime": "2026-02-10T09:00:00.000Z",
                "endTime": "2026-02-10T10:00:00.000Z",
                "duration": 3_600_000,
            }
        )

        assert item.start.tzinfo is None
        assert item.end - item.start == item.duration_delta


class TestJsonSnapshotStore:
    def test_missing_file_is_empty_snapshot(self, tmp_path):
        store = JsonSnapshotStore(tmp_path / "projects.json")

        assert store.get() == Snapshot()
        assert store.get().schema_version == SCHEMA_VERSION

    def test_save_immediate_writes_atomically(self, tmp_path):
        path = tmp_path / "data" / "projects.json"
        store = JsonSnapshotStore(path)
        store.set(Snapshot.from_dict(RAW))

        store.save_immediate()

        assert json.loads(path.read_text(encoding="utf-8")) == RAW
        assert not path.with_name("projects.json.tmp").exists()
        assert JsonSnapshotStore(path).get() == store.get()

    def test_save_immediate_cancels_pending_save(self, tmp_path):
        store = JsonSnapshotStore(tmp_path / "projects.json")
        store.save()

        store.save_immediate()

        assert store._timer is None
        assert (tmp_path / "projects.json").exists()

    def test_non_object_document_is_rejected(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text("[1, 2]", encoding="utf-8")

        with pytest.raises(ValueError):
            JsonSnapshotStore(path)

    def test_blank_file_is_empty_snapshot(self, tmp_path):
        path = tmp_path / "projects.json"
        path.write_text("\n", encoding="utf-8")

        assert JsonSnapshotStore(path).get().projects == ()
