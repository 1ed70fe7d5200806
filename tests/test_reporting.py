"""Tests for CLI reporting helpers and the typer commands."""

from datetime import datetime, timedelta

import pytest
from typer.testing import CliRunner

from conftest import START, session

from worktime.archive import ArchiveStore, ProjectArchive
from worktime.cli import app
from worktime.models import GlobalTimeTracking, ProjectRecord, ProjectTimeTracking, Snapshot
from worktime.reporting import SummaryPrinter, format_duration
from worktime.store import JsonSnapshotStore

HOUR = timedelta(hours=1)


@pytest.mark.parametrize(
    "seconds, expected",
    [(0, "00:00:00"), (59.6, "00:01:00"), (3661, "01:01:01"), (90_000, "25:00:00")],
)
def test_format_duration(seconds, expected):
    assert format_duration(seconds) == expected


@pytest.fixture
def seeded(tmp_path):
    snapshot_path = tmp_path / "projects.json"
    archives_dir = tmp_path / "archives"
    today = session(START - 2 * HOUR, START - HOUR)
    store = JsonSnapshotStore(snapshot_path)
    store.set(
        Snapshot(
            projects=(
                ProjectRecord(
                    id="proj-1",
                    name="Website",
                    time_tracking=ProjectTimeTracking(total_time=7_200_000, sessions=(today,)),
                ),
            ),
            global_tracking=GlobalTimeTracking(total_time=3_600_000, sessions=(today,)),
        )
    )
    store.save_immediate()

    january = session(datetime(2026, 1, 5, 9), datetime(2026, 1, 5, 11))
    ArchiveStore(archives_dir, clock=lambda: START).append_to_archive(
        2026, 1, [january], {"proj-1": ProjectArchive("Website", [january])}
    )
    return archives_dir, snapshot_path


class TestSummaryPrinter:
    def test_summary_prints_period_totals(self, seeded, capsys):
        SummaryPrinter(*seeded).print_summary(START)

        out = capsys.readouterr().out
        assert "Summary for 2026-02-10" in out
        assert "Today:      01:00:00" in out
        assert "This week:  01:00:00" in out
        assert "Website" in out
        assert "02:00:00" in out

    def test_summary_without_data(self, tmp_path, capsys):
        SummaryPrinter(tmp_path / "archives", tmp_path / "projects.json").print_summary(START)

        assert capsys.readouterr().out.strip() == "No time recorded yet."

    def test_print_archive(self, seeded, capsys):
        SummaryPrinter(*seeded).print_archive(2026, 1)

        out = capsys.readouterr().out
        assert "Archive for January 2026" in out
        assert "Global time: 02:00:00" in out
        assert "Sessions:    1" in out
        assert "Website" in out

    def test_print_missing_archive(self, seeded, capsys):
        SummaryPrinter(*seeded).print_archive(2025, 6)

        assert "No archive for June 2025." in capsys.readouterr().out


class TestCli:
    def test_archive_index(self, seeded):
        archives_dir, _ = seeded

        result = CliRunner().invoke(app, ["archive", "--archives", str(archives_dir)])

        assert result.exit_code == 0
        assert "2026-01  january_2026.json" in result.output

    def test_archive_rejects_bad_month(self, seeded):
        archives_dir, _ = seeded

        result = CliRunner().invoke(
            app, ["archive", "--archives", str(archives_dir), "--month", "2026-13"]
        )

        assert result.exit_code != 0
