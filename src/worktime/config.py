"""Configuration models and helpers for the work time tracker."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import timedelta


@dataclass(slots=True)
class TrackerSettings:
    """Runtime configuration for the session tracker and its detectors."""

    idle_timeout: timedelta = timedelta(minutes=15)
    output_grace: timedelta = timedelta(minutes=2)
    output_grace_epsilon: timedelta = timedelta(milliseconds=100)
    sleep_gap: timedelta = timedelta(minutes=2)
    heartbeat_interval: timedelta = timedelta(seconds=30)
    midnight_check_interval: timedelta = timedelta(seconds=30)
    checkpoint_interval: timedelta = timedelta(minutes=5)
    min_session: timedelta = timedelta(seconds=1)
    max_session: timedelta = timedelta(hours=24)
    save_debounce: timedelta = timedelta(seconds=1)
    archive_cache_size: int = 3

    @classmethod
    def from_intervals(
        cls,
        idle_minutes: float,
        checkpoint_minutes: float | None = None,
        output_grace_seconds: float | None = None,
        sleep_gap_minutes: float | None = None,
    ) -> "TrackerSettings":
        checkpoint = checkpoint_minutes if checkpoint_minutes is not None else 5.0
        grace = output_grace_seconds if output_grace_seconds is not None else 120.0
        sleep_gap = sleep_gap_minutes if sleep_gap_minutes is not None else 2.0
        return cls(
            idle_timeout=timedelta(minutes=idle_minutes),
            checkpoint_interval=timedelta(minutes=checkpoint),
            output_grace=timedelta(seconds=grace),
            sleep_gap=timedelta(minutes=sleep_gap),
        )
