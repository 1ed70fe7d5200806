"""Calendar helpers: local days, ISO weeks, months and timestamp parsing."""

from __future__ import annotations

from datetime import date, datetime, timedelta
from typing import Optional

DATE_FMT = "%Y-%m-%d"

MONTH_NAMES = (
    "january",
    "february",
    "march",
    "april",
    "may",
    "june",
    "july",
    "august",
    "september",
    "october",
    "november",
    "december",
)


def day_string(moment: datetime | date) -> str:
    return moment.strftime(DATE_FMT)


def month_key(year: int, month: int) -> str:
    """Return the ``YYYY-MM`` key used for archives and month anchors."""
    return f"{year:04d}-{month:02d}"


def parse_month_key(value: str) -> tuple[int, int]:
    try:
        year_text, month_text = value.split("-")
        year, month = int(year_text), int(month_text)
    except ValueError as exc:
        raise ValueError(f"Invalid month key: {value!r}") from exc
    if not 1 <= month <= 12:
        raise ValueError(f"Invalid month key: {value!r}")
    return year, month


def start_of_day(moment: datetime) -> datetime:
    return moment.replace(hour=0, minute=0, second=0, microsecond=0)


def start_of_week(moment: datetime) -> datetime:
    """Monday 00:00 of the week containing ``moment``."""
    return start_of_day(moment) - timedelta(days=moment.weekday())


def start_of_month(moment: datetime) -> datetime:
    return start_of_day(moment).replace(day=1)


def start_of_next_month(moment: datetime) -> datetime:
    first = start_of_month(moment)
    if first.month == 12:
        return first.replace(year=first.year + 1, month=1)
    return first.replace(month=first.month + 1)


def same_month(a: datetime, b: datetime) -> bool:
    return a.year == b.year and a.month == b.month


def months_in_range(start: datetime, end: datetime) -> list[tuple[int, int]]:
    """Return every ``(year, month)`` overlapping ``[start, end)``."""
    months: list[tuple[int, int]] = []
    cursor = start_of_month(start)
    while cursor < end:
        months.append((cursor.year, cursor.month))
        cursor = start_of_next_month(cursor)
    return months


def parse_timestamp(value: object) -> Optional[datetime]:
    """Parse an ISO-8601 timestamp into a naive local datetime.

    Aware values (including a trailing ``Z``) are converted to local time.
    Returns ``None`` for anything that is not a parseable string.
    """
    if not isinstance(value, str) or not value.strip():
        return None
    text = value.strip()
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(text)
    except ValueError:
        return None
    if parsed.tzinfo is not None:
        parsed = parsed.astimezone().replace(tzinfo=None)
    return parsed


def format_timestamp(moment: datetime) -> str:
    return moment.isoformat(timespec="milliseconds")


def to_millis(delta: timedelta) -> int:
    return int(round(delta.total_seconds() * 1000))
