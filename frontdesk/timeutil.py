"""Canonical-timezone (PT) helpers.

Every timestamp that crosses a component boundary is an ISO-8601 string
carrying the PT offset.  Naive inputs are interpreted as PT.
"""

from __future__ import annotations

from datetime import date, datetime, timedelta
from functools import lru_cache
from zoneinfo import ZoneInfo

from frontdesk.config import CANONICAL_TIMEZONE, MEETING_DURATION_MINUTES


@lru_cache(maxsize=1)
def canonical_tz() -> ZoneInfo:
    return ZoneInfo(CANONICAL_TIMEZONE)


def now_pt() -> datetime:
    return datetime.now(canonical_tz())


def parse_iso(value: str) -> datetime:
    """Parse an ISO-8601 timestamp and convert it to PT.

    Raises ``ValueError`` for anything that is not a full date-time.
    """
    if not value or "T" not in value:
        raise ValueError(f"not an ISO-8601 date-time: {value!r}")
    dt = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    if dt.tzinfo is None:
        return dt.replace(tzinfo=canonical_tz())
    return dt.astimezone(canonical_tz())


def parse_date(value: str) -> date:
    """Parse a ``YYYY-MM-DD`` date."""
    return date.fromisoformat(value.strip())


def to_iso(dt: datetime) -> str:
    return dt.astimezone(canonical_tz()).isoformat(timespec="seconds")


def meeting_end(start: datetime) -> datetime:
    """Meetings are always a fixed 60 minutes."""
    return start + timedelta(minutes=MEETING_DURATION_MINUTES)


def day_bounds(day: date, start_hour: int, end_hour: int) -> tuple[datetime, datetime]:
    """Return PT datetimes for *start_hour* and *end_hour* on *day*."""
    tz = canonical_tz()
    return (
        datetime(day.year, day.month, day.day, start_hour, tzinfo=tz),
        datetime(day.year, day.month, day.day, end_hour, tzinfo=tz),
    )


def format_pt(value: str | datetime) -> str:
    """Render a timestamp as 'Tue 27 Oct 2026 at 09:00 PT'."""
    dt = parse_iso(value) if isinstance(value, str) else value.astimezone(canonical_tz())
    return dt.strftime("%a %d %b %Y at %H:%M PT")
