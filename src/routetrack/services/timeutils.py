"""Time parsing, formatting and operating-window helpers."""

from __future__ import annotations

from datetime import datetime, time, timezone, tzinfo
from zoneinfo import ZoneInfo


def tzinfo_from_name(tz_name: str) -> tzinfo:
    """Create tzinfo from an IANA timezone name.

    Raises:
        ValueError: If timezone name is invalid on this system.
    """

    try:
        return ZoneInfo(tz_name)
    except Exception as exc:  # ZoneInfo raises KeyError / ZoneInfoNotFoundError (platform dependent)
        raise ValueError(f"Invalid time zone: {tz_name!r}") from exc


def parse_timestamp(value: str | datetime, default_tz: tzinfo = timezone.utc) -> datetime:
    """Parse an ISO-8601 timestamp into an aware datetime.

    Naive values are assumed to be in ``default_tz``.
    """

    if isinstance(value, datetime):
        parsed = value
    else:
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError as exc:
            raise ValueError(f"Cannot parse timestamp {value!r}") from exc
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=default_tz)
    return parsed


def format_clock(value: time | None) -> str | None:
    """Format a wall-clock time as HH:MM."""

    return value.strftime("%H:%M") if value is not None else None


def parse_clock(value: str | time | None) -> time | None:
    if value is None or isinstance(value, time):
        return value
    text = value.strip()
    if not text:
        return None
    hours, minutes = text.split(":")[:2]
    return time(int(hours), int(minutes))


def clamp_to_window(moment: datetime, window_start: time, window_end: time) -> datetime:
    """Clamp a local datetime into [window_start, window_end) on its own calendar day.

    Earlier times floor to ``window_start``; times at or after ``window_end`` cap to
    one minute before it.
    """

    wall = moment.time().replace(tzinfo=None)
    if wall < window_start:
        return moment.replace(hour=window_start.hour, minute=window_start.minute, second=0, microsecond=0)
    if wall >= window_end:
        end_minutes = window_end.hour * 60 + window_end.minute - 1
        return moment.replace(hour=end_minutes // 60, minute=end_minutes % 60, second=0, microsecond=0)
    return moment
