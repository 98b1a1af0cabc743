"""Time helpers shared by storage and booking code.

Stored timestamps are ISO-8601 UTC strings with a fixed millisecond precision
so that plain string comparison orders them correctly.
"""

from __future__ import annotations

from datetime import date, datetime, timezone

from connectsphere.core.errors import ValidationError


def to_iso(moment: datetime) -> str:
    return moment.astimezone(timezone.utc).isoformat(timespec="milliseconds")


def utc_now_iso() -> str:
    return to_iso(datetime.now(timezone.utc))


def parse_hhmm(value: str) -> int:
    """Return minutes since midnight for a 24-hour ``HH:MM`` string."""
    if not isinstance(value, str) or len(value) != 5 or value[2] != ":":
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    hours, minutes = value[:2], value[3:]
    if not (hours.isdigit() and minutes.isdigit()):
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    h, m = int(hours), int(minutes)
    if h > 23 or m > 59:
        raise ValidationError(f"Invalid time {value!r}, expected HH:MM")
    return h * 60 + m


def format_hhmm(minutes: int) -> str:
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def parse_calendar_date(value: str) -> date:
    """Parse ``YYYY-MM-DD`` into calendar components, never through a timezone."""
    try:
        year, month, day = (int(part) for part in str(value).split("-"))
        return date(year, month, day)
    except (TypeError, ValueError) as e:
        raise ValidationError(f"Invalid date {value!r}, expected YYYY-MM-DD") from e
