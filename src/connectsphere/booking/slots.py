"""Consultant schedule model and pure slot generation."""

from __future__ import annotations

from datetime import date
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field

from connectsphere.core.errors import ValidationError
from connectsphere.core.timeutil import format_hhmm, parse_hhmm
from connectsphere.core.types import BookingMode

DAYS = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")

MIN_SLOT_MINUTES, MAX_SLOT_MINUTES, DEFAULT_SLOT_MINUTES = 15, 120, 30
MIN_TOKENS_PER_DAY, MAX_TOKENS_PER_DAY, DEFAULT_TOKENS_PER_DAY = 1, 500, 30

_WEEKDAY = {"enabled": True, "start": "09:00", "end": "17:00", "breakStart": "12:00", "breakEnd": "13:00"}

DEFAULT_SCHEDULE: dict[str, dict[str, Any]] = {
    "monday": dict(_WEEKDAY),
    "tuesday": dict(_WEEKDAY),
    "wednesday": dict(_WEEKDAY),
    "thursday": dict(_WEEKDAY),
    "friday": dict(_WEEKDAY),
    "saturday": {"enabled": False, "start": "10:00", "end": "14:00", "breakStart": None, "breakEnd": None},
    "sunday": {"enabled": False, "start": None, "end": None, "breakStart": None, "breakEnd": None},
}


class DaySchedule(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    start: Optional[str] = None
    end: Optional[str] = None
    break_start: Optional[str] = Field(default=None, alias="breakStart")
    break_end: Optional[str] = Field(default=None, alias="breakEnd")


class ConsultantSettings(BaseModel):
    model_config = ConfigDict(populate_by_name=True)

    enabled: bool = False
    booking_mode: BookingMode = Field(default=BookingMode.HOURLY, alias="bookingType")
    slot_duration: int = Field(default=DEFAULT_SLOT_MINUTES, alias="slotDuration")
    max_tokens_per_day: int = Field(default=DEFAULT_TOKENS_PER_DAY, alias="maxTokensPerDay")
    dynamic_allocation: bool = Field(default=False, alias="dynamicAllocation")
    timezone: str = "Asia/Kolkata"
    schedule: dict[str, DaySchedule] = Field(default_factory=dict)

    def day(self, name: str) -> DaySchedule:
        return self.schedule.get(name) or DaySchedule()

    def to_document(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True)


def day_name(value: date) -> str:
    return DAYS[value.weekday()]


def _clamp(raw: Any, low: int, high: int, default: int) -> int:
    try:
        value = int(raw)
    except (TypeError, ValueError):
        return default
    return min(high, max(low, value))


def normalize_day(name: str, raw: dict[str, Any]) -> DaySchedule:
    """Validate one weekday; bounds are rejected, never silently corrected."""
    fallback = DEFAULT_SCHEDULE[name]

    def pick(field: str) -> Optional[str]:
        return raw[field] if field in raw else fallback[field]

    enabled = bool(raw.get("enabled"))
    if not enabled:
        return DaySchedule(enabled=False)

    start, end = pick("start"), pick("end")
    break_start, break_end = pick("breakStart"), pick("breakEnd")

    if not start or not end:
        raise ValidationError(f"Invalid schedule for {name}: start and end times are required")
    if parse_hhmm(start) >= parse_hhmm(end):
        raise ValidationError(f"Invalid schedule for {name}: start must be before end")
    if break_start and break_end:
        if parse_hhmm(break_start) >= parse_hhmm(break_end):
            raise ValidationError(f"Invalid schedule for {name}: break start must be before break end")
    else:
        break_start = break_end = None

    return DaySchedule(enabled=True, start=start, end=end, break_start=break_start, break_end=break_end)


def sanitize_settings(raw: dict[str, Any], timezone: str) -> ConsultantSettings:
    """Normalize user-submitted consultant settings.

    Slot duration and tokens per day are clamped into range; schedule bounds
    raise ``ValidationError``. The timezone is always the configured one.
    """
    raw_schedule = raw.get("schedule") or {}
    schedule = {
        name: normalize_day(name, raw_schedule.get(name) or DEFAULT_SCHEDULE[name]) for name in DAYS
    }
    return ConsultantSettings(
        enabled=bool(raw.get("enabled")),
        booking_mode=BookingMode.TOKEN if raw.get("bookingType") == BookingMode.TOKEN else BookingMode.HOURLY,
        slot_duration=_clamp(raw.get("slotDuration"), MIN_SLOT_MINUTES, MAX_SLOT_MINUTES, DEFAULT_SLOT_MINUTES),
        max_tokens_per_day=_clamp(
            raw.get("maxTokensPerDay"), MIN_TOKENS_PER_DAY, MAX_TOKENS_PER_DAY, DEFAULT_TOKENS_PER_DAY
        ),
        dynamic_allocation=bool(raw.get("dynamicAllocation")),
        timezone=timezone,
        schedule=schedule,
    )


def default_settings(timezone: str) -> ConsultantSettings:
    return ConsultantSettings(
        timezone=timezone,
        schedule={name: DaySchedule.model_validate(DEFAULT_SCHEDULE[name]) for name in DAYS},
    )


def generate_slots(day: DaySchedule, slot_duration: int) -> list[str]:
    """Every ``start + k * duration`` that ends by ``end`` and misses the break."""
    if not day.enabled or not day.start or not day.end or slot_duration <= 0:
        return []
    start, end = parse_hhmm(day.start), parse_hhmm(day.end)
    has_break = bool(day.break_start and day.break_end)
    if has_break:
        break_start, break_end = parse_hhmm(day.break_start), parse_hhmm(day.break_end)

    slots: list[str] = []
    time = start
    while time + slot_duration <= end:
        overlaps_break = has_break and time < break_end and time + slot_duration > break_start
        if not overlaps_break:
            slots.append(format_hhmm(time))
        time += slot_duration
    return slots
