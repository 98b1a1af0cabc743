"""Unit tests for slot generation and consultant settings normalization."""

from __future__ import annotations

import itertools
from datetime import date

import pytest

from connectsphere.booking.slots import (
    DAYS,
    DEFAULT_SLOT_MINUTES,
    MAX_SLOT_MINUTES,
    MIN_SLOT_MINUTES,
    DaySchedule,
    day_name,
    default_settings,
    generate_slots,
    sanitize_settings,
)
from connectsphere.core.errors import ValidationError
from connectsphere.core.timeutil import parse_hhmm
from connectsphere.core.types import BookingMode


def _day(start="09:00", end="17:00", break_start="12:00", break_end="13:00") -> DaySchedule:
    return DaySchedule(enabled=True, start=start, end=end, break_start=break_start, break_end=break_end)


class TestGenerateSlots:
    """Slots start on the grid, end by closing time and avoid the break."""

    def test_hourly_monday_example(self) -> None:
        assert generate_slots(_day(), 60) == ["09:00", "10:00", "11:00", "13:00", "14:00", "15:00", "16:00"]

    def test_half_hour_slots_skip_break(self) -> None:
        slots = generate_slots(_day(), 30)
        assert "11:30" in slots
        assert "12:00" not in slots and "12:30" not in slots
        assert slots[-1] == "16:30"
        assert len(slots) == 14

    def test_slot_straddling_break_start_is_dropped(self) -> None:
        # 11:15-12:00 ends as the break starts; 12:45-13:30 overlaps it
        slots = generate_slots(_day(start="09:00", end="14:00"), 45)
        assert slots == ["09:00", "09:45", "10:30", "11:15"]

    def test_disabled_day_has_no_slots(self) -> None:
        assert generate_slots(DaySchedule(enabled=False, start="09:00", end="17:00"), 30) == []

    def test_no_break(self) -> None:
        slots = generate_slots(_day(start="10:00", end="12:00", break_start=None, break_end=None), 30)
        assert slots == ["10:00", "10:30", "11:00", "11:30"]

    @pytest.mark.parametrize(
        ("start", "end", "breaks", "duration"),
        list(
            itertools.product(
                ["08:00", "09:15"],
                ["13:00", "17:45"],
                [("11:00", "12:00"), ("12:10", "12:50")],
                [15, 25, 45, 60, 90, 120],
            )
        ),
    )
    def test_never_overlaps_break_or_runs_past_end(self, start, end, breaks, duration) -> None:
        break_start, break_end = breaks
        day = _day(start, end, break_start, break_end)
        b_start, b_end, close = parse_hhmm(break_start), parse_hhmm(break_end), parse_hhmm(end)
        for slot in generate_slots(day, duration):
            begin = parse_hhmm(slot)
            assert begin + duration <= close
            assert begin + duration <= b_start or begin >= b_end


class TestSanitizeSettings:
    """Untrusted settings are clamped or rejected."""

    def test_defaults_for_missing_fields(self) -> None:
        settings = sanitize_settings({}, "Asia/Kolkata")
        assert settings.enabled is False
        assert settings.booking_mode == BookingMode.HOURLY
        assert settings.slot_duration == DEFAULT_SLOT_MINUTES
        assert set(settings.schedule) == set(DAYS)
        assert settings.day("monday").enabled
        assert not settings.day("sunday").enabled

    @pytest.mark.parametrize(("raw", "expected"), [(5, MIN_SLOT_MINUTES), (500, MAX_SLOT_MINUTES), ("45", 45), ("x", 30)])
    def test_slot_duration_clamped(self, raw, expected) -> None:
        assert sanitize_settings({"slotDuration": raw}, "UTC").slot_duration == expected

    def test_tokens_per_day_clamped(self) -> None:
        assert sanitize_settings({"maxTokensPerDay": 0}, "UTC").max_tokens_per_day == 1
        assert sanitize_settings({"maxTokensPerDay": 9999}, "UTC").max_tokens_per_day == 500

    def test_timezone_is_forced(self) -> None:
        assert sanitize_settings({"timezone": "America/New_York"}, "Asia/Kolkata").timezone == "Asia/Kolkata"

    def test_token_mode(self) -> None:
        assert sanitize_settings({"bookingType": "token"}, "UTC").booking_mode == BookingMode.TOKEN
        assert sanitize_settings({"bookingType": "bogus"}, "UTC").booking_mode == BookingMode.HOURLY

    def test_inverted_hours_rejected(self) -> None:
        raw = {"schedule": {"monday": {"enabled": True, "start": "17:00", "end": "09:00"}}}
        with pytest.raises(ValidationError):
            sanitize_settings(raw, "UTC")

    def test_inverted_break_rejected(self) -> None:
        raw = {
            "schedule": {
                "monday": {"enabled": True, "start": "09:00", "end": "17:00", "breakStart": "14:00", "breakEnd": "13:00"}
            }
        }
        with pytest.raises(ValidationError):
            sanitize_settings(raw, "UTC")

    def test_malformed_time_rejected(self) -> None:
        raw = {"schedule": {"monday": {"enabled": True, "start": "9am", "end": "17:00"}}}
        with pytest.raises(ValidationError):
            sanitize_settings(raw, "UTC")

    def test_disabled_day_stores_nulls(self) -> None:
        raw = {"schedule": {"monday": {"enabled": False, "start": "17:00", "end": "09:00"}}}
        monday = sanitize_settings(raw, "UTC").day("monday")
        assert monday == DaySchedule(enabled=False)

    def test_explicit_null_break_means_no_break(self) -> None:
        raw = {
            "schedule": {"monday": {"enabled": True, "start": "09:00", "end": "12:00", "breakStart": None, "breakEnd": None}}
        }
        monday = sanitize_settings(raw, "UTC").day("monday")
        assert monday.break_start is None and monday.break_end is None

    def test_missing_times_fall_back_to_defaults(self) -> None:
        monday = sanitize_settings({"schedule": {"monday": {"enabled": True}}}, "UTC").day("monday")
        assert (monday.start, monday.end, monday.break_start) == ("09:00", "17:00", "12:00")

    def test_document_round_trip_uses_stored_field_names(self) -> None:
        doc = default_settings("UTC").to_document()
        assert doc["bookingType"] == "hourly"
        assert doc["schedule"]["monday"]["breakStart"] == "12:00"
        assert "slotDuration" in doc


def test_day_name() -> None:
    assert day_name(date(2025, 1, 20)) == "monday"
    assert day_name(date(2025, 1, 26)) == "sunday"
