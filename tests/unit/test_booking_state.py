"""Unit tests for the booking dialogue state machine and button token parsing."""

from __future__ import annotations

import pytest

from conftest import FakeClock
from connectsphere.booking.state import (
    BookingStateMachine,
    CancelAction,
    ConfirmAction,
    DateAction,
    MoreDatesAction,
    SlotAction,
    UnrecognizedAction,
    is_booking_action,
    parse_action,
)
from connectsphere.core.types import BookingStep

KEY = ("tenant-a", "15550001111")


class TestTransitions:
    """Step order through a full booking."""

    def test_start_with_reason_skips_to_date(self) -> None:
        machine = BookingStateMachine()
        state = machine.start(KEY, reason="demo", name=None)
        assert state.step == BookingStep.AWAITING_DATE
        assert state.reason == "demo"

    def test_full_path_reaches_confirm(self) -> None:
        machine = BookingStateMachine()
        machine.start(KEY, reason="demo", name=None)
        machine.set_date(KEY, "2025-01-20")
        assert machine.get(KEY).step == BookingStep.AWAITING_SLOT
        machine.set_time_slot(KEY, "14:00")
        assert machine.get(KEY).step == BookingStep.AWAITING_NAME
        state = machine.set_name(KEY, "Asha")

        assert state.step == BookingStep.AWAITING_CONFIRM
        assert (state.reason, state.date, state.time_slot, state.name) == ("demo", "2025-01-20", "14:00", "Asha")

    def test_start_without_reason_asks_for_it(self) -> None:
        machine = BookingStateMachine()
        assert machine.start(KEY).step == BookingStep.AWAITING_REASON
        assert machine.set_reason(KEY, "tax filing").step == BookingStep.AWAITING_DATE

    def test_clear_returns_to_idle(self) -> None:
        machine = BookingStateMachine()
        machine.start(KEY, reason="demo")
        machine.clear(KEY)
        state = machine.get(KEY)
        assert state.step == BookingStep.IDLE
        assert not state.active

    def test_keys_are_isolated(self) -> None:
        machine = BookingStateMachine()
        machine.start(KEY, reason="demo")
        assert machine.get(("tenant-b", KEY[1])).step == BookingStep.IDLE


class TestSweep:
    """Inactive dialogues are dropped after the TTL."""

    def test_sweep_removes_only_stale_states(self) -> None:
        clock = FakeClock()
        machine = BookingStateMachine(ttl_seconds=1800, clock=clock)
        machine.start(("t", "old"), reason="x")
        clock.advance(1000)
        machine.start(("t", "new"), reason="y")
        clock.advance(900)

        assert machine.sweep_stale() == 1
        assert machine.get(("t", "old")).step == BookingStep.IDLE
        assert machine.get(("t", "new")).active

    def test_activity_refreshes_ttl(self) -> None:
        clock = FakeClock()
        machine = BookingStateMachine(ttl_seconds=1800, clock=clock)
        machine.start(KEY, reason="x")
        clock.advance(1700)
        machine.set_date(KEY, "2025-01-20")
        clock.advance(1700)
        assert machine.sweep_stale() == 0
        assert len(machine) == 1


class TestParseAction:
    """Button ids map to a closed set of actions."""

    @pytest.mark.parametrize(
        ("token", "expected"),
        [
            ("date_2025-01-20", DateAction("2025-01-20")),
            ("slot_14:00", SlotAction("14:00")),
            ("confirm_yes", ConfirmAction("yes")),
            ("cancel_booking", CancelAction("booking")),
            ("more_dates_2", MoreDatesAction(2)),
        ],
    )
    def test_known_prefixes(self, token: str, expected: object) -> None:
        assert parse_action(token) == expected

    def test_more_dates_is_not_a_date(self) -> None:
        assert not isinstance(parse_action("more_dates_1"), DateAction)

    @pytest.mark.parametrize("token", ["hello", "", None, "more_dates_x", "option_3"])
    def test_unrecognized(self, token: str | None) -> None:
        assert isinstance(parse_action(token), UnrecognizedAction)

    def test_is_booking_action(self) -> None:
        assert is_booking_action("slot_09:00")
        assert not is_booking_action("slots please")
        assert not is_booking_action(None)
