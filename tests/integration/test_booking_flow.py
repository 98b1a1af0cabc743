"""Button-driven booking dialogue end to end.

Tests cover:
  - Reason, date, slot, name and confirmation steps with buttons
  - Typed fallbacks for clients without buttons
  - Date pagination and closed-day handling
  - Cancellation and expired sessions
  - A slot taken before confirmation re-offers the remaining times
"""

from __future__ import annotations

import pytest

from conftest import MONDAY, SATURDAY, TENANT, TUESDAY, consultant_settings, incoming
from connectsphere.booking.flow import EXPIRED, NO_DATES, BookingFlow
from connectsphere.booking.service import SLOT_UNAVAILABLE, BookingRequest, SlotEngine
from connectsphere.booking.state import BookingStateMachine
from connectsphere.core.types import BookingStep

PHONE = "15550001111"


@pytest.fixture
def states() -> BookingStateMachine:
    return BookingStateMachine()


@pytest.fixture
def flow(slot_engine: SlotEngine, states: BookingStateMachine) -> BookingFlow:
    return BookingFlow(slot_engine, states, dates_per_page=3)


def _button_ids(reply) -> list[str]:
    return [b.id for b in reply.buttons]


async def _open(slot_engine: SlotEngine) -> None:
    await slot_engine.update_settings(TENANT, consultant_settings(60))


class TestHappyPath:
    @pytest.mark.asyncio
    async def test_full_dialogue_with_buttons(
        self, flow: BookingFlow, slot_engine: SlotEngine, states: BookingStateMachine
    ) -> None:
        await _open(slot_engine)

        reply = await flow.start(TENANT, PHONE)
        assert "What would you like to consult about" in reply.text

        reply = await flow.handle(incoming("PC advice"))
        assert _button_ids(reply) == [
            "date_2025-01-20",
            "date_2025-01-21",
            "date_2025-01-22",
            "more_dates_1",
        ]
        assert reply.buttons[0].title == "Mon, 20 Jan (7 slots)"

        reply = await flow.handle(incoming("Mon, 20 Jan", button_id=f"date_{MONDAY}"))
        assert _button_ids(reply)[0] == "slot_09:00"
        assert "slot_14:00" in _button_ids(reply)

        reply = await flow.handle(incoming("14:00", button_id="slot_14:00"))
        assert "your name" in reply.text

        reply = await flow.handle(incoming("Asha"))
        assert "Asha" in reply.text and "PC advice" in reply.text
        assert _button_ids(reply) == ["confirm_yes", "cancel_booking"]

        reply = await flow.handle(incoming("Confirm", button_id="confirm_yes"))
        assert "Token #1" in reply.text
        assert not flow.in_progress(TENANT, PHONE)

        [booking] = await slot_engine.get_bookings(TENANT)
        assert (booking.phone, booking.name, booking.reason) == (PHONE, "Asha", "PC advice")
        assert (booking.date, booking.time_slot, booking.status) == (MONDAY, "14:00", "pending")

    @pytest.mark.asyncio
    async def test_typed_fallbacks(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")

        reply = await flow.handle(incoming(TUESDAY))
        assert "Available times" in reply.text
        reply = await flow.handle(incoming("9:00"))
        assert "your name" in reply.text
        await flow.handle(incoming("Ravi"))
        reply = await flow.handle(incoming("yes"))

        assert "Token #1" in reply.text
        [booking] = await slot_engine.get_bookings(TENANT)
        assert (booking.date, booking.time_slot, booking.name) == (TUESDAY, "09:00", "Ravi")

    @pytest.mark.asyncio
    async def test_known_name_skips_name_step(
        self, flow: BookingFlow, slot_engine: SlotEngine, states: BookingStateMachine
    ) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair", name="Asha")
        await flow.handle(incoming(button_id=f"date_{MONDAY}"))

        reply = await flow.handle(incoming(button_id="slot_10:00"))

        assert reply.text.startswith("Please confirm your booking")
        assert states.get((TENANT, PHONE)).step == BookingStep.AWAITING_CONFIRM


class TestDates:
    @pytest.mark.asyncio
    async def test_more_dates_pages_forward(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")

        reply = await flow.handle(incoming("More dates", button_id="more_dates_1"))

        # Weekend is closed, so the second page runs into next week
        assert _button_ids(reply) == ["date_2025-01-23", "date_2025-01-24", "date_2025-01-27", "more_dates_2"]

    @pytest.mark.asyncio
    async def test_closed_day_reoffers_dates(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")

        reply = await flow.handle(incoming(button_id=f"date_{SATURDAY}"))

        assert reply.text.startswith("Not available on Saturday for 2025-01-25.")
        assert _button_ids(reply)[0] == "date_2025-01-20"

    @pytest.mark.asyncio
    async def test_free_text_asks_for_a_date(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")
        reply = await flow.handle(incoming("whenever"))
        assert reply.text.startswith("Please pick a date from the list.")

    @pytest.mark.asyncio
    async def test_impossible_typed_date(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")
        reply = await flow.handle(incoming("2025-13-45"))
        assert reply.text.startswith("That doesn't look like a valid date.")

    @pytest.mark.asyncio
    async def test_no_dates_ends_dialogue(self, flow: BookingFlow) -> None:
        reply = await flow.start(TENANT, PHONE, reason="Repair")
        assert reply.text == NO_DATES
        assert not flow.in_progress(TENANT, PHONE)


class TestCancelAndExpiry:
    @pytest.mark.asyncio
    @pytest.mark.parametrize("message", [incoming("cancel"), incoming("Cancel", button_id="cancel_booking")])
    async def test_cancel_clears_state(self, flow: BookingFlow, slot_engine: SlotEngine, message) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")

        reply = await flow.handle(message)

        assert reply.text.startswith("Booking cancelled")
        assert not flow.in_progress(TENANT, PHONE)

    @pytest.mark.asyncio
    async def test_stale_button_after_expiry(self, flow: BookingFlow) -> None:
        reply = await flow.handle(incoming(button_id="slot_10:00"))
        assert reply.text == EXPIRED

    @pytest.mark.asyncio
    async def test_ordinary_text_is_not_for_the_flow(self, flow: BookingFlow) -> None:
        message = incoming("what are your hours?")
        assert not flow.wants(message)
        assert await flow.handle(message) is None

    @pytest.mark.asyncio
    async def test_button_tokens_are_wanted(self, flow: BookingFlow) -> None:
        assert flow.wants(incoming(button_id="date_2025-01-20"))
        assert flow.wants(incoming("more_dates_2"))


class TestConflicts:
    @pytest.mark.asyncio
    async def test_slot_taken_before_confirm(
        self, flow: BookingFlow, slot_engine: SlotEngine, states: BookingStateMachine
    ) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair", name="Asha")
        await flow.handle(incoming(button_id=f"date_{MONDAY}"))
        await flow.handle(incoming(button_id="slot_14:00"))

        taken = await slot_engine.create_booking(TENANT, BookingRequest("999", MONDAY, "14:00"))
        assert taken.success

        reply = await flow.handle(incoming(button_id="confirm_yes"))

        assert reply.text.startswith(SLOT_UNAVAILABLE)
        assert "slot_14:00" not in _button_ids(reply)
        assert "slot_15:00" in _button_ids(reply)
        state = states.get((TENANT, PHONE))
        assert state.step == BookingStep.AWAITING_SLOT and state.date == MONDAY

    @pytest.mark.asyncio
    async def test_taken_slot_pick_reoffers_times(self, flow: BookingFlow, slot_engine: SlotEngine) -> None:
        await _open(slot_engine)
        await flow.start(TENANT, PHONE, reason="Repair")
        await flow.handle(incoming(button_id=f"date_{MONDAY}"))
        await slot_engine.create_booking(TENANT, BookingRequest("999", MONDAY, "10:00"))

        reply = await flow.handle(incoming(button_id="slot_10:00"))

        assert reply.text.startswith("Please pick one of these times.")
        assert "slot_10:00" not in _button_ids(reply)
