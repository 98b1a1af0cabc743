"""Button-driven booking dialogue over a chat channel.

The state machine only tracks position; this module turns each step into a
prompt with quick-reply buttons and validates input against the slot engine.
Typed fallbacks (``2025-01-20``, ``14:00``, ``yes``/``no``) are accepted for
clients that cannot render buttons.
"""

from __future__ import annotations

import re
from datetime import date
from typing import Optional

from connectsphere.booking.service import BookingRequest, SlotEngine
from connectsphere.booking.state import (
    BookingState,
    BookingStateMachine,
    CancelAction,
    ConfirmAction,
    DateAction,
    MoreDatesAction,
    SlotAction,
    StateKey,
    UnrecognizedAction,
    is_booking_action,
    parse_action,
)
from connectsphere.core.errors import ValidationError
from connectsphere.core.timeutil import parse_calendar_date
from connectsphere.core.types import BookingStep
from connectsphere.log import get_logger
from connectsphere.messenger.models import Button, IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

# List messages render at most ten rows.
MAX_SLOT_BUTTONS = 10

_TYPED_DATE = re.compile(r"^\d{4}-\d{2}-\d{2}$")
_TYPED_TIME = re.compile(r"^\d{1,2}:\d{2}$")
_YES = re.compile(r"^(yes|y|yeah|yep|confirm|ok|okay|sure)[\s!.]*$", re.I)
_NO = re.compile(r"^(no|n|nope|cancel|stop)[\s!.]*$", re.I)

NO_DATES = "Sorry, there are no available dates in the next two weeks. Please check back later."
EXPIRED = "That booking session has expired. Just say you'd like to book and we'll start again."


class BookingFlow:
    def __init__(self, slots: SlotEngine, states: BookingStateMachine, dates_per_page: int = 3):
        self._slots = slots
        self._states = states
        self._dates_per_page = dates_per_page

    def in_progress(self, tenant_id: str, sender_id: str) -> bool:
        return self._states.get((tenant_id, sender_id)).active

    def wants(self, message: IncomingMessage) -> bool:
        """True when this message belongs to the booking dialogue."""
        token = message.button_id or message.text.strip()
        return is_booking_action(token) or self.in_progress(message.tenant_id, message.sender_id)

    async def start(
        self,
        tenant_id: str,
        sender_id: str,
        reason: Optional[str] = None,
        name: Optional[str] = None,
    ) -> OutgoingMessage:
        key = (tenant_id, sender_id)
        state = self._states.start(key, reason=reason, name=name or None)
        logger.info("booking_flow_started", tenant_id=tenant_id, step=state.step.value)
        if state.step == BookingStep.AWAITING_REASON:
            return OutgoingMessage(sender_id, "Sure! What would you like to consult about?")
        return await self._date_prompt(key, sender_id, page=0)

    async def handle(self, message: IncomingMessage) -> Optional[OutgoingMessage]:
        """Advance the dialogue; None when the message is not for the booking flow."""
        key = (message.tenant_id, message.sender_id)
        token = message.button_id or message.text.strip()
        state = self._states.get(key)
        action = parse_action(token)

        if isinstance(action, UnrecognizedAction) and not state.active:
            return None
        if isinstance(action, CancelAction) or (not isinstance(action, ConfirmAction) and _NO.match(token)):
            self._states.clear(key)
            logger.info("booking_flow_cancelled", tenant_id=message.tenant_id)
            return OutgoingMessage(message.sender_id, "Booking cancelled. Let me know if you need anything else.")
        if not state.active:
            return OutgoingMessage(message.sender_id, EXPIRED)

        match state.step:
            case BookingStep.AWAITING_REASON:
                self._states.set_reason(key, token)
                return await self._date_prompt(key, message.sender_id, page=0)
            case BookingStep.AWAITING_DATE:
                return await self._on_date(key, message.sender_id, action, token)
            case BookingStep.AWAITING_SLOT:
                return await self._on_slot(key, message.sender_id, state, action, token)
            case BookingStep.AWAITING_NAME:
                state = self._states.set_name(key, token)
                return self._confirm_prompt(message.sender_id, state)
            case BookingStep.AWAITING_CONFIRM:
                if isinstance(action, ConfirmAction) or _YES.match(token):
                    return await self._confirm(key, message.sender_id, state)
                return self._confirm_prompt(message.sender_id, state)
        return None

    # -- steps -----------------------------------------------------------------

    async def _on_date(self, key: StateKey, sender_id: str, action, token: str) -> OutgoingMessage:
        if isinstance(action, MoreDatesAction):
            return await self._date_prompt(key, sender_id, page=action.page)

        if isinstance(action, DateAction):
            chosen = action.value
        elif _TYPED_DATE.match(token):
            chosen = token
        else:
            return await self._date_prompt(key, sender_id, page=0, note="Please pick a date from the list.")

        try:
            chosen = parse_calendar_date(chosen).isoformat()
            availability = await self._slots.get_available_slots(key[0], chosen)
        except ValidationError:
            return await self._date_prompt(key, sender_id, page=0, note="That doesn't look like a valid date.")

        if not availability.available:
            note = f"{availability.reason or 'No slots available'} for {chosen}."
            return await self._date_prompt(key, sender_id, page=0, note=note)

        self._states.set_date(key, chosen)
        return self._slot_prompt(sender_id, chosen, availability.slots)

    async def _on_slot(
        self, key: StateKey, sender_id: str, state: BookingState, action, token: str
    ) -> OutgoingMessage:
        if isinstance(action, DateAction):
            # A date button from an earlier prompt: switch days
            return await self._on_date(key, sender_id, action, token)

        if isinstance(action, SlotAction):
            chosen = action.value
        elif _TYPED_TIME.match(token):
            chosen = token.zfill(5)
        else:
            chosen = ""

        availability = await self._slots.get_available_slots(key[0], state.date)
        if chosen not in availability.slots:
            if not availability.available:
                return await self._date_prompt(
                    key, sender_id, page=0, note=f"No slots are left on {state.date}."
                )
            return self._slot_prompt(sender_id, state.date, availability.slots, note="Please pick one of these times.")

        state = self._states.set_time_slot(key, chosen)
        if state.name:
            state = self._states.set_name(key, state.name)
            return self._confirm_prompt(sender_id, state)
        return OutgoingMessage(sender_id, "Great choice! May I have your name for the booking?")

    async def _confirm(self, key: StateKey, sender_id: str, state: BookingState) -> OutgoingMessage:
        tenant_id = key[0]
        result = await self._slots.create_booking(
            tenant_id,
            BookingRequest(
                phone=sender_id,
                date=state.date,
                time_slot=state.time_slot,
                name=state.name,
                reason=state.reason,
            ),
        )
        if result.success:
            self._states.clear(key)
            return OutgoingMessage(
                sender_id,
                f"Your booking request is in! 🎫 Token #{result.token_number}\n"
                f"📅 {state.date} at {state.time_slot}\n"
                "You'll get a confirmation message once it's approved.",
            )

        # Someone else took the slot: offer the remaining times for the same day
        self._states.set_date(key, state.date)
        availability = await self._slots.get_available_slots(tenant_id, state.date)
        if not availability.available:
            return await self._date_prompt(key, sender_id, page=0, note=result.error)
        return self._slot_prompt(sender_id, state.date, availability.slots, note=result.error)

    # -- prompts -----------------------------------------------------------------

    async def _date_prompt(
        self, key: StateKey, sender_id: str, page: int, note: Optional[str] = None
    ) -> OutgoingMessage:
        per_page = self._dates_per_page
        # One extra to know whether a further page exists
        dates = await self._slots.get_next_available_dates(key[0], count=(page + 1) * per_page + 1)
        if not dates:
            self._states.clear(key)
            return OutgoingMessage(sender_id, _join(note, NO_DATES))

        page_dates = dates[page * per_page : (page + 1) * per_page]
        if not page_dates:
            page, page_dates = 0, dates[:per_page]

        buttons = [
            Button(f"date_{d.date}", f"{_short_date(d.date)} ({d.available_slots} slots)") for d in page_dates
        ]
        if len(dates) > (page + 1) * per_page:
            buttons.append(Button(f"more_dates_{page + 1}", "More dates"))
        return OutgoingMessage(sender_id, _join(note, "📅 Please choose a date:"), buttons=buttons)

    def _slot_prompt(
        self, sender_id: str, date_str: str, slots: list[str], note: Optional[str] = None
    ) -> OutgoingMessage:
        buttons = [Button(f"slot_{s}", s) for s in slots[:MAX_SLOT_BUTTONS]]
        return OutgoingMessage(
            sender_id, _join(note, f"⏰ Available times on {_short_date(date_str)}:"), buttons=buttons
        )

    def _confirm_prompt(self, sender_id: str, state: BookingState) -> OutgoingMessage:
        text = (
            "Please confirm your booking:\n"
            f"👤 {state.name}\n"
            f"📝 {state.reason or 'Not specified'}\n"
            f"📅 {state.date} at {state.time_slot}"
        )
        return OutgoingMessage(
            sender_id,
            text,
            buttons=[Button("confirm_yes", "Confirm"), Button("cancel_booking", "Cancel")],
        )


def _short_date(value: str) -> str:
    return date.fromisoformat(value).strftime("%a, %d %b")


def _join(note: Optional[str], text: str) -> str:
    return f"{note}\n\n{text}" if note else text
