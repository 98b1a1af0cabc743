"""Per-conversation booking dialogue state and button token parsing."""

from __future__ import annotations

import time
from dataclasses import dataclass, field, replace
from typing import Callable, Optional, Union

from connectsphere.core.types import BookingStep
from connectsphere.log import get_logger

logger = get_logger(__name__)

StateKey = tuple[str, str]  # (tenant_id, counterparty)


@dataclass(frozen=True)
class BookingState:
    step: BookingStep = BookingStep.IDLE
    reason: Optional[str] = None
    date: Optional[str] = None
    time_slot: Optional[str] = None
    name: Optional[str] = None
    updated_at: float = 0.0

    @property
    def active(self) -> bool:
        return self.step != BookingStep.IDLE


class BookingStateMachine:
    """Tracks where each counterparty is in the booking dialogue.

    Values are not validated here; the slot engine owns that. State lives in
    process memory only and is dropped after ``ttl_seconds`` of inactivity.
    """

    def __init__(self, ttl_seconds: float = 30 * 60, clock: Callable[[], float] = time.monotonic):
        self._ttl = ttl_seconds
        self._clock = clock
        self._states: dict[StateKey, BookingState] = {}

    def get(self, key: StateKey) -> BookingState:
        return self._states.get(key) or BookingState()

    def start(self, key: StateKey, reason: Optional[str] = None, name: Optional[str] = None) -> BookingState:
        # A known reason skips straight to date selection; the name is asked
        # for after the slot unless already known.
        step = BookingStep.AWAITING_DATE if reason else BookingStep.AWAITING_REASON
        return self._put(key, BookingState(step=step, reason=reason, name=name))

    def set_reason(self, key: StateKey, reason: str) -> BookingState:
        return self._transition(key, BookingStep.AWAITING_DATE, reason=reason)

    def set_date(self, key: StateKey, date: str) -> BookingState:
        return self._transition(key, BookingStep.AWAITING_SLOT, date=date)

    def set_time_slot(self, key: StateKey, time_slot: str) -> BookingState:
        return self._transition(key, BookingStep.AWAITING_NAME, time_slot=time_slot)

    def set_name(self, key: StateKey, name: str) -> BookingState:
        return self._transition(key, BookingStep.AWAITING_CONFIRM, name=name)

    def clear(self, key: StateKey) -> None:
        self._states.pop(key, None)

    def sweep_stale(self) -> int:
        cutoff = self._clock() - self._ttl
        stale = [k for k, s in self._states.items() if s.updated_at < cutoff]
        for k in stale:
            del self._states[k]
        if stale:
            logger.debug("booking_states_swept", removed=len(stale), remaining=len(self._states))
        return len(stale)

    def __len__(self) -> int:
        return len(self._states)

    def _transition(self, key: StateKey, step: BookingStep, **fields) -> BookingState:
        return self._put(key, replace(self.get(key), step=step, **fields))

    def _put(self, key: StateKey, state: BookingState) -> BookingState:
        state = replace(state, updated_at=self._clock())
        self._states[key] = state
        return state


# -- button tokens -------------------------------------------------------------


@dataclass(frozen=True)
class DateAction:
    value: str


@dataclass(frozen=True)
class SlotAction:
    value: str


@dataclass(frozen=True)
class ConfirmAction:
    value: str


@dataclass(frozen=True)
class CancelAction:
    value: str


@dataclass(frozen=True)
class MoreDatesAction:
    page: int


@dataclass(frozen=True)
class UnrecognizedAction:
    token: str = field(default="")


BookingAction = Union[DateAction, SlotAction, ConfirmAction, CancelAction, MoreDatesAction, UnrecognizedAction]

# more_dates_ first: it must not be read as anything else.
ACTION_PREFIXES = ("more_dates_", "date_", "slot_", "confirm_", "cancel_")


def is_booking_action(token: Optional[str]) -> bool:
    return bool(token) and token.startswith(ACTION_PREFIXES)


def parse_action(token: Optional[str]) -> BookingAction:
    if not is_booking_action(token):
        return UnrecognizedAction(token or "")
    if token.startswith("more_dates_"):
        page = token[len("more_dates_") :]
        return MoreDatesAction(int(page)) if page.isdigit() else UnrecognizedAction(token)
    prefix, _, value = token.partition("_")
    match prefix:
        case "date":
            return DateAction(value)
        case "slot":
            return SlotAction(value)
        case "confirm":
            return ConfirmAction(value)
        case "cancel":
            return CancelAction(value)
    return UnrecognizedAction(token)
