"""Booking tools bound to one tenant and one customer for a single request."""

from __future__ import annotations

import json
from dataclasses import asdict
from typing import Any, Optional

from connectsphere.ai.tools.base import Tool
from connectsphere.ai.tools.registry import ToolRegistry
from connectsphere.booking.service import BookingRequest, SlotEngine
from connectsphere.core.errors import ValidationError
from connectsphere.log import get_logger

logger = get_logger(__name__)


class GetAvailableSlotsTool(Tool):
    def __init__(self, slots: SlotEngine, tenant_id: str):
        self._slots = slots
        self._tenant_id = tenant_id

    @property
    def name(self) -> str:
        return "get_available_slots"

    @property
    def description(self) -> str:
        return (
            "Get available time slots for a specific date. "
            "Call this when the user wants to see available times for booking."
        )

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format (e.g., 2026-01-27)"},
            },
            "required": ["date"],
        }

    async def execute(self, **kwargs: Any) -> str:
        try:
            availability = await self._slots.get_available_slots(self._tenant_id, str(kwargs.get("date", "")))
        except ValidationError as e:
            return json.dumps({"available": False, "error": str(e)})
        return json.dumps(asdict(availability))


class CreateBookingTool(Tool):
    """The phone number always comes from the channel, never from the model."""

    def __init__(self, slots: SlotEngine, tenant_id: str, phone: str, sender_name: Optional[str] = None):
        self._slots = slots
        self._tenant_id = tenant_id
        self._phone = phone
        self._sender_name = sender_name

    @property
    def name(self) -> str:
        return "create_booking"

    @property
    def description(self) -> str:
        return "Create a consultation booking. Call this when the user confirms a specific time slot."

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "date": {"type": "string", "description": "Date in YYYY-MM-DD format"},
                "timeSlot": {"type": "string", "description": "Time slot in HH:MM format (e.g., 14:00)"},
                "name": {"type": "string", "description": "Customer name for booking"},
                "reason": {"type": "string", "description": "Reason for consultation"},
            },
            "required": ["date", "timeSlot", "name", "reason"],
        }

    async def execute(self, **kwargs: Any) -> str:
        name = kwargs.get("name") or self._sender_name
        reason = kwargs.get("reason")
        missing = [field for field, value in (("name", name), ("reason", reason)) if not value]
        if missing:
            return json.dumps(
                {"success": False, "missingFields": missing, "message": "Missing required booking details"}
            )

        result = await self._slots.create_booking(
            self._tenant_id,
            BookingRequest(
                phone=self._phone,
                date=str(kwargs.get("date", "")),
                time_slot=str(kwargs.get("timeSlot", "")),
                name=name,
                reason=reason,
            ),
        )
        return json.dumps(
            {
                "success": result.success,
                "bookingId": result.booking_id,
                "tokenNumber": result.token_number,
                "error": result.error,
            }
        )


class GetNextAvailableDatesTool(Tool):
    def __init__(self, slots: SlotEngine, tenant_id: str):
        self._slots = slots
        self._tenant_id = tenant_id

    @property
    def name(self) -> str:
        return "get_next_available_dates"

    @property
    def description(self) -> str:
        return "Get the next available dates for booking consultations"

    @property
    def input_schema(self) -> dict[str, Any]:
        return {
            "type": "object",
            "properties": {
                "count": {"type": "integer", "description": "Number of dates to return (default 5)"},
            },
        }

    async def execute(self, **kwargs: Any) -> str:
        try:
            count = int(kwargs.get("count") or 5)
        except (TypeError, ValueError):
            count = 5
        dates = await self._slots.get_next_available_dates(self._tenant_id, count=max(1, count))
        return json.dumps([asdict(d) for d in dates])


def booking_tools(
    slots: SlotEngine, tenant_id: str, phone: str, sender_name: Optional[str] = None
) -> ToolRegistry:
    return ToolRegistry(
        [
            GetAvailableSlotsTool(slots, tenant_id),
            CreateBookingTool(slots, tenant_id, phone, sender_name),
            GetNextAvailableDatesTool(slots, tenant_id),
        ]
    )
