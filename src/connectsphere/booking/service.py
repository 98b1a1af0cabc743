"""Slot availability and booking persistence for consultant tenants."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Any, Callable, Optional
from zoneinfo import ZoneInfo

from connectsphere.booking.slots import (
    ConsultantSettings,
    day_name,
    default_settings,
    generate_slots,
    sanitize_settings,
)
from connectsphere.core.cache import TTLCache
from connectsphere.core.errors import ValidationError
from connectsphere.core.timeutil import parse_calendar_date, parse_hhmm
from connectsphere.core.types import ACTIVE_BOOKING_STATUSES, BookingMode, BookingStatus
from connectsphere.log import get_logger
from connectsphere.storage import paths
from connectsphere.storage.document_store import SERVER_TIMESTAMP, Document, DocumentStore, Transaction
from connectsphere.storage.models import Booking

logger = get_logger(__name__)

SLOT_UNAVAILABLE = "This time slot is no longer available. Please choose another."
SLOT_TAKEN = "This slot was just booked. Please select another time."
DAY_FULL = "All tokens for this date have been issued. Please choose another date."
BOOKING_FAILED = "Failed to create booking. Please try again."


@dataclass
class SlotAvailability:
    available: bool
    slots: list[str] = field(default_factory=list)
    reason: Optional[str] = None
    total_slots: int = 0
    booked_count: int = 0


@dataclass
class AvailableDate:
    date: str
    day_name: str
    available_slots: int


@dataclass
class BookingRequest:
    phone: str
    date: str
    time_slot: str
    name: Optional[str] = None
    reason: Optional[str] = None


@dataclass
class BookingResult:
    success: bool
    booking_id: Optional[str] = None
    token_number: Optional[int] = None
    error: Optional[str] = None


class SlotEngine:
    """Generates bookable slots and records bookings.

    ``now`` returns the current moment; it is converted to the configured
    timezone, which defines "today" for every tenant.
    """

    def __init__(
        self,
        store: DocumentStore,
        cache: TTLCache,
        timezone: str = "Asia/Kolkata",
        min_lead_minutes: int = 30,
        scan_days: int = 14,
        now: Optional[Callable[[], datetime]] = None,
    ):
        self._store = store
        self._cache = cache
        self._timezone = timezone
        self._tz = ZoneInfo(timezone)
        self._min_lead_minutes = min_lead_minutes
        self._scan_days = scan_days
        self._now = now or (lambda: datetime.now(self._tz))

    @property
    def timezone(self) -> str:
        return self._timezone

    def local_now(self) -> datetime:
        return self._now().astimezone(self._tz)

    # -- settings ------------------------------------------------------------

    async def get_settings(self, tenant_id: str) -> ConsultantSettings:
        return await self._cache.get_or_load("consultant", tenant_id, lambda: self._load_settings(tenant_id))

    async def _load_settings(self, tenant_id: str) -> ConsultantSettings:
        data = await self._store.get(paths.settings(tenant_id, "consultant"))
        if not data:
            return default_settings(self._timezone)
        settings = ConsultantSettings.model_validate(data)
        settings.timezone = self._timezone
        return settings

    async def update_settings(self, tenant_id: str, raw: dict[str, Any]) -> ConsultantSettings:
        """Validate and store consultant settings; raises ValidationError on bad bounds."""
        settings = sanitize_settings(raw, self._timezone)
        await self._store.set(
            paths.settings(tenant_id, "consultant"),
            {**settings.to_document(), "updatedAt": SERVER_TIMESTAMP},
            merge=True,
        )
        self._cache.invalidate(f"consultant:{tenant_id}")
        logger.info(
            "consultant_settings_updated",
            tenant_id=tenant_id,
            enabled=settings.enabled,
            booking_mode=settings.booking_mode.value,
        )
        return settings

    # -- availability ----------------------------------------------------------

    async def get_available_slots(self, tenant_id: str, date_str: str) -> SlotAvailability:
        settings = await self.get_settings(tenant_id)
        if not settings.enabled:
            return SlotAvailability(False, reason="Booking is not enabled")

        target = parse_calendar_date(date_str)
        name = day_name(target)
        day = settings.day(name)
        if not day.enabled:
            return SlotAvailability(False, reason=f"Not available on {name.capitalize()}")

        now = self.local_now()
        today = now.date()
        if target < today:
            return SlotAvailability(False, reason="Cannot book past dates")

        all_slots = generate_slots(day, settings.slot_duration)
        booked = await self._store.query(
            paths.bookings(tenant_id),
            [("date", "==", target.isoformat()), ("status", "in", ACTIVE_BOOKING_STATUSES)],
        )
        taken = {doc.get("timeSlot") for doc in booked}
        free = [slot for slot in all_slots if slot not in taken]

        if target == today:
            threshold = now.hour * 60 + now.minute + self._min_lead_minutes
            free = [slot for slot in free if parse_hhmm(slot) > threshold]

        return SlotAvailability(
            available=bool(free),
            slots=free,
            reason=None if free else "No slots available",
            total_slots=len(all_slots),
            booked_count=len(booked),
        )

    async def get_next_available_dates(self, tenant_id: str, count: int = 5) -> list[AvailableDate]:
        settings = await self.get_settings(tenant_id)
        if not settings.enabled:
            return []

        today = self.local_now().date()
        found: list[AvailableDate] = []
        for offset in range(self._scan_days):
            if len(found) >= count:
                break
            candidate: date = today + timedelta(days=offset)
            availability = await self.get_available_slots(tenant_id, candidate.isoformat())
            if availability.available:
                found.append(AvailableDate(candidate.isoformat(), day_name(candidate), len(availability.slots)))
        return found

    # -- bookings ----------------------------------------------------------------

    async def create_booking(self, tenant_id: str, request: BookingRequest) -> BookingResult:
        """Book a slot; conflicts come back as a failed result, never an exception.

        The availability check is repeated so a stale offer is rejected with a
        clear message. The authoritative conflict check, the token count and the
        insert run in one store transaction, so two concurrent requests for the
        same slot cannot both succeed.
        """
        try:
            availability = await self.get_available_slots(tenant_id, request.date)
        except ValidationError as e:
            return BookingResult(False, error=str(e))
        except Exception as e:
            logger.error("booking_availability_failed", tenant_id=tenant_id, error=str(e))
            return BookingResult(False, error=BOOKING_FAILED)

        if request.time_slot not in availability.slots:
            return BookingResult(False, error=SLOT_UNAVAILABLE)

        settings = await self.get_settings(tenant_id)
        collection = paths.bookings(tenant_id)
        date_key = parse_calendar_date(request.date).isoformat()

        async def _insert(txn: Transaction) -> BookingResult:
            conflicts = await txn.query(
                collection,
                [
                    ("date", "==", date_key),
                    ("timeSlot", "==", request.time_slot),
                    ("status", "in", ACTIVE_BOOKING_STATUSES),
                ],
                limit=1,
            )
            if conflicts:
                return BookingResult(False, error=SLOT_TAKEN)

            same_day = await txn.query(collection, [("date", "==", date_key)])
            if settings.booking_mode == BookingMode.TOKEN:
                active = sum(1 for doc in same_day if doc.get("status") in ACTIVE_BOOKING_STATUSES)
                if active >= settings.max_tokens_per_day:
                    return BookingResult(False, error=DAY_FULL)

            token_number = len(same_day) + 1
            booking_id = await txn.add(
                collection,
                {
                    "phone": request.phone,
                    "name": request.name or "Unknown",
                    "reason": request.reason or "Not specified",
                    "date": date_key,
                    "timeSlot": request.time_slot,
                    "tokenNumber": token_number,
                    "status": BookingStatus.PENDING.value,
                    "createdAt": SERVER_TIMESTAMP,
                },
            )
            return BookingResult(True, booking_id=booking_id, token_number=token_number)

        try:
            result = await self._store.transaction(_insert)
        except Exception as e:
            logger.error("booking_create_failed", tenant_id=tenant_id, error=str(e))
            return BookingResult(False, error=BOOKING_FAILED)

        if result.success:
            logger.info(
                "booking_created",
                tenant_id=tenant_id,
                booking_id=result.booking_id,
                date=date_key,
                time_slot=request.time_slot,
                token_number=result.token_number,
            )
        else:
            logger.info("booking_conflict", tenant_id=tenant_id, date=date_key, time_slot=request.time_slot)
        return result

    async def update_booking_status(
        self, tenant_id: str, booking_id: str, status: str, note: Optional[str] = None
    ) -> Booking:
        try:
            new_status = BookingStatus(status)
        except ValueError:
            raise ValidationError(f"Invalid booking status: {status!r}") from None

        update: dict[str, Any] = {"status": new_status.value, "updatedAt": SERVER_TIMESTAMP}
        if new_status == BookingStatus.CONFIRMED:
            update["confirmedAt"] = SERVER_TIMESTAMP
        if note:
            update["staffNote"] = note

        path = paths.booking(tenant_id, booking_id)
        await self._store.update(path, update)
        data = await self._store.get(path) or {}
        logger.info("booking_status_updated", tenant_id=tenant_id, booking_id=booking_id, status=new_status.value)
        return Booking.from_document(Document(path, booking_id, data))

    async def get_bookings(
        self, tenant_id: str, status: Optional[str] = None, date_str: Optional[str] = None
    ) -> list[Booking]:
        filters = []
        if status:
            filters.append(("status", "==", status))
        if date_str:
            filters.append(("date", "==", parse_calendar_date(date_str).isoformat()))
        docs = await self._store.query(paths.bookings(tenant_id), filters)
        bookings = [Booking.from_document(doc) for doc in docs]
        bookings.sort(key=lambda b: b.created_at or "", reverse=True)
        return bookings
