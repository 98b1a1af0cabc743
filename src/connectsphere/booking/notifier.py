"""Booking status notifications sent to the customer over the tenant's channel."""

from __future__ import annotations

import json
from dataclasses import dataclass
from io import BytesIO
from typing import Callable, Optional

import qrcode

from connectsphere.log import get_logger
from connectsphere.messenger.base import ChannelSession
from connectsphere.messenger.models import Attachment, OutgoingMessage
from connectsphere.storage.models import Booking

logger = get_logger(__name__)

SessionLookup = Callable[[str], Optional[ChannelSession]]


@dataclass
class NotificationResult:
    success: bool
    error: Optional[str] = None


def booking_qr_png(booking: Booking) -> bytes:
    """PNG QR code staff can scan at check-in."""
    payload = json.dumps(
        {
            "id": booking.id,
            "token": booking.token_number,
            "name": booking.name,
            "date": booking.date,
            "time": booking.time_slot,
            "reason": booking.reason,
        }
    )
    qr = qrcode.QRCode(border=2, box_size=10)
    qr.add_data(payload)
    qr.make(fit=True)
    img = qr.make_image(fill_color="black", back_color="white")
    buf = BytesIO()
    img.save(buf, format="PNG")
    return buf.getvalue()


def confirmation_text(booking: Booking) -> str:
    return (
        "✅ *BOOKING CONFIRMED!*\n\n"
        f"🎫 *Token:* #{booking.token_number}\n"
        f"👤 *Name:* {booking.name or 'Customer'}\n"
        f"📅 *Date:* {booking.date}\n"
        f"⏰ *Time:* {booking.time_slot}\n"
        f"📝 *Reason:* {booking.reason or 'General Consultation'}\n\n"
        "Please show this QR code at check-in.\n"
        "_Thank you for booking with us!_"
    )


def rejection_text(booking: Booking, note: Optional[str]) -> str:
    text = (
        "❌ *BOOKING UPDATE*\n\n"
        f"Sorry {booking.name or 'there'}, your booking request could not be confirmed.\n\n"
        f"📅 Date: {booking.date}\n"
        f"⏰ Time: {booking.time_slot}\n"
        f"🎫 Token: #{booking.token_number}\n"
    )
    if note:
        text += f"\n📝 *Note:* {note}\n"
    return text + "\nPlease try booking another slot or contact us for assistance."


class BookingNotifier:
    """Failures are reported in the result and logged, never raised."""

    def __init__(self, sessions: SessionLookup):
        self._sessions = sessions

    def _session_for(self, tenant_id: str, booking: Booking) -> tuple[Optional[ChannelSession], Optional[str]]:
        if not booking.phone:
            return None, "No phone number"
        session = self._sessions(tenant_id)
        if session is None or not session.connected:
            return None, "Channel not connected"
        return session, None

    async def send_confirmation(self, tenant_id: str, booking: Booking) -> NotificationResult:
        session, error = self._session_for(tenant_id, booking)
        if session is None:
            logger.warning("booking_notification_skipped", tenant_id=tenant_id, booking_id=booking.id, reason=error)
            return NotificationResult(False, error)
        try:
            qr = Attachment(
                data=booking_qr_png(booking),
                media_type="image/png",
                filename=f"booking-{booking.id}.png",
                caption="📱 *Your Booking QR Code*\nShow this at check-in",
            )
            await session.send_message(OutgoingMessage(booking.phone, confirmation_text(booking)))
            await session.send_message(OutgoingMessage(booking.phone, "", attachments=[qr]))
        except Exception as e:
            logger.error("booking_confirmation_failed", tenant_id=tenant_id, booking_id=booking.id, error=str(e))
            return NotificationResult(False, str(e))
        logger.info("booking_confirmation_sent", tenant_id=tenant_id, booking_id=booking.id)
        return NotificationResult(True)

    async def send_rejection(self, tenant_id: str, booking: Booking, note: Optional[str] = None) -> NotificationResult:
        session, error = self._session_for(tenant_id, booking)
        if session is None:
            logger.warning("booking_notification_skipped", tenant_id=tenant_id, booking_id=booking.id, reason=error)
            return NotificationResult(False, error)
        try:
            await session.send_message(OutgoingMessage(booking.phone, rejection_text(booking, note)))
        except Exception as e:
            logger.error("booking_rejection_failed", tenant_id=tenant_id, booking_id=booking.id, error=str(e))
            return NotificationResult(False, str(e))
        logger.info("booking_rejection_sent", tenant_id=tenant_id, booking_id=booking.id)
        return NotificationResult(True)
