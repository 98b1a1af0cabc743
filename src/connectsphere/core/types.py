"""Shared types and enumerations."""

from __future__ import annotations

from enum import StrEnum


class Role(StrEnum):
    USER = "user"
    MODEL = "model"


class Channel(StrEnum):
    WHATSAPP = "whatsapp"
    APP = "app"


class BookingStatus(StrEnum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    REJECTED = "rejected"
    COMPLETED = "completed"


# Statuses that hold a slot.
ACTIVE_BOOKING_STATUSES = (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value)


class BookingMode(StrEnum):
    HOURLY = "hourly"
    TOKEN = "token"


class BookingStep(StrEnum):
    IDLE = "idle"
    AWAITING_REASON = "awaiting_reason"
    AWAITING_DATE = "awaiting_date"
    AWAITING_SLOT = "awaiting_slot"
    AWAITING_NAME = "awaiting_name"
    AWAITING_CONFIRM = "awaiting_confirm"


class ConnectionStatus(StrEnum):
    DISCONNECTED = "disconnected"
    CONNECTING = "connecting"
    SCANNING = "scanning"
    CONNECTED = "connected"


class DisconnectReason(StrEnum):
    CONNECTION_LOST = "connection_lost"
    LOGGED_OUT = "logged_out"
    QR_TIMEOUT = "qr_timeout"
