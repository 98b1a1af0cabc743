"""Channel-neutral message models."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from typing import Optional


@dataclass(frozen=True, slots=True)
class Attachment:
    """Binary attachment (image, file, etc.)."""

    data: bytes
    media_type: str  # e.g. "image/png"
    filename: str = "attachment"
    caption: str = ""


@dataclass(frozen=True, slots=True)
class Button:
    """Quick-reply button; ``id`` comes back as ``IncomingMessage.button_id``."""

    id: str
    title: str


@dataclass(frozen=True, slots=True)
class IncomingMessage:
    tenant_id: str
    sender_id: str  # phone number for WhatsApp
    text: str
    timestamp: datetime
    sender_name: str = ""
    button_id: Optional[str] = None

    @property
    def conversation_key(self) -> str:
        return f"wa_{self.sender_id}"


@dataclass(frozen=True, slots=True)
class OutgoingMessage:
    recipient_id: str
    text: str
    buttons: list[Button] = field(default_factory=list)
    attachments: list[Attachment] = field(default_factory=list)
