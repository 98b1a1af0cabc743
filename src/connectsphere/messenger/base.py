"""Abstract channel session interface."""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Awaitable, Callable

from connectsphere.core.types import ConnectionStatus, DisconnectReason
from connectsphere.messenger.models import IncomingMessage, OutgoingMessage


class ChannelSession(ABC):
    """One tenant's connection to a messaging network.

    The transport (pairing, encryption, wire protocol) lives in a subclass.
    Subclasses call ``_emit_message`` for inbound traffic and
    ``_emit_disconnect`` when the connection drops.
    """

    def __init__(self, tenant_id: str):
        self.tenant_id = tenant_id
        self.status = ConnectionStatus.DISCONNECTED
        self._message_callback: Callable[[IncomingMessage], Awaitable[None]] | None = None
        self._disconnect_callback: Callable[[DisconnectReason], Awaitable[None]] | None = None

    @abstractmethod
    async def start(self) -> None:
        """Connect (or begin pairing) and start receiving messages."""
        ...

    @abstractmethod
    async def stop(self, logout: bool = False) -> None:
        """Disconnect; ``logout`` also invalidates the stored pairing."""
        ...

    @abstractmethod
    async def send_message(self, message: OutgoingMessage) -> None:
        ...

    @property
    def connected(self) -> bool:
        return self.status == ConnectionStatus.CONNECTED

    def on_message(self, callback: Callable[[IncomingMessage], Awaitable[None]]) -> None:
        """Register the callback invoked for every incoming message."""
        self._message_callback = callback

    def on_disconnect(self, callback: Callable[[DisconnectReason], Awaitable[None]]) -> None:
        self._disconnect_callback = callback

    async def _emit_message(self, message: IncomingMessage) -> None:
        if self._message_callback is not None:
            await self._message_callback(message)

    async def _emit_disconnect(self, reason: DisconnectReason) -> None:
        self.status = ConnectionStatus.DISCONNECTED
        if self._disconnect_callback is not None:
            await self._disconnect_callback(reason)
