"""Message handler: routes an inbound message to the booking dialogue or the assistant."""

from __future__ import annotations

from connectsphere.ai.assistant import Assistant
from connectsphere.booking.flow import BookingFlow
from connectsphere.log import get_logger, tenant_context
from connectsphere.messenger.base import ChannelSession
from connectsphere.messenger.models import IncomingMessage, OutgoingMessage

logger = get_logger(__name__)

MAX_MESSAGE_LENGTH = 4000


class MessageHandler:
    """Handles the full flow: message -> booking dialogue or assistant -> replies.

    Every message with text gets at least one reply, even when everything
    downstream fails.
    """

    def __init__(self, assistant: Assistant, booking: BookingFlow, error_message: str):
        self._assistant = assistant
        self._booking = booking
        self._error_message = error_message

    async def handle(self, message: IncomingMessage) -> list[OutgoingMessage]:
        if not message.text.strip() and not message.button_id:
            return []
        with tenant_context(message.tenant_id, conversation=message.conversation_key):
            try:
                return await self._route(message)
            except Exception as e:
                logger.error("message_handling_failed", error=str(e))
                return [OutgoingMessage(message.sender_id, self._error_message)]

    async def _route(self, message: IncomingMessage) -> list[OutgoingMessage]:
        in_flow = self._booking.in_progress(message.tenant_id, message.sender_id)
        if in_flow or self._booking.wants(message):
            reply = await self._booking.handle(message)
            if reply is not None:
                return [reply]

        answer = await self._assistant.respond(
            message.tenant_id,
            message.text.strip(),
            sender_id=message.sender_id,
            sender_name=message.sender_name or None,
            conversation_key=message.conversation_key,
            in_booking_flow=in_flow,
        )
        replies = [OutgoingMessage(message.sender_id, chunk) for chunk in _split_message(answer.text)]
        if answer.start_booking:
            replies.append(
                await self._booking.start(
                    message.tenant_id,
                    message.sender_id,
                    reason=answer.booking_reason,
                    name=message.sender_name or None,
                )
            )
        return replies

    async def dispatch(self, session: ChannelSession, message: IncomingMessage) -> None:
        """Handle ``message`` and send every reply through ``session``."""
        for reply in await self.handle(message):
            try:
                await session.send_message(reply)
            except Exception as e:
                logger.error("reply_send_failed", tenant_id=message.tenant_id, error=str(e))
                return


def _split_message(text: str, max_length: int = MAX_MESSAGE_LENGTH) -> list[str]:
    """Split a message into chunks that fit within platform limits."""
    if len(text) <= max_length:
        return [text]

    chunks = []
    while text:
        if len(text) <= max_length:
            chunks.append(text)
            break
        # Try to split at a newline
        split_pos = text.rfind("\n", 0, max_length)
        if split_pos == -1:
            split_pos = max_length
        chunks.append(text[:split_pos])
        text = text[split_pos:].lstrip("\n")
    return chunks
