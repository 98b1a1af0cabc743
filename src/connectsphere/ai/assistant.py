"""Assistant reply generation: triage, context gathering, model call, persistence."""

from __future__ import annotations

import asyncio
import math
import re
from dataclasses import dataclass
from typing import Any, Optional

from connectsphere.ai.client import AIClient
from connectsphere.ai.conversation import build_messages
from connectsphere.ai.intent import Intent, analyze_intent, prebuilt_response
from connectsphere.ai.tool_runner import run_tool_loop
from connectsphere.ai.tools.booking import booking_tools
from connectsphere.booking.service import SlotEngine
from connectsphere.booking.slots import ConsultantSettings
from connectsphere.config import AssistantConfig
from connectsphere.core.background import spawn_detached
from connectsphere.knowledge.service import KnowledgeService
from connectsphere.log import get_logger
from connectsphere.storage.conversation_repo import ConversationStore
from connectsphere.storage.tenant_repo import TenantRepository

logger = get_logger(__name__)

# "[BOOKING:dates]" or "[BOOKING:dates:<reason>]" at the end of a reply
BOOKING_MARKER = re.compile(r"\s*\[BOOKING:dates(?::([^\]]*))?\]\s*")

# Rough size of a token when the backend reports no usage.
CHARS_PER_TOKEN = 4

BOOKING_INSTRUCTIONS = """

CONSULTANT BOOKING (ONLY WHEN USER EXPLICITLY ASKS):
You can help users book consultations ONLY when they EXPLICITLY request it,
e.g. "I want to book", "schedule a consultation", "I need an appointment".
Do NOT offer booking for greetings, general questions, product inquiries or
when the user declines.

WHEN USER WANTS TO BOOK:
End your reply with "[BOOKING:dates]". If the reason is already clear from
the conversation, include it: "[BOOKING:dates:PC advice]".

EXAMPLE:
User: "I want to book for PC advice"
-> "Sure! Let me show available slots. [BOOKING:dates:PC advice]"
"""


@dataclass
class AssistantReply:
    text: str
    start_booking: bool = False
    booking_reason: Optional[str] = None


def estimate_tokens(text: str) -> int:
    return math.ceil(len(text or "") / CHARS_PER_TOKEN)


def extract_booking_marker(text: str) -> tuple[str, bool, Optional[str]]:
    """Strip the booking marker; returns ``(clean_text, found, reason)``."""
    match = BOOKING_MARKER.search(text or "")
    if match is None:
        return text, False, None
    reason = (match.group(1) or "").strip() or None
    return BOOKING_MARKER.sub(" ", text).strip(), True, reason


class Assistant:
    """Builds one reply for one inbound message.

    Without an AI client every non-canned message gets the offline reply.
    """

    def __init__(
        self,
        ai_client: Optional[AIClient],
        config: AssistantConfig,
        tenants: TenantRepository,
        conversations: ConversationStore,
        knowledge: KnowledgeService,
        slots: SlotEngine,
    ):
        self._ai = ai_client
        self._config = config
        self._tenants = tenants
        self._conversations = conversations
        self._knowledge = knowledge
        self._slots = slots

    async def respond(
        self,
        tenant_id: str,
        text: str,
        sender_id: str = "Unknown",
        sender_name: Optional[str] = None,
        conversation_key: Optional[str] = None,
        in_booking_flow: bool = False,
    ) -> AssistantReply:
        canned = prebuilt_response(text, in_booking_flow=in_booking_flow)
        if canned:
            spawn_detached(
                self._conversations.append_exchange(tenant_id, text, canned, conversation_key),
                name="save_prebuilt_exchange",
            )
            return AssistantReply(canned)

        if self._ai is None:
            return AssistantReply(self._config.offline_message)

        intent = analyze_intent(text)
        logger.debug(
            "intent_analyzed",
            tenant_id=tenant_id,
            needs_rag=intent.needs_rag,
            needs_booking=intent.needs_booking,
            history_limit=intent.history_limit,
        )

        try:
            return await self._generate(tenant_id, text, sender_id, sender_name, conversation_key, intent)
        except Exception as e:
            logger.error("reply_generation_failed", tenant_id=tenant_id, error=str(e))
            return AssistantReply(self._config.error_message)

    async def _generate(
        self,
        tenant_id: str,
        text: str,
        sender_id: str,
        sender_name: Optional[str],
        conversation_key: Optional[str],
        intent: Intent,
    ) -> AssistantReply:
        settings, rag_context, consultant, history = await asyncio.gather(
            self._tenants.get_assistant_settings(tenant_id),
            self._rag_context(tenant_id, text) if intent.needs_rag else _constant(""),
            self._consultant_settings(tenant_id) if intent.needs_booking else _constant(None),
            self._conversations.get_history(tenant_id, conversation_key, intent.history_limit),
        )

        base_context = (settings or {}).get("context") or ""
        model = (settings or {}).get("model") or self._config.model
        booking_enabled = bool(consultant and consultant.enabled)

        system = self._system_prompt(intent, base_context, rag_context, booking_enabled)
        messages = build_messages(history, text)
        tools = booking_tools(self._slots, tenant_id, sender_id, sender_name) if booking_enabled else None

        result = await run_tool_loop(
            ai_client=self._ai,
            tool_registry=tools,
            messages=messages,
            system=system,
            model=model,
            max_tokens=self._config.max_tokens,
            temperature=self._config.temperature,
        )

        reply_text, start_booking, reason = extract_booking_marker(result.text)
        if start_booking and not booking_enabled:
            start_booking = False
        if not reply_text:
            reply_text = self._config.empty_reply_message

        input_tokens = result.input_tokens
        output_tokens = result.output_tokens
        if not input_tokens and not output_tokens:
            input_tokens = estimate_tokens(system + "".join(_text_of(m) for m in messages))
            output_tokens = estimate_tokens(reply_text)

        spawn_detached(
            self._persist(tenant_id, text, reply_text, conversation_key, input_tokens, output_tokens),
            name="save_exchange",
        )
        logger.info(
            "reply_generated",
            tenant_id=tenant_id,
            tool_rounds=result.tool_rounds,
            input_tokens=input_tokens,
            output_tokens=output_tokens,
            start_booking=start_booking,
        )
        return AssistantReply(reply_text, start_booking=start_booking, booking_reason=reason)

    async def _rag_context(self, tenant_id: str, text: str) -> str:
        try:
            return await asyncio.wait_for(
                self._knowledge.build_context(tenant_id, text), timeout=self._config.rag_timeout_seconds
            )
        except asyncio.TimeoutError:
            logger.warning("rag_context_timeout", tenant_id=tenant_id)
        except Exception as e:
            logger.error("rag_context_failed", tenant_id=tenant_id, error=str(e))
        return ""

    async def _consultant_settings(self, tenant_id: str) -> Optional[ConsultantSettings]:
        try:
            return await self._slots.get_settings(tenant_id)
        except Exception as e:
            logger.error("consultant_settings_failed", tenant_id=tenant_id, error=str(e))
            return None

    def _system_prompt(self, intent: Intent, base_context: str, rag_context: str, booking_enabled: bool) -> str:
        if intent.is_simple:
            return (
                "You are a friendly WhatsApp business assistant.\n"
                "Keep responses SHORT (1-2 sentences max). Be warm and conversational.\n"
                f"Context: {base_context[:200]}"
            )

        knowledge = "\n\n".join(part for part in (base_context, rag_context) if part)
        now = self._slots.local_now()
        prompt = (
            "You are 'ConnectSphere', a WhatsApp business assistant.\n\n"
            "CRITICAL: Keep ALL responses SHORT (2-3 sentences max). One topic per message.\n\n"
            "RULES:\n"
            "1. KNOWLEDGE FIRST: Use the knowledge below as truth. Don't invent prices/policies.\n"
            "2. WHATSAPP STYLE: Short sentences, friendly tone, *bold* for emphasis.\n"
            "3. ONE STEP AT A TIME: Give one step, ask \"Done?\", then continue.\n\n"
            f"Today is {now:%A, %Y-%m-%d}."
        )
        if knowledge:
            prompt += f"\n\nKNOWLEDGE:\n{knowledge}"
        if booking_enabled:
            prompt += BOOKING_INSTRUCTIONS
        return prompt

    async def _persist(
        self,
        tenant_id: str,
        user_text: str,
        reply_text: str,
        conversation_key: Optional[str],
        input_tokens: int,
        output_tokens: int,
    ) -> None:
        await asyncio.gather(
            self._conversations.append_exchange(tenant_id, user_text, reply_text, conversation_key),
            self._tenants.log_token_usage(tenant_id, input_tokens, output_tokens),
        )


async def _constant(value: Any) -> Any:
    return value


def _text_of(message: dict[str, Any]) -> str:
    content = message.get("content")
    if isinstance(content, str):
        return content
    return "".join(str(block.get("text") or block.get("content") or "") for block in content or [])
