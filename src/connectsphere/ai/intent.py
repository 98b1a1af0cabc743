"""Cheap message triage that runs before any store or model call."""

from __future__ import annotations

import random
import re
from dataclasses import dataclass
from typing import Callable, Optional, Sequence

GREETING_PATTERNS = [
    re.compile(r"^(hi+|hey+|hello+|hii+|hyy+|hola|yo+)[\s!?.]*$", re.I),
    re.compile(r"^(good\s*(morning|afternoon|evening|night))[\s!?.]*$", re.I),
    re.compile(r"^(sup|wassup|whatsup|what'?s\s*up)[\s!?.]*$", re.I),
    re.compile(r"^(howdy|hiya|heya)[\s!?.]*$", re.I),
]
GREETING_RESPONSES = [
    "Hey there! 👋 How can I help you today?",
    "Hi! 👋 What can I do for you?",
    "Hello! 👋 How may I assist you?",
    "Hey! 👋 What brings you here today?",
]

THANKS_PATTERNS = [
    re.compile(r"^(thanks?|thank\s*you|thx|ty|tysm|thanku)[\s!?.]*$", re.I),
    re.compile(r"^(ok\s*thanks?|okay\s*thanks?)[\s!?.]*$", re.I),
]
THANKS_RESPONSES = [
    "You're welcome! 😊 Let me know if you need anything else.",
    "Happy to help! 😊 Anything else I can assist with?",
    "No problem! 😊 Feel free to ask if you have more questions.",
]

BYE_PATTERNS = [
    re.compile(r"^(bye+|byee*|goodbye|good\s*bye|see\s*ya|cya|later|gtg)[\s!?.]*$", re.I),
    re.compile(r"^(take\s*care|tc)[\s!?.]*$", re.I),
]
BYE_RESPONSES = [
    "Goodbye! 👋 Have a great day!",
    "Take care! 👋 Feel free to reach out anytime.",
    "Bye! 👋 See you next time!",
]

SIMPLE_CHAT_PATTERNS = [
    re.compile(r"^(how are you|how r u|how're you|hru|how do you do)[\s?!.]*$", re.I),
    re.compile(r"^(what'?s up|sup|wassup|whatsup)[\s?!.]*$", re.I),
    re.compile(r"^(good|great|fine|ok|okay|cool|nice|awesome|perfect|alright)[\s!.]*$", re.I),
    re.compile(r"^(yes|no|yeah|yep|nope|nah|sure|maybe)[\s!.]*$", re.I),
    re.compile(r"^(lol|haha|hehe|😂|😊|👍|🙏|❤️|🔥)[\s!.]*$", re.I),
    re.compile(r"^(same|me too|agreed|exactly|right|true)[\s!.]*$", re.I),
    re.compile(r"^(nothing|nm|ntg|not much)[\s!.]*$", re.I),
    re.compile(r"^(i see|got it|understood|makes sense|i understand)[\s!.]*$", re.I),
]

BOOKING_INTENT_PATTERNS = [
    re.compile(r"book|appointment|schedule|slot|consult|meet|meeting", re.I),
    re.compile(r"available.*time|when.*free|when.*available", re.I),
]

KNOWLEDGE_INTENT_PATTERNS = [
    re.compile(r"price|cost|how much|charge|fee|rate", re.I),
    re.compile(r"service|product|offer|provide|sell", re.I),
    re.compile(r"policy|return|refund|warranty|guarantee", re.I),
    re.compile(r"how (do|can|to)|what (is|are)|tell me|explain", re.I),
    re.compile(r"support|help with|issue|problem|fix|repair", re.I),
    re.compile(r"contact|email|phone|address|location|hours", re.I),
]

_BUTTON_TOKEN = re.compile(r"^(date_|slot_|confirm_|cancel_|more_dates_|option_)")

MAX_PREBUILT_LENGTH = 50
MAX_SIMPLE_LENGTH = 30


@dataclass(frozen=True)
class Intent:
    needs_rag: bool
    needs_booking: bool
    history_limit: int
    is_simple: bool


def analyze_intent(message: str) -> Intent:
    """Decide how much context a message needs."""
    text = (message or "").strip()
    if len(text) < MAX_SIMPLE_LENGTH and any(p.search(text) for p in SIMPLE_CHAT_PATTERNS):
        return Intent(needs_rag=False, needs_booking=False, history_limit=3, is_simple=True)
    if any(p.search(text) for p in BOOKING_INTENT_PATTERNS):
        return Intent(needs_rag=False, needs_booking=True, history_limit=5, is_simple=False)
    if any(p.search(text) for p in KNOWLEDGE_INTENT_PATTERNS):
        return Intent(needs_rag=True, needs_booking=False, history_limit=5, is_simple=False)
    return Intent(needs_rag=True, needs_booking=True, history_limit=10, is_simple=False)


def prebuilt_response(
    message: str,
    in_booking_flow: bool = False,
    choose: Callable[[Sequence[str]], str] = random.choice,
) -> Optional[str]:
    """Canned reply for a bare greeting, thanks or goodbye; None otherwise.

    Never used mid-booking, where "ok" or "thanks" may carry meaning.
    """
    text = (message or "").strip()
    if not text or len(text) > MAX_PREBUILT_LENGTH or in_booking_flow:
        return None
    if _BUTTON_TOKEN.match(text):
        return None
    for patterns, responses in (
        (GREETING_PATTERNS, GREETING_RESPONSES),
        (THANKS_PATTERNS, THANKS_RESPONSES),
        (BYE_PATTERNS, BYE_RESPONSES),
    ):
        if any(p.search(text) for p in patterns):
            return choose(responses)
    return None
