"""Convert stored conversation history to Anthropic API message format."""

from __future__ import annotations

from typing import Any

from connectsphere.core.types import Role
from connectsphere.storage.models import HistoryEntry


def build_messages(history: list[HistoryEntry], user_text: str) -> list[dict[str, Any]]:
    """History plus the new user message as alternating API messages.

    Stored ``model`` turns become ``assistant``. Consecutive turns of one role
    are merged and leading assistant turns dropped, since the API requires
    strict alternation starting with the user.
    """
    messages: list[dict[str, Any]] = []
    for entry in [*history, HistoryEntry(Role.USER.value, user_text)]:
        if not entry.text:
            continue
        role = "assistant" if entry.role == Role.MODEL else "user"
        if not messages and role == "assistant":
            continue
        if messages and messages[-1]["role"] == role:
            messages[-1]["content"] += "\n\n" + entry.text
        else:
            messages.append({"role": role, "content": entry.text})
    return messages
