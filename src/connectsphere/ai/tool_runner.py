"""Iterative tool execution loop for model tool-use responses."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass
from typing import Any

from connectsphere.ai.client import AIClient, ToolCall
from connectsphere.ai.tools.registry import ToolRegistry
from connectsphere.log import get_logger

logger = get_logger(__name__)

MAX_TOOL_ROUNDS = 3
NO_TOOL_CALLS = {"type": "none"}


@dataclass
class ToolLoopResult:
    text: str
    input_tokens: int = 0
    output_tokens: int = 0
    tool_rounds: int = 0


async def run_tool_loop(
    ai_client: AIClient,
    tool_registry: ToolRegistry | None,
    messages: list[dict[str, Any]],
    system: str,
    model: str,
    max_tokens: int,
    temperature: float,
) -> ToolLoopResult:
    """Call the model, execute requested tools, and repeat until it answers in text.

    The last round forbids tool calls (``tool_choice`` none) so the loop always
    ends on a text reply; the definitions stay in the request because the
    history already holds tool blocks.
    ``messages`` is extended in place with the tool exchange.
    """
    tool_defs = [t.to_api_dict() for t in tool_registry.all_tools()] if tool_registry else []
    result = ToolLoopResult(text="")

    for rounds in range(MAX_TOOL_ROUNDS + 1):
        offer_tools = bool(tool_defs) and rounds < MAX_TOOL_ROUNDS
        final_round = bool(tool_defs) and not offer_tools
        response = await ai_client.chat(
            system=system,
            messages=messages,
            model=model,
            max_tokens=max_tokens,
            temperature=temperature,
            tools=tool_defs or None,
            tool_choice=NO_TOOL_CALLS if final_round else None,
        )
        result.input_tokens += response.input_tokens
        result.output_tokens += response.output_tokens

        if not response.tool_calls or not offer_tools:
            result.text = response.text.strip()
            return result

        assistant_content: list[dict[str, Any]] = []
        if response.text:
            assistant_content.append({"type": "text", "text": response.text})
        for call in response.tool_calls:
            assistant_content.append({"type": "tool_use", "id": call.id, "name": call.name, "input": call.input})
        messages.append({"role": "assistant", "content": assistant_content})

        async def _execute_one(call: ToolCall) -> tuple[str, str]:
            tool = tool_registry.get(call.name)
            if tool is None:
                return call.id, f"Error: unknown tool '{call.name}'"
            try:
                logger.info("tool_execute", tool=call.name)
                return call.id, await tool.execute(**call.input)
            except Exception as e:
                logger.error("tool_execution_error", tool=call.name, error=str(e))
                return call.id, f"Error executing {call.name}: {e}"

        outputs = await asyncio.gather(*(_execute_one(c) for c in response.tool_calls))
        messages.append(
            {
                "role": "user",
                "content": [
                    {"type": "tool_result", "tool_use_id": call_id, "content": output}
                    for call_id, output in outputs
                ],
            }
        )
        result.tool_rounds += 1

    return result
