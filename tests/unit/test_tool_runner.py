"""The model tool loop with a scripted client, and the request shape AnthropicClient sends."""

from __future__ import annotations

from types import SimpleNamespace
from typing import Any
from unittest.mock import AsyncMock

import pytest

from conftest import FakeAIClient
from connectsphere.ai.client import AIResponse, AnthropicClient, ToolCall
from connectsphere.ai.tool_runner import MAX_TOOL_ROUNDS, run_tool_loop
from connectsphere.ai.tools.base import Tool
from connectsphere.ai.tools.registry import ToolRegistry
from connectsphere.config import AnthropicConfig


class EchoTool(Tool):
    name = "echo"
    description = "Echo the value back"
    input_schema = {"type": "object", "properties": {"value": {"type": "string"}}}

    async def execute(self, **kwargs: Any) -> str:
        return f"echo:{kwargs.get('value')}"


class BrokenTool(Tool):
    name = "broken"
    description = "Always fails"
    input_schema = {"type": "object", "properties": {}}

    async def execute(self, **kwargs: Any) -> str:
        raise RuntimeError("kaput")


def _call(name: str, call_id: str = "c1", **kwargs: Any) -> AIResponse:
    return AIResponse(text="", tool_calls=[ToolCall(call_id, name, kwargs)], input_tokens=10, output_tokens=5)


async def _run(client: FakeAIClient, registry: ToolRegistry | None, messages: list[dict[str, Any]]):
    return await run_tool_loop(
        ai_client=client,
        tool_registry=registry,
        messages=messages,
        system="sys",
        model="m",
        max_tokens=100,
        temperature=0.5,
    )


class TestRunToolLoop:
    @pytest.mark.asyncio
    async def test_plain_answer_without_tools(self) -> None:
        client = FakeAIClient(AIResponse(text="  hello  ", input_tokens=7, output_tokens=2))
        result = await _run(client, None, [{"role": "user", "content": "hi"}])
        assert result.text == "hello"
        assert (result.input_tokens, result.output_tokens, result.tool_rounds) == (7, 2, 0)
        assert client.calls[0]["tools"] is None
        assert client.calls[0]["tool_choice"] is None

    @pytest.mark.asyncio
    async def test_tool_round_then_answer(self) -> None:
        client = FakeAIClient(_call("echo", value="x"), AIResponse(text="done", input_tokens=20, output_tokens=3))
        messages = [{"role": "user", "content": "go"}]

        result = await _run(client, ToolRegistry([EchoTool()]), messages)

        assert result.text == "done"
        assert (result.input_tokens, result.output_tokens, result.tool_rounds) == (30, 8, 1)
        assert client.calls[0]["tools"][0]["name"] == "echo"
        assert [m["role"] for m in messages] == ["user", "assistant", "user"]
        assert messages[1]["content"][0]["type"] == "tool_use"
        assert messages[2]["content"] == [{"type": "tool_result", "tool_use_id": "c1", "content": "echo:x"}]

    @pytest.mark.asyncio
    async def test_last_round_forbids_tool_calls(self) -> None:
        looping = AIResponse(text="still thinking", tool_calls=[ToolCall("c", "echo", {"value": "y"})])
        client = FakeAIClient(looping)

        result = await _run(client, ToolRegistry([EchoTool()]), [{"role": "user", "content": "go"}])

        assert len(client.calls) == MAX_TOOL_ROUNDS + 1
        # Tool definitions stay on every request once tool blocks are in the history.
        assert all(call["tools"][0]["name"] == "echo" for call in client.calls)
        assert client.calls[-1]["tool_choice"] == {"type": "none"}
        assert all(call["tool_choice"] is None for call in client.calls[:-1])
        assert result.tool_rounds == MAX_TOOL_ROUNDS
        assert result.text == "still thinking"

    @pytest.mark.asyncio
    async def test_tool_errors_reported_to_model(self) -> None:
        client = FakeAIClient(
            AIResponse(text="", tool_calls=[ToolCall("a", "broken", {}), ToolCall("b", "missing", {})]),
            AIResponse(text="sorry"),
        )
        messages = [{"role": "user", "content": "go"}]

        await _run(client, ToolRegistry([BrokenTool()]), messages)

        outputs = {block["tool_use_id"]: block["content"] for block in messages[2]["content"]}
        assert outputs["a"] == "Error executing broken: kaput"
        assert outputs["b"] == "Error: unknown tool 'missing'"


def _sdk_client(*content: SimpleNamespace) -> tuple[AnthropicClient, AsyncMock]:
    client = AnthropicClient(AnthropicConfig(api_key="sk-test"))
    create = AsyncMock(
        return_value=SimpleNamespace(
            content=list(content),
            usage=SimpleNamespace(input_tokens=12, output_tokens=4),
            stop_reason="end_turn",
        )
    )
    client._client = SimpleNamespace(messages=SimpleNamespace(create=create))
    return client, create


class TestAnthropicClient:
    @pytest.mark.asyncio
    async def test_tool_choice_sent_with_tools(self) -> None:
        client, create = _sdk_client(SimpleNamespace(type="text", text="Booked."))
        tools = [EchoTool().to_api_dict()]

        response = await client.chat(
            "sys", [{"role": "user", "content": "go"}], model="m", tools=tools, tool_choice={"type": "none"}
        )

        kwargs = create.call_args.kwargs
        assert kwargs["tools"] == tools
        assert kwargs["tool_choice"] == {"type": "none"}
        assert (response.text, response.input_tokens, response.output_tokens) == ("Booked.", 12, 4)

    @pytest.mark.asyncio
    async def test_no_tool_keys_without_tools(self) -> None:
        client, create = _sdk_client(SimpleNamespace(type="text", text="hi"))

        await client.chat("sys", [{"role": "user", "content": "hi"}], model="m", tool_choice={"type": "none"})

        assert "tools" not in create.call_args.kwargs
        assert "tool_choice" not in create.call_args.kwargs

    @pytest.mark.asyncio
    async def test_tool_use_blocks_become_calls(self) -> None:
        client, _ = _sdk_client(
            SimpleNamespace(type="text", text="Checking."),
            SimpleNamespace(type="tool_use", id="t1", name="echo", input={"value": "x"}),
        )

        response = await client.chat("sys", [{"role": "user", "content": "go"}], model="m")

        assert response.text == "Checking."
        assert response.tool_calls == [ToolCall("t1", "echo", {"value": "x"})]
