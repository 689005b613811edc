"""Tests for the message model and token accounting."""

from __future__ import annotations

import pytest

from agent_loop_engine.messages import (
    AssistantMessage,
    CustomMessage,
    ImageContent,
    TextContent,
    ThinkingContent,
    ToolCall,
    ToolResultMessage,
    UserMessage,
    default_convert_to_llm,
    is_recognized,
    user_message,
)
from agent_loop_engine.models import ModelCost, ModelDefinition, TokenUsage


class TestRoles:
    def test_recognized_roles(self) -> None:
        assert is_recognized(UserMessage(content="hi"))
        assert is_recognized(AssistantMessage())
        assert is_recognized(ToolResultMessage(tool_call_id="t", tool_name="x"))

    def test_custom_roles_are_opaque(self) -> None:
        assert not is_recognized(CustomMessage(role="notification"))
        assert not is_recognized(object())

    def test_default_convert_keeps_order_and_drops_opaque(self) -> None:
        first = user_message("a")
        note = CustomMessage(role="notification", payload={"text": "build passed"})
        reply = AssistantMessage(content=[TextContent(text="b")])

        assert default_convert_to_llm([first, note, reply]) == [first, reply]


class TestMessageAccessors:
    def test_user_text_from_string_and_blocks(self) -> None:
        assert user_message("plain").text == "plain"
        blocks = user_message([TextContent(text="look "), ImageContent(data="AAA"), TextContent(text="here")])
        assert blocks.text == "look here"
        assert isinstance(blocks.content, list)

    def test_assistant_text_skips_thinking_and_calls(self) -> None:
        message = AssistantMessage(
            content=[
                ThinkingContent(thinking="hmm"),
                TextContent(text="Let me check."),
                ToolCall(id="tc1", name="search", arguments={"q": "x"}),
            ],
            stop_reason="tool_use",
        )

        assert message.text == "Let me check."
        assert [c.id for c in message.tool_calls] == ["tc1"]

    def test_tool_result_text(self) -> None:
        result = ToolResultMessage(
            tool_call_id="tc1",
            tool_name="search",
            content=[TextContent(text="found")],
        )
        assert result.text == "found"
        assert result.is_error is False

    def test_content_block_types(self) -> None:
        assert TextContent().type == "text"
        assert ImageContent().type == "image"
        assert ThinkingContent().type == "thinking"
        assert ToolCall(id="1", name="n").type == "tool_call"


class TestTokenUsage:
    def test_calculate_cost(self) -> None:
        usage = TokenUsage(input_tokens=1_000_000, output_tokens=500_000, cache_read_tokens=200_000)

        cost = usage.calculate_cost(ModelCost(input=2.0, output=8.0, cache_read=0.5))

        assert cost.input == pytest.approx(2.0)
        assert cost.output == pytest.approx(4.0)
        assert cost.cache_read == pytest.approx(0.1)
        assert cost.total == pytest.approx(6.1)
        assert usage.cost is cost

    def test_add(self) -> None:
        a = TokenUsage(input_tokens=10, output_tokens=5)
        a.calculate_cost(ModelCost(input=1_000_000.0))
        b = TokenUsage(input_tokens=3, output_tokens=2, cache_write_tokens=1)

        total = a + b

        assert total.input_tokens == 13
        assert total.output_tokens == 7
        assert total.total_tokens == 21
        assert total.cost.total == pytest.approx(10.0)


class TestModelDefinition:
    def test_display_name_defaults_to_id(self) -> None:
        assert ModelDefinition(id="gpt-4o").display_name == "gpt-4o"

    def test_from_dict(self) -> None:
        model = ModelDefinition.from_dict(
            {
                "id": "local-llama",
                "provider": "ollama",
                "base_url": "http://localhost:11434/v1",
                "context_window": 8192,
                "cost": {"input": 0.1, "output": 0.2},
                "reasoning": True,
            }
        )

        assert model.provider == "ollama"
        assert model.base_url == "http://localhost:11434/v1"
        assert model.context_window == 8192
        assert model.max_output_tokens == 4096
        assert model.cost.output == 0.2
        assert model.cost.cache_read == 0.0
        assert model.reasoning is True
