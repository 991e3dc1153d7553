import json
from types import SimpleNamespace

import pytest

from ai import check_provider_configured, get_assistant_service, parse_llm_json
from ai import claude_service, gemini_service, openai_service
from dto.chat import ToolCall, ToolResult, TranscriptEntry
from errors import ProviderNotConfiguredError

TOOLS = [
    {
        "name": "delete_row",
        "description": "Delete a row",
        "input_schema": {"type": "object", "properties": {"row": {"type": "integer"}}, "required": ["row"]},
    }
]


@pytest.fixture
def transcript():
    return [
        TranscriptEntry(role="user", text="Remove row 3"),
        TranscriptEntry(
            role="assistant",
            text="Removing it.",
            tool_calls=[ToolCall(id="call_1", name="delete_row", input={"sheet": "S", "row": 3})],
        ),
        TranscriptEntry(
            role="tool",
            tool_results=[ToolResult(tool_call_id="call_1", name="delete_row", output={"success": True})],
        ),
    ]


class TestParseLlmJson:
    def test_plain_and_fenced(self):
        assert parse_llm_json('{"a": 1}') == {"a": 1}
        assert parse_llm_json('```json\n{"a": [1, 2]}\n```') == {"a": [1, 2]}

    def test_object_with_nested_array_inside_prose(self):
        assert parse_llm_json('Sure: {"cells": ["A1", "B2"]} done') == {"cells": ["A1", "B2"]}

    def test_array(self):
        assert parse_llm_json("result: [1, 2]") == [1, 2]

    def test_garbage(self):
        assert parse_llm_json("no json here") is None


class TestClaude:
    def test_message_conversion(self, transcript):
        messages = claude_service._to_messages(transcript)
        assert messages[0] == {"role": "user", "content": "Remove row 3"}
        assert messages[1]["role"] == "assistant"
        assert messages[1]["content"][0] == {"type": "text", "text": "Removing it."}
        assert messages[1]["content"][1]["type"] == "tool_use"
        assert messages[1]["content"][1]["input"] == {"sheet": "S", "row": 3}
        result = messages[2]["content"][0]
        assert messages[2]["role"] == "user"
        assert result["tool_use_id"] == "call_1"
        assert json.loads(result["content"]) == {"success": True}

    def test_empty_text_turns_are_dropped(self):
        messages = claude_service._to_messages([TranscriptEntry(role="assistant", text="")])
        assert messages == []

    def test_run_tool_turn(self, monkeypatch, transcript):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        service = claude_service.ClaudeService(model="test-model", max_tokens=100)
        seen = {}

        def create(**kwargs):
            seen.update(kwargs)
            return SimpleNamespace(
                stop_reason="tool_use",
                content=[
                    SimpleNamespace(type="text", text="Checking."),
                    SimpleNamespace(type="tool_use", id="tu_1", name="delete_row", input={"row": 2}),
                ],
            )

        service._client = SimpleNamespace(messages=SimpleNamespace(create=create))
        turn = service.run_tool_turn("system text", transcript, TOOLS)

        assert seen["model"] == "test-model"
        assert seen["system"] == "system text"
        assert seen["tools"] == TOOLS
        assert turn.text == "Checking."
        assert turn.tool_calls == [ToolCall(id="tu_1", name="delete_row", input={"row": 2})]
        assert turn.stop_reason == "tool_use"


class TestOpenAI:
    def test_function_definitions(self):
        (fn,) = openai_service._to_functions(TOOLS)
        assert fn["type"] == "function"
        assert fn["function"]["name"] == "delete_row"
        assert fn["function"]["parameters"] == TOOLS[0]["input_schema"]

    def test_message_conversion(self, transcript):
        messages = openai_service._to_messages("sys", transcript)
        assert messages[0] == {"role": "system", "content": "sys"}
        assert messages[1] == {"role": "user", "content": "Remove row 3"}
        call = messages[2]["tool_calls"][0]
        assert call["id"] == "call_1"
        assert json.loads(call["function"]["arguments"]) == {"sheet": "S", "row": 3}
        assert messages[3]["role"] == "tool"
        assert messages[3]["tool_call_id"] == "call_1"

    def test_arguments(self):
        assert openai_service._parse_arguments('{"row": 4}') == {"row": 4}
        assert openai_service._parse_arguments("") == {}
        assert openai_service._parse_arguments("[1, 2]") == {}


class TestGemini:
    def test_content_conversion(self, transcript):
        contents = gemini_service._to_contents(transcript)
        assert [c.role for c in contents] == ["user", "model", "user"]
        model_parts = contents[1].parts
        assert model_parts[0].text == "Removing it."
        assert model_parts[1].function_call.name == "delete_row"
        assert model_parts[1].function_call.args == {"sheet": "S", "row": 3}
        response = contents[2].parts[0].function_response
        assert response.name == "delete_row"
        assert response.response == {"result": {"success": True}}


class TestFactory:
    def test_missing_key(self, monkeypatch):
        monkeypatch.delenv("OPENAI_API_KEY", raising=False)
        with pytest.raises(ProviderNotConfiguredError, match="OPENAI_API_KEY"):
            check_provider_configured("openai")

    def test_gemini_accepts_either_key(self, monkeypatch):
        monkeypatch.delenv("GEMINI_API_KEY", raising=False)
        monkeypatch.setenv("GOOGLE_API_KEY", "test-key")
        check_provider_configured("gemini")

    def test_unknown_provider(self):
        with pytest.raises(ValueError):
            get_assistant_service("llama")

    def test_anthropic_alias(self, monkeypatch):
        monkeypatch.setenv("ANTHROPIC_API_KEY", "test-key")
        assert isinstance(get_assistant_service("anthropic"), claude_service.ClaudeService)

    def test_provider_from_config(self, monkeypatch):
        monkeypatch.setenv("OPENAI_API_KEY", "test-key")
        monkeypatch.setattr("config.AI_ASSISTANT_PROVIDER", "openai")
        assert isinstance(get_assistant_service(), openai_service.OpenAIService)
