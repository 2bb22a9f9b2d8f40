"""Tests for the language model adapters"""

import json

import httpx
import pytest

from mcp_chat_gateway.models.conversation import ConversationMessage, Role
from mcp_chat_gateway.models.tool import ToolCallStatus, ToolDescriptor
from mcp_chat_gateway.services.llm_client import (
    AnthropicLanguageModel,
    EchoLanguageModel,
    LLMConfig,
    LLMProvider,
    OpenAILanguageModel,
    create_language_model,
)

CALC_TOOL = ToolDescriptor(
    name="calculate",
    description="Perform arithmetic",
    input_schema={"type": "object", "properties": {"a": {"type": "number"}}},
    server_id="calc",
)


def _messages():
    return [
        ConversationMessage(role=Role.USER, content="What is 25 * 4?"),
        ConversationMessage(role=Role.ASSISTANT, content="[Calling tool calculate with args {}]"),
        ConversationMessage(role=Role.TOOL_RESULT, content="100", tool_call_id="c1", tool_name="calculate"),
        ConversationMessage(role=Role.SYSTEM, content="Remember the units."),
    ]


def _with_transport(model, handler):
    """Swap the adapter's HTTP client for one served by ``handler``."""
    model.client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
    return model


class TestAnthropic:
    @pytest.fixture
    def config(self):
        return LLMConfig(
            provider=LLMProvider.ANTHROPIC,
            model="claude-test",
            api_key="sk-test",
            system_prompt="Be brief.",
        )

    @pytest.mark.asyncio
    async def test_request_shape(self, config):
        captured = {}

        def handler(request: httpx.Request) -> httpx.Response:
            captured["url"] = str(request.url)
            captured["headers"] = request.headers
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"content": [{"type": "text", "text": "100"}], "model": "claude-test"})

        model = _with_transport(AnthropicLanguageModel(config), handler)
        response = await model.send(_messages(), [CALC_TOOL])
        await model.close()

        assert response.text == "100"
        assert response.error is None
        assert captured["url"] == "https://api.anthropic.com/v1/messages"
        assert captured["headers"]["x-api-key"] == "sk-test"
        body = captured["body"]
        assert body["system"] == "Be brief."
        assert body["tools"] == [{
            "name": "calculate",
            "description": "Perform arithmetic",
            "input_schema": CALC_TOOL.input_schema,
        }]
        # Tool results and system notes are folded into alternating user turns
        assert [m["role"] for m in body["messages"]] == ["user", "assistant", "user"]
        assert "Result of tool calculate:\n100" in body["messages"][2]["content"]
        assert "Remember the units." in body["messages"][2]["content"]

    @pytest.mark.asyncio
    async def test_tool_use_blocks(self, config):
        def handler(request):
            return httpx.Response(200, json={
                "content": [
                    {"type": "text", "text": "Let me calculate."},
                    {"type": "tool_use", "id": "tu_1", "name": "calculate",
                     "input": {"a": 25, "b": 4, "operation": "multiply"}},
                ],
                "usage": {"input_tokens": 10, "output_tokens": 5},
            })

        model = _with_transport(AnthropicLanguageModel(config), handler)
        response = await model.send(_messages()[:1], [CALC_TOOL])

        assert response.text == "Let me calculate."
        [call] = response.structured_calls
        assert call.name == "calculate"
        assert call.arguments == {"a": 25, "b": 4, "operation": "multiply"}
        assert call.status is ToolCallStatus.PENDING
        assert response.usage == {"input_tokens": 10, "output_tokens": 5}

    @pytest.mark.asyncio
    async def test_http_error_is_returned_not_raised(self, config):
        model = _with_transport(
            AnthropicLanguageModel(config), lambda request: httpx.Response(529, text="overloaded")
        )
        response = await model.send(_messages()[:1], [])
        assert response.error is not None
        assert "529" in response.error
        assert response.text == ""


class TestOpenAI:
    @pytest.fixture
    def config(self):
        return LLMConfig(
            provider=LLMProvider.OPENAI,
            model="gpt-test",
            api_key="sk-test",
            base_url="http://localhost:9999/v1/",
            system_prompt="Be brief.",
        )

    @pytest.mark.asyncio
    async def test_request_shape(self, config):
        captured = {}

        def handler(request):
            captured["url"] = str(request.url)
            captured["auth"] = request.headers.get("authorization")
            captured["body"] = json.loads(request.content)
            return httpx.Response(200, json={"choices": [{"message": {"content": "Hi"}}]})

        model = _with_transport(OpenAILanguageModel(config), handler)
        response = await model.send(_messages(), [CALC_TOOL])

        assert response.text == "Hi"
        assert captured["url"] == "http://localhost:9999/v1/chat/completions"
        assert captured["auth"] == "Bearer sk-test"
        body = captured["body"]
        assert body["messages"][0] == {"role": "system", "content": "Be brief."}
        assert body["tools"][0]["function"]["name"] == "calculate"
        assert body["tools"][0]["function"]["parameters"] == CALC_TOOL.input_schema

    @pytest.mark.asyncio
    async def test_tool_calls_with_string_arguments(self, config):
        def handler(request):
            return httpx.Response(200, json={"choices": [{"message": {
                "content": None,
                "tool_calls": [
                    {"type": "function", "function": {"name": "calculate",
                                                      "arguments": '{"a": 1, "b": 2, "operation": "add",}'}},
                    {"type": "function", "function": {"name": "broken", "arguments": '{"a": '}},
                ],
            }}]})

        model = _with_transport(OpenAILanguageModel(config), handler)
        response = await model.send(_messages()[:1], [CALC_TOOL])

        assert response.text == ""
        good, bad = response.structured_calls
        assert good.arguments == {"a": 1, "b": 2, "operation": "add"}
        assert good.status is ToolCallStatus.PENDING
        assert bad.status is ToolCallStatus.ERROR
        assert "Invalid arguments for tool broken" in bad.error

    @pytest.mark.asyncio
    async def test_transport_error_is_returned(self, config):
        def handler(request):
            raise httpx.ConnectError("connection refused")

        model = _with_transport(OpenAILanguageModel(config), handler)
        response = await model.send(_messages()[:1], [])
        assert "connection refused" in response.error


class TestEchoModel:
    @pytest.mark.asyncio
    async def test_echoes_user_text(self):
        model = EchoLanguageModel()
        response = await model.send(_messages()[:1], [])
        assert response.text == "What is 25 * 4?"

    @pytest.mark.asyncio
    async def test_summarizes_tool_results(self):
        response = await EchoLanguageModel().send(_messages()[:3], [])
        assert response.text == "The calculate tool returned: 100"

    @pytest.mark.asyncio
    async def test_acknowledges_system_notes(self):
        response = await EchoLanguageModel().send(_messages(), [])
        assert response.text == "Understood. Remember the units."


class TestFactory:
    def test_missing_key_falls_back_to_echo(self):
        model = create_language_model(LLMConfig(provider=LLMProvider.ANTHROPIC, model="x"))
        assert isinstance(model, EchoLanguageModel)

    @pytest.mark.asyncio
    async def test_provider_selection(self):
        anthropic = create_language_model(LLMConfig(provider=LLMProvider.ANTHROPIC, model="x", api_key="k"))
        openai = create_language_model(LLMConfig(provider=LLMProvider.OPENAI, model="x", api_key="k"))
        assert isinstance(anthropic, AnthropicLanguageModel)
        assert isinstance(openai, OpenAILanguageModel)
        await anthropic.close()
        await openai.close()
