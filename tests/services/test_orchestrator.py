"""Tests for the tool execution orchestrator"""

import pytest

from mcp_chat_gateway.models.conversation import Role
from mcp_chat_gateway.models.tool import ToolCall, ToolCallStatus
from mcp_chat_gateway.services.approval_gate import ApprovalGate, ApprovalMode
from mcp_chat_gateway.services.error_handler import ToolExecutionError
from mcp_chat_gateway.services.llm_client import LLMResponse
from mcp_chat_gateway.services.orchestrator import rejection_note

MULTIPLY = '[Calling tool calculate with args {"a": 25, "b": 4, "operation": "multiply"}]'


class TestChatPipeline:
    """Tool calls found in model output run to completion"""

    @pytest.mark.asyncio
    async def test_end_to_end_calculation(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator([f"I will calculate that. {MULTIPLY}"])

        response = await orchestrator.chat("What is 25 * 4?")

        [call] = response.tool_calls
        assert call.name == "calculate"
        assert call.status is ToolCallStatus.SUCCESS
        assert call.server_id == "calc"
        assert call.result == [{"type": "text", "text": "100"}]
        assert "100" in response.content
        assert response.content.startswith("I will calculate that. [Tool call: calculate]")
        assert fake_client.call_log == [("calculate", {"a": 25, "b": 4, "operation": "multiply"})]

        roles = [m.role for m in orchestrator.conversations.history()]
        assert roles == [Role.USER, Role.ASSISTANT, Role.TOOL_RESULT, Role.ASSISTANT]
        tool_turn = orchestrator.conversations.history()[2]
        assert tool_turn.tool_call_id == call.id
        assert tool_turn.content == "100"

    @pytest.mark.asyncio
    async def test_structured_calls_are_used_directly(self, registry, calc_spec, make_orchestrator):
        await registry.connect("calc", calc_spec)
        structured = ToolCall(name="calculate", arguments={"a": 2, "b": 3, "operation": "add"})
        orchestrator = make_orchestrator([LLMResponse(text="", structured_calls=[structured]), "It is 5."])

        response = await orchestrator.chat("2 + 3?")

        assert response.tool_calls == [structured]
        assert structured.status is ToolCallStatus.SUCCESS
        assert response.content == "It is 5."
        assistant_turn = orchestrator.conversations.history()[1]
        assert assistant_turn.content.startswith("[Calling tool calculate with args")

    @pytest.mark.asyncio
    async def test_calls_run_sequentially_in_order(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator([
            '[Calling tool calculate with args {"a": 1, "b": 2, "operation": "add"}] '
            '[Calling tool calculate with args {"a": 3, "b": 4, "operation": "multiply"}]',
            "First done.",
            "Second done.",
        ])

        response = await orchestrator.chat("Do both")

        assert [c.status for c in response.tool_calls] == [ToolCallStatus.SUCCESS, ToolCallStatus.SUCCESS]
        assert [args["operation"] for _, args in fake_client.call_log] == ["add", "multiply"]
        assert response.content.endswith("First done.\n\nSecond done.")

    @pytest.mark.asyncio
    async def test_follow_up_calls_are_executed(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator([
            '[Calling tool calculate with args {"a": 1, "b": 1, "operation": "add"}]',
            '[Calling tool calculate with args {"a": 2, "b": 2, "operation": "multiply"}]',
            "All done.",
        ])

        response = await orchestrator.chat("Chain them")

        assert len(response.tool_calls) == 2
        assert len(fake_client.call_log) == 2
        assert response.content.endswith("All done.")

    @pytest.mark.asyncio
    async def test_per_turn_limit(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator(
            [f"{MULTIPLY} {MULTIPLY}"], max_tool_calls_per_turn=1
        )

        response = await orchestrator.chat("Twice")

        first, second = response.tool_calls
        assert first.status is ToolCallStatus.SUCCESS
        assert second.status is ToolCallStatus.ERROR
        assert "limit" in second.error
        assert len(fake_client.call_log) == 1

    @pytest.mark.asyncio
    async def test_recorded_calls_are_not_re_executed(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator([
            'Tool call: calculate Arguments: {"a": 1, "b": 1, "operation": "add"} Result: {"success": true}'
        ])

        response = await orchestrator.chat("Already ran")

        assert response.tool_calls[0].status is ToolCallStatus.SUCCESS
        assert fake_client.call_log == []

    @pytest.mark.asyncio
    async def test_plain_reply(self, make_orchestrator):
        orchestrator = make_orchestrator(["Hello there."])
        response = await orchestrator.chat("Hi")
        assert response.content == "Hello there."
        assert response.tool_calls == []

    @pytest.mark.asyncio
    async def test_language_model_error(self, make_orchestrator):
        orchestrator = make_orchestrator([LLMResponse(error="HTTP error 500")])

        response = await orchestrator.chat("Hi")

        assert response.content == "[Error from language model: HTTP error 500]"
        assert [m.role for m in orchestrator.conversations.history()] == [Role.USER]

    @pytest.mark.asyncio
    async def test_sessions_are_isolated(self, make_orchestrator):
        orchestrator = make_orchestrator(["one", "two"])
        await orchestrator.chat("first", session_id="a")
        await orchestrator.chat("second", session_id="b")

        assert [m.content for m in orchestrator.conversations.history("a")] == ["first", "one"]
        assert [m.content for m in orchestrator.conversations.history("b")] == ["second", "two"]


class TestToolCallFailures:
    """Every failure ends as a terminal tool call, never an exception"""

    @pytest.mark.asyncio
    async def test_tool_not_found(self, make_orchestrator):
        orchestrator = make_orchestrator(['[Calling tool weather with args {"city": "Oslo"}]', "Sorry."])

        response = await orchestrator.chat("Weather?")

        [call] = response.tool_calls
        assert call.status is ToolCallStatus.ERROR
        assert call.error == "Tool not found: weather"
        tool_turn = orchestrator.conversations.history()[2]
        assert tool_turn.role is Role.TOOL_RESULT
        assert tool_turn.content == "Error executing tool weather: Tool not found: weather"
        assert response.content.endswith("Sorry.")

    @pytest.mark.asyncio
    async def test_rejected_call(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        gate = ApprovalGate(mode=ApprovalMode.EXTERNAL, timeout=5, decision_callback=lambda approval: False)
        orchestrator = make_orchestrator([MULTIPLY, "Okay, I won't."], gate=gate)

        response = await orchestrator.chat("What is 25 * 4?")

        [call] = response.tool_calls
        assert call.status is ToolCallStatus.REJECTED
        assert call.result == {"success": False, "error": rejection_note("calculate")}
        assert fake_client.call_log == []
        system_turn = orchestrator.conversations.history()[2]
        assert system_turn.role is Role.SYSTEM
        assert system_turn.content == "Tool call to calculate was not approved by the user."

    @pytest.mark.asyncio
    async def test_approval_timeout_rejects(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        gate = ApprovalGate(mode=ApprovalMode.EXTERNAL, timeout=0.05)
        orchestrator = make_orchestrator([MULTIPLY], gate=gate)

        response = await orchestrator.chat("What is 25 * 4?")

        assert response.tool_calls[0].status is ToolCallStatus.REJECTED
        assert fake_client.call_log == []

    @pytest.mark.asyncio
    async def test_validation_error(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator(
            ['[Calling tool calculate with args {"a": "5", "b": 4, "operation": "add"}]']
        )

        response = await orchestrator.chat("5 + 4?")

        [call] = response.tool_calls
        assert call.status is ToolCallStatus.ERROR
        assert call.error.startswith("Invalid input for tool calculate")
        assert call.result["violations"][0]["path"] == "a"
        assert fake_client.call_log == []

    @pytest.mark.asyncio
    async def test_missing_required_argument(self, registry, calc_spec, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator(['[Calling tool calculate with args {"b": 4, "operation": "add"}]'])

        response = await orchestrator.chat("? + 4")

        assert "'a' is a required property" in response.tool_calls[0].error

    @pytest.mark.asyncio
    async def test_execution_error(self, registry, calc_spec, fake_client, make_orchestrator):
        await registry.connect("calc", calc_spec)
        fake_client.raise_on_call = ToolExecutionError("server crashed")
        orchestrator = make_orchestrator([MULTIPLY])

        response = await orchestrator.chat("What is 25 * 4?")

        [call] = response.tool_calls
        assert call.status is ToolCallStatus.ERROR
        assert call.error == "server crashed"
        tool_turn = orchestrator.conversations.history()[2]
        assert tool_turn.content == "Error executing tool calculate: server crashed"

    @pytest.mark.asyncio
    async def test_tool_reported_error(self, registry, calc_spec, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator(
            ['[Calling tool calculate with args {"a": 1, "b": 0, "operation": "divide"}]']
        )

        response = await orchestrator.chat("1 / 0?")

        [call] = response.tool_calls
        assert call.status is ToolCallStatus.ERROR
        assert call.error == "Division by zero"


class TestHandleToolCall:
    @pytest.mark.asyncio
    async def test_only_pending_calls_run(self, make_orchestrator):
        orchestrator = make_orchestrator()
        call = ToolCall(name="calculate", status=ToolCallStatus.SUCCESS)

        with pytest.raises(ValueError):
            await orchestrator.handle_tool_call(call, orchestrator.conversations.get())

    @pytest.mark.asyncio
    async def test_handle_single_call(self, registry, calc_spec, make_orchestrator):
        await registry.connect("calc", calc_spec)
        orchestrator = make_orchestrator(["Done."])
        conversation = orchestrator.conversations.get("direct")
        call = ToolCall(name="calculate", arguments={"a": 6, "b": 7, "operation": "multiply"})

        result = await orchestrator.handle_tool_call(call, conversation)

        assert result.status is ToolCallStatus.SUCCESS
        assert [m.role for m in conversation.messages] == [Role.TOOL_RESULT, Role.ASSISTANT]
        assert conversation.messages[0].content == "42"
