"""Tool execution orchestrator: the chat loop around the tool-call pipeline."""

import json
import logging
from collections import deque
from typing import Deque, List, Optional, Sequence, Tuple

from ..models.conversation import ChatResponse
from ..models.tool import ToolCall, ToolCallStatus, ToolDescriptor
from .approval_gate import ApprovalGate
from .connection_registry import ConnectionRegistry
from .conversation import Conversation, ConversationStore
from .error_handler import ToolNotFoundError, ToolValidationError
from .llm_client import LanguageModel, LLMResponse, describe_tools
from .response_parser import ResponseParser
from .schema_compiler import SchemaCompiler

logger = logging.getLogger(__name__)

DEFAULT_MAX_TOOL_CALLS_PER_TURN = 10


def rejection_note(tool_name: str) -> str:
    return f"Tool call to {tool_name} was not approved by the user."


def tool_error_text(tool_name: str, message: str) -> str:
    return f"Error executing tool {tool_name}: {message}"


class ToolExecutionOrchestrator:
    """Runs each tool call through lookup, approval, validation and execution."""

    def __init__(
        self,
        registry: ConnectionRegistry,
        approval_gate: ApprovalGate,
        parser: ResponseParser,
        compiler: SchemaCompiler,
        language_model: LanguageModel,
        conversations: Optional[ConversationStore] = None,
        max_tool_calls_per_turn: int = DEFAULT_MAX_TOOL_CALLS_PER_TURN,
    ):
        self.registry = registry
        self.approval_gate = approval_gate
        self.parser = parser
        self.compiler = compiler
        self.language_model = language_model
        self.conversations = conversations or ConversationStore()
        self.max_tool_calls_per_turn = max_tool_calls_per_turn

    async def handle_tool_call(self, call: ToolCall, conversation: Conversation) -> ToolCall:
        """Drive one pending call to a terminal status and fold its outcome into the conversation."""
        call, _ = await self._run_tool_cycle(call, conversation)
        return call

    async def chat(self, message: str, session_id: Optional[str] = None) -> ChatResponse:
        """Process one user message, running every tool call it leads to in order."""
        conversation = self.conversations.get(session_id)
        async with conversation.lock:
            conversation.add_user(message)
            tools = self.registry.get_all_tools()
            logger.debug(f"Sending message with tools: {describe_tools(tools)}")

            response = await self.language_model.send(conversation.messages, tools)
            if response.error is None:
                conversation.add_assistant(_assistant_turn_text(response))
            text, calls = self._interpret(response, tools)

            content_parts: List[str] = [text] if text else []
            tool_calls: List[ToolCall] = list(calls)
            queue: Deque[ToolCall] = deque(c for c in calls if c.status is ToolCallStatus.PENDING)
            executed = 0

            while queue:
                call = queue.popleft()
                if executed >= self.max_tool_calls_per_turn:
                    call.fail(f"Tool call limit of {self.max_tool_calls_per_turn} per turn reached")
                    logger.warning(f"Skipping tool call {call.name}: per-turn limit reached")
                    continue
                executed += 1

                call, follow_up = await self._run_tool_cycle(call, conversation)
                follow_text, follow_calls = self._interpret(follow_up, self.registry.get_all_tools())
                if follow_text:
                    content_parts.append(follow_text)
                tool_calls.extend(follow_calls)
                queue.extend(c for c in follow_calls if c.status is ToolCallStatus.PENDING)

            return ChatResponse(content="\n\n".join(content_parts), tool_calls=tool_calls)

    async def _run_tool_cycle(self, call: ToolCall, conversation: Conversation) -> Tuple[ToolCall, LLMResponse]:
        self._execute_guard(call)
        found = self.registry.find_tool(call.name)

        if found is None:
            error = ToolNotFoundError(call.name)
            logger.warning(error.message)
            call.fail(error.message)
            conversation.add_tool_result(call.id, call.name, tool_error_text(call.name, error.message))
            return call, await self._follow_up(conversation)

        connection, tool = found
        call.server_id = connection.normalized_id

        approved = await self.approval_gate.request_approval(call.name, call.arguments)
        if not approved:
            note = rejection_note(call.name)
            call.advance(ToolCallStatus.REJECTED)
            call.result = {"success": False, "error": note}
            logger.info(note)
            conversation.add_system(note, tool_call_id=call.id)
            return call, await self._follow_up(conversation)

        call.advance(ToolCallStatus.APPROVED)
        await self._validate_and_execute(call, tool)

        if call.status is ToolCallStatus.SUCCESS:
            turn = _result_text(call.result)
        else:
            turn = tool_error_text(call.name, call.error or "unknown error")
        conversation.add_tool_result(call.id, call.name, turn)
        return call, await self._follow_up(conversation)

    async def _validate_and_execute(self, call: ToolCall, tool: ToolDescriptor) -> None:
        validation = self.compiler.compile(tool.input_schema).validate(call.arguments)
        if not validation.is_valid:
            error = ToolValidationError(call.name, validation.errors)
            logger.info(error.message)
            call.fail(
                error.message,
                result={
                    "success": False,
                    "error": error.message,
                    "violations": [v.model_dump() for v in validation.errors],
                },
            )
            return

        call.advance(ToolCallStatus.RUNNING)
        logger.debug(f"Executing {call.name} with arguments: {call.arguments}")
        try:
            outcome = await self.registry.call_tool(call.server_id, call.name, call.arguments)
        except Exception as e:
            message = str(e) or type(e).__name__
            logger.warning(tool_error_text(call.name, message))
            call.fail(message)
            return

        if outcome.is_error:
            logger.warning(f"Tool {call.name} reported an error: {outcome.text}")
            call.fail(outcome.text, result={"success": False, "error": outcome.text, "content": outcome.content})
            return

        call.advance(ToolCallStatus.SUCCESS)
        call.result = outcome.content
        logger.info(f"Tool {call.name} completed on {call.server_id}")

    async def _follow_up(self, conversation: Conversation) -> LLMResponse:
        response = await self.language_model.send(conversation.messages, self.registry.get_all_tools())
        if response.error is None:
            conversation.add_assistant(_assistant_turn_text(response))
        return response

    def _interpret(self, response: LLMResponse, tools: Sequence[ToolDescriptor]) -> Tuple[str, List[ToolCall]]:
        """Structured calls are used as-is; otherwise the text is parsed."""
        if response.error is not None:
            return f"[Error from language model: {response.error}]", []
        if response.structured_calls:
            return response.text, list(response.structured_calls)
        parsed = self.parser.extract(response.text, known_tools=[t.name for t in tools])
        return parsed.cleaned_text, parsed.tool_calls

    @staticmethod
    def _execute_guard(call: ToolCall) -> None:
        if call.status is not ToolCallStatus.PENDING:
            raise ValueError(f"Tool call {call.name} is {call.status.value}, expected pending")


def _result_text(result) -> str:
    if isinstance(result, list):
        parts = [item.get("text", "") for item in result if isinstance(item, dict) and item.get("type") == "text"]
        if parts:
            return "\n".join(parts)
    if isinstance(result, str):
        return result
    return json.dumps(result, default=str)


def _assistant_turn_text(response: LLMResponse) -> str:
    """Assistant text, plus a shorthand line per structured call so the transcript shows intent."""
    lines = [response.text] if response.text else []
    for call in response.structured_calls:
        lines.append(f"[Calling tool {call.name} with args {json.dumps(call.arguments, default=str)}]")
    return "\n".join(lines)
