"""
Test configuration and shared fixtures for MCP chat gateway tests.

The fakes here stand in for the two external collaborators: the tool server
transport (an in-memory calculator server) and the language model (a
scripted sequence of replies).
"""

from typing import Any, Dict, List, Optional, Sequence

import pytest

from mcp_chat_gateway.models.config import SpawnSpec
from mcp_chat_gateway.models.conversation import ConversationMessage
from mcp_chat_gateway.models.tool import ToolDescriptor
from mcp_chat_gateway.services.approval_gate import ApprovalGate
from mcp_chat_gateway.services.connection_registry import ConnectionRegistry
from mcp_chat_gateway.services.conversation import ConversationStore
from mcp_chat_gateway.services.error_handler import ConnectionError, ToolExecutionError
from mcp_chat_gateway.services.llm_client import LLMResponse
from mcp_chat_gateway.services.orchestrator import ToolExecutionOrchestrator
from mcp_chat_gateway.services.response_parser import ResponseParser
from mcp_chat_gateway.services.schema_compiler import SchemaCompiler
from mcp_chat_gateway.services.tool_server_client import ToolCallOutcome

CALCULATOR_SCHEMA = {
    "type": "object",
    "properties": {
        "a": {"type": "number", "description": "First operand"},
        "b": {"type": "number", "description": "Second operand"},
        "operation": {"type": "string", "enum": ["add", "subtract", "multiply", "divide"]},
    },
    "required": ["a", "b", "operation"],
}


def _calculate(arguments: Dict[str, Any]) -> ToolCallOutcome:
    a, b, op = arguments["a"], arguments["b"], arguments["operation"]
    if op == "divide" and b == 0:
        return ToolCallOutcome(is_error=True, content=[{"type": "text", "text": "Division by zero"}])
    value = {"add": a + b, "subtract": a - b, "multiply": a * b, "divide": a / b if b else 0}[op]
    if isinstance(value, float) and value.is_integer():
        value = int(value)
    return ToolCallOutcome(is_error=False, content=[{"type": "text", "text": str(value)}])


class FakeHandle:
    def __init__(self, spawn_spec: SpawnSpec, serial: int):
        self.spawn_spec = spawn_spec
        self.serial = serial
        self.closed = False


class FakeToolServerClient:
    """In-memory transport: every spawn spec whose command is known serves a fixed tool list."""

    def __init__(self, tools_by_command: Optional[Dict[str, List[Dict[str, Any]]]] = None):
        self.tools_by_command = tools_by_command or {
            "calc-server": [
                {"name": "calculate", "description": "Perform arithmetic", "inputSchema": CALCULATOR_SCHEMA}
            ],
        }
        self.handlers = {"calculate": _calculate}
        self.connect_failures = 0
        self.connect_calls = 0
        self.call_log: List[tuple] = []
        self.handles: List[FakeHandle] = []
        self.raise_on_call: Optional[Exception] = None

    async def connect(self, spawn_spec: SpawnSpec) -> FakeHandle:
        self.connect_calls += 1
        if self.connect_failures > 0:
            self.connect_failures -= 1
            raise ConnectionError(f"Failed to start {spawn_spec.describe()}")
        if spawn_spec.command not in self.tools_by_command:
            raise ConnectionError(f"Command not found: {spawn_spec.command}")
        handle = FakeHandle(spawn_spec, len(self.handles))
        self.handles.append(handle)
        return handle

    async def list_tools(self, handle: FakeHandle, server_id: str) -> List[ToolDescriptor]:
        return [
            ToolDescriptor.from_mcp(tool, server_id)
            for tool in self.tools_by_command[handle.spawn_spec.command]
        ]

    async def call_tool(self, handle: FakeHandle, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        self.call_log.append((name, dict(arguments)))
        if self.raise_on_call is not None:
            raise self.raise_on_call
        handler = self.handlers.get(name)
        if handler is None:
            raise ToolExecutionError(f"Unknown tool {name}")
        return handler(arguments)

    async def close(self, handle: FakeHandle) -> None:
        handle.closed = True


class ScriptedLanguageModel:
    """Replays canned replies; once the script runs out it summarizes the last turn."""

    def __init__(self, replies: Optional[Sequence[Any]] = None):
        self.replies = list(replies or [])
        self.requests: List[List[ConversationMessage]] = []
        self.closed = False

    async def send(self, messages, tools) -> LLMResponse:
        self.requests.append(list(messages))
        if self.replies:
            reply = self.replies.pop(0)
            return reply if isinstance(reply, LLMResponse) else LLMResponse(text=reply, model="scripted")
        return LLMResponse(text=f"Noted: {messages[-1].content}", model="scripted")

    async def close(self) -> None:
        self.closed = True


CALC_SPEC = SpawnSpec(command="calc-server", args=["--stdio"])


@pytest.fixture
def fake_client():
    """In-memory tool server transport"""
    return FakeToolServerClient()


@pytest.fixture
def registry(fake_client):
    """Connection registry with instant retries"""
    return ConnectionRegistry(fake_client, max_reconnect_attempts=2, reconnect_base_delay=0)


@pytest.fixture
def calc_spec():
    return CALC_SPEC


@pytest.fixture
def approval_gate():
    """Auto-approving gate"""
    return ApprovalGate()


@pytest.fixture
def scripted_model():
    return ScriptedLanguageModel()


@pytest.fixture
def make_orchestrator(registry, approval_gate):
    """Factory building an orchestrator around a scripted language model"""

    def factory(replies=None, **kwargs) -> ToolExecutionOrchestrator:
        return ToolExecutionOrchestrator(
            registry=registry,
            approval_gate=kwargs.pop("gate", approval_gate),
            parser=kwargs.pop("parser", ResponseParser()),
            compiler=SchemaCompiler(),
            language_model=ScriptedLanguageModel(replies),
            conversations=ConversationStore(),
            **kwargs,
        )

    return factory
