"""Language model adapters.

Each adapter turns a conversation plus the available tools into one vendor
request and hands back an ``LLMResponse``: the assistant text and any
structured tool calls the vendor returned. Vendor quirks stay in here.
"""

import json
import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Dict, List, Optional, Protocol, Sequence

import httpx

from ..models.conversation import ConversationMessage, Role
from ..models.tool import ToolCall, ToolCallSource, ToolDescriptor
from .json_repair import JSONRepairError, loads_lenient

logger = logging.getLogger(__name__)


class LLMProvider(Enum):
    """Supported LLM providers."""
    ANTHROPIC = "anthropic"
    OPENAI = "openai"
    ECHO = "echo"


DEFAULT_MODELS = {
    LLMProvider.ANTHROPIC: "claude-3-7-sonnet-latest",
    LLMProvider.OPENAI: "gpt-4o-mini",
    LLMProvider.ECHO: "echo",
}

DEFAULT_BASE_URLS = {
    LLMProvider.ANTHROPIC: "https://api.anthropic.com/v1",
    LLMProvider.OPENAI: "https://api.openai.com/v1",
}

ANTHROPIC_VERSION = "2023-06-01"


@dataclass
class LLMConfig:
    """Configuration for an LLM provider."""
    provider: LLMProvider
    model: str
    api_key: Optional[str] = None
    base_url: Optional[str] = None
    max_tokens: int = 1000
    temperature: Optional[float] = 0.7
    timeout: float = 60.0
    system_prompt: Optional[str] = None


@dataclass
class LLMResponse:
    """Response from a language model: text and/or structured tool calls."""
    text: str = ""
    structured_calls: List[ToolCall] = field(default_factory=list)
    model: str = ""
    usage: Dict[str, Any] = field(default_factory=dict)
    error: Optional[str] = None


class LanguageModel(Protocol):
    async def send(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> LLMResponse: ...

    async def close(self) -> None: ...


def _tool_result_text(message: ConversationMessage) -> str:
    if message.tool_name:
        return f"Result of tool {message.tool_name}:\n{message.content}"
    return message.content


def _merge_turns(turns: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Join consecutive same-role turns; both vendors want alternating roles."""
    merged: List[Dict[str, Any]] = []
    for turn in turns:
        if merged and merged[-1]["role"] == turn["role"]:
            merged[-1] = {"role": turn["role"], "content": f"{merged[-1]['content']}\n\n{turn['content']}"}
        else:
            merged.append(dict(turn))
    return merged


def _structured_call(name: str, raw_arguments: Any) -> ToolCall:
    """Tool call from a vendor payload; string arguments are parsed leniently."""
    if isinstance(raw_arguments, str):
        try:
            raw_arguments, _ = loads_lenient(raw_arguments or "{}")
        except JSONRepairError as e:
            call = ToolCall(name=name, source=ToolCallSource.STRUCTURED)
            return call.fail(f"Invalid arguments for tool {name}: {e.reason}")
    if not isinstance(raw_arguments, dict):
        raw_arguments = {}
    return ToolCall(name=name, arguments=raw_arguments, source=ToolCallSource.STRUCTURED)


class HTTPLanguageModel:
    """Shared request plumbing for HTTP vendor APIs."""

    def __init__(self, config: LLMConfig):
        self.config = config
        self.base_url = (config.base_url or DEFAULT_BASE_URLS[config.provider]).rstrip("/")
        self.client = httpx.AsyncClient(
            timeout=config.timeout,
            headers={"User-Agent": "MCP-Chat-Gateway/0.1.0"}
        )

    def _headers(self) -> Dict[str, str]:
        raise NotImplementedError

    def _endpoint(self) -> str:
        raise NotImplementedError

    def _format_request(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> Dict[str, Any]:
        raise NotImplementedError

    def _parse_response(self, response_data: Dict[str, Any]) -> LLMResponse:
        raise NotImplementedError

    async def send(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> LLMResponse:
        """Complete one turn. Transport and HTTP failures come back as ``error``."""
        try:
            payload = self._format_request(messages, tools)
            endpoint = self._endpoint()
            logger.debug(f"Making request to {self.config.provider.value}: {endpoint}")

            response = await self.client.post(endpoint, json=payload, headers=self._headers())
            response.raise_for_status()
            llm_response = self._parse_response(response.json())

            logger.info(
                f"Completed request to {self.config.provider.value} - tokens: {llm_response.usage}, "
                f"tool calls: {[c.name for c in llm_response.structured_calls]}"
            )
            return llm_response

        except httpx.HTTPStatusError as e:
            error_msg = f"HTTP error {e.response.status_code} from {self.config.provider.value}: {e.response.text}"
            logger.error(error_msg)
            return LLMResponse(model=self.config.model, error=error_msg)

        except Exception as e:
            error_msg = f"Error calling {self.config.provider.value}: {str(e)}"
            logger.error(error_msg)
            return LLMResponse(model=self.config.model, error=error_msg)

    async def close(self) -> None:
        """Close the HTTP client."""
        await self.client.aclose()


class AnthropicLanguageModel(HTTPLanguageModel):
    """Anthropic Messages API."""

    def _headers(self) -> Dict[str, str]:
        return {
            "x-api-key": self.config.api_key or "",
            "anthropic-version": ANTHROPIC_VERSION,
            "Content-Type": "application/json",
        }

    def _endpoint(self) -> str:
        return f"{self.base_url}/messages"

    def _format_request(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> Dict[str, Any]:
        turns = []
        for msg in messages:
            if msg.role is Role.ASSISTANT:
                turns.append({"role": "assistant", "content": msg.content})
            elif msg.role is Role.TOOL_RESULT:
                turns.append({"role": "user", "content": _tool_result_text(msg)})
            else:
                # System notes happen mid-conversation; they reach the model as user context
                turns.append({"role": "user", "content": msg.content})

        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": _merge_turns(turns),
            "max_tokens": self.config.max_tokens,
        }
        if self.config.system_prompt:
            payload["system"] = self.config.system_prompt
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        if tools:
            payload["tools"] = [
                {"name": t.name, "description": t.description or "", "input_schema": t.input_schema or {"type": "object"}}
                for t in tools
            ]
        return payload

    def _parse_response(self, response_data: Dict[str, Any]) -> LLMResponse:
        texts: List[str] = []
        calls: List[ToolCall] = []
        for block in response_data.get("content", []):
            if block.get("type") == "text":
                texts.append(block.get("text", ""))
            elif block.get("type") == "tool_use":
                calls.append(_structured_call(block.get("name", ""), block.get("input")))
        return LLMResponse(
            text="".join(texts),
            structured_calls=calls,
            model=response_data.get("model", self.config.model),
            usage=response_data.get("usage", {}),
        )


class OpenAILanguageModel(HTTPLanguageModel):
    """OpenAI-compatible Chat Completions API."""

    def _headers(self) -> Dict[str, str]:
        headers = {"Content-Type": "application/json"}
        if self.config.api_key:
            headers["Authorization"] = f"Bearer {self.config.api_key}"
        return headers

    def _endpoint(self) -> str:
        return f"{self.base_url}/chat/completions"

    def _format_request(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> Dict[str, Any]:
        turns = []
        if self.config.system_prompt:
            turns.append({"role": "system", "content": self.config.system_prompt})
        for msg in messages:
            if msg.role is Role.TOOL_RESULT:
                turns.append({"role": "user", "content": _tool_result_text(msg)})
            else:
                turns.append({"role": msg.role.value, "content": msg.content})

        payload: Dict[str, Any] = {
            "model": self.config.model,
            "messages": _merge_turns(turns),
            "max_tokens": self.config.max_tokens,
        }
        if self.config.temperature is not None:
            payload["temperature"] = self.config.temperature
        if tools:
            payload["tools"] = [
                {
                    "type": "function",
                    "function": {
                        "name": t.name,
                        "description": t.description or "",
                        "parameters": t.input_schema or {"type": "object", "properties": {}},
                    },
                }
                for t in tools
            ]
        return payload

    def _parse_response(self, response_data: Dict[str, Any]) -> LLMResponse:
        choices = response_data.get("choices") or [{}]
        message = choices[0].get("message", {}) or {}
        calls = [
            _structured_call(tc.get("function", {}).get("name", ""), tc.get("function", {}).get("arguments"))
            for tc in message.get("tool_calls") or []
            if tc.get("type", "function") == "function"
        ]
        return LLMResponse(
            text=message.get("content") or "",
            structured_calls=calls,
            model=response_data.get("model", self.config.model),
            usage=response_data.get("usage", {}),
        )


class EchoLanguageModel:
    """Offline stand-in that answers without any vendor API.

    User text is echoed back, so a message containing a tool call shorthand
    such as ``[Calling tool add with args {"a": 1}]`` runs through the full
    pipeline. Tool results are summarized.
    """

    def __init__(self, config: Optional[LLMConfig] = None):
        self.config = config or LLMConfig(provider=LLMProvider.ECHO, model=DEFAULT_MODELS[LLMProvider.ECHO])

    async def send(
        self, messages: Sequence[ConversationMessage], tools: Sequence[ToolDescriptor]
    ) -> LLMResponse:
        last = messages[-1] if messages else None
        if last is None:
            text = "Hello! No language model is configured; I will echo what you send."
        elif last.role is Role.TOOL_RESULT:
            text = f"The {last.tool_name or 'tool'} tool returned: {last.content}"
        elif last.role is Role.SYSTEM:
            text = f"Understood. {last.content}"
        else:
            text = last.content
        return LLMResponse(text=text, model=self.config.model)

    async def close(self) -> None:
        return None


def create_language_model(config: LLMConfig) -> LanguageModel:
    """Adapter for ``config.provider``; falls back to echo without an API key."""
    if config.provider is LLMProvider.ECHO:
        return EchoLanguageModel(config)
    if not config.api_key:
        logger.warning(f"No API key configured for {config.provider.value}; using the offline echo model")
        return EchoLanguageModel(LLMConfig(provider=LLMProvider.ECHO, model=DEFAULT_MODELS[LLMProvider.ECHO]))
    if config.provider is LLMProvider.ANTHROPIC:
        return AnthropicLanguageModel(config)
    return OpenAILanguageModel(config)


def describe_tools(tools: Sequence[ToolDescriptor]) -> str:
    """Compact JSON listing of tools, used in log lines."""
    return json.dumps([{"name": t.name, "server": t.server_id} for t in tools])
