"""Transport boundary for talking to MCP tool servers."""

import asyncio
import json
import logging
import os
from contextlib import AsyncExitStack
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Protocol

from mcp import ClientSession
from mcp.client.stdio import StdioServerParameters, stdio_client

from ..models.config import SpawnSpec
from ..models.tool import ToolDescriptor
from .error_handler import ConnectionError, ToolExecutionError

logger = logging.getLogger(__name__)


@dataclass
class ToolCallOutcome:
    """Raw result of one ``tools/call`` request."""

    is_error: bool
    content: Any

    @property
    def text(self) -> str:
        """Concatenated text parts, or the JSON encoding of the content."""
        if isinstance(self.content, list):
            parts = [
                item.get("text", "") for item in self.content
                if isinstance(item, dict) and item.get("type") == "text"
            ]
            if parts:
                return "\n".join(parts)
        if isinstance(self.content, str):
            return self.content
        return json.dumps(self.content, default=str)


class ToolServerClient(Protocol):
    """Capability the connection registry needs from a transport."""

    async def connect(self, spawn_spec: SpawnSpec) -> Any: ...

    async def list_tools(self, handle: Any, server_id: str) -> List[ToolDescriptor]: ...

    async def call_tool(self, handle: Any, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome: ...

    async def close(self, handle: Any) -> None: ...


@dataclass
class StdioHandle:
    """An initialized MCP session over a child process's stdio."""

    spawn_spec: SpawnSpec
    session: ClientSession
    stack: AsyncExitStack = field(repr=False)


class StdioToolServerClient:
    """``ToolServerClient`` backed by the MCP Python SDK's stdio transport."""

    def __init__(self, connect_timeout: float = 60.0, call_timeout: Optional[float] = 120.0):
        self.connect_timeout = connect_timeout
        self.call_timeout = call_timeout

    async def connect(self, spawn_spec: SpawnSpec) -> StdioHandle:
        # Inherit the parent environment so npx/node/python resolve on PATH
        env = dict(os.environ)
        env.update(spawn_spec.env)
        env.setdefault("PYTHONUNBUFFERED", "1")
        env.setdefault("NO_COLOR", "1")

        server_params = StdioServerParameters(
            command=spawn_spec.command,
            args=list(spawn_spec.args),
            env=env,
        )

        stack = AsyncExitStack()
        try:
            logger.info(f"Spawning MCP server: {spawn_spec.describe()}")
            read_stream, write_stream = await asyncio.wait_for(
                stack.enter_async_context(stdio_client(server_params)), timeout=self.connect_timeout
            )
            session = await stack.enter_async_context(ClientSession(read_stream, write_stream))
            await asyncio.wait_for(session.initialize(), timeout=self.connect_timeout)
        except FileNotFoundError as e:
            await self._close_stack(stack, spawn_spec)
            raise ConnectionError(
                f"Command not found: {spawn_spec.command}", details={"command": spawn_spec.command}
            ) from e
        except asyncio.TimeoutError as e:
            await self._close_stack(stack, spawn_spec)
            raise ConnectionError(
                f"Timed out after {self.connect_timeout:g}s starting {spawn_spec.describe()}"
            ) from e
        except Exception as e:
            await self._close_stack(stack, spawn_spec)
            raise ConnectionError(f"Failed to start {spawn_spec.describe()}: {e}") from e

        return StdioHandle(spawn_spec=spawn_spec, session=session, stack=stack)

    async def list_tools(self, handle: StdioHandle, server_id: str) -> List[ToolDescriptor]:
        try:
            response = await asyncio.wait_for(handle.session.list_tools(), timeout=self.connect_timeout)
        except Exception as e:
            raise ConnectionError(f"Tool discovery failed for {server_id}: {e}") from e
        tools = response.tools if hasattr(response, "tools") else []
        return [ToolDescriptor.from_mcp(tool, server_id) for tool in tools]

    async def call_tool(self, handle: StdioHandle, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        try:
            result = await asyncio.wait_for(
                handle.session.call_tool(name, arguments), timeout=self.call_timeout
            )
        except asyncio.TimeoutError as e:
            raise ToolExecutionError(f"Tool {name} timed out after {self.call_timeout:g}s") from e
        except Exception as e:
            raise ToolExecutionError(str(e) or type(e).__name__) from e

        content = [_dump_content(item) for item in (getattr(result, "content", None) or [])]
        structured = getattr(result, "structuredContent", None)
        if structured is not None and not content:
            content = structured
        return ToolCallOutcome(is_error=bool(getattr(result, "isError", False)), content=content)

    async def close(self, handle: StdioHandle) -> None:
        await self._close_stack(handle.stack, handle.spawn_spec)

    async def _close_stack(self, stack: AsyncExitStack, spawn_spec: SpawnSpec) -> None:
        try:
            await asyncio.wait_for(stack.aclose(), timeout=5)
        except asyncio.TimeoutError:
            logger.warning(f"Timeout closing stdio connection for {spawn_spec.describe()}")
        except RuntimeError as e:
            # Raised when the transport was opened from a different task
            if "cancel scope" in str(e).lower():
                logger.debug(f"Context created in different task for {spawn_spec.describe()}: {e}")
            else:
                raise


def _dump_content(item: Any) -> Any:
    if hasattr(item, "model_dump"):
        return item.model_dump(mode="json", exclude_none=True)
    return item
