"""Connection Registry for managing connections to multiple MCP tool servers."""

import asyncio
import logging
import sys
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Sequence, Tuple

from ..models.config import ServerConfig, SpawnSpec
from ..models.tool import ToolDescriptor
from .error_handler import (
    ConfigurationError,
    ConnectionError,
    ErrorHandler,
    ServerNotFoundError,
)
from .server_paths import ServerKind, ServerTarget, classify_server_path, normalize_server_id
from .tool_server_client import ToolCallOutcome, ToolServerClient

logger = logging.getLogger(__name__)


@dataclass
class Connection:
    """Bookkeeping for one logical tool server, keyed by its normalized id."""

    id: str
    normalized_id: str
    spawn_spec: SpawnSpec
    handle: Any = field(default=None, repr=False)
    tools: List[ToolDescriptor] = field(default_factory=list)
    connected: bool = False
    reconnect_attempts: int = 0


class ConnectionRegistry:
    """Owns every tool-server connection.

    Records are keyed solely by ``normalize_server_id``; the spelling a caller
    used is kept only for display. The aggregate tool list is recomputed from
    the records on every call.
    """

    def __init__(
        self,
        client: ToolServerClient,
        error_handler: Optional[ErrorHandler] = None,
        server_configs: Optional[Dict[str, ServerConfig]] = None,
        max_reconnect_attempts: int = 3,
        reconnect_base_delay: float = 1.0,
        python_executable: Optional[str] = None,
    ):
        self.client = client
        self.error_handler = error_handler or ErrorHandler()
        self.server_configs: Dict[str, ServerConfig] = dict(server_configs or {})
        self.max_reconnect_attempts = max_reconnect_attempts
        self.reconnect_base_delay = reconnect_base_delay
        self.python_executable = python_executable or sys.executable
        self._connections: Dict[str, Connection] = {}
        # normalized id -> the retry series currently allowed to run
        self._pending_connects: Dict[str, "asyncio.Future[Connection]"] = {}

    # Configuration

    def configure(self, server_id: str, config: ServerConfig) -> None:
        """Register (or replace) a configured server under its display id."""
        norm = normalize_server_id(server_id)
        for existing in [k for k in self.server_configs if normalize_server_id(k) == norm]:
            del self.server_configs[existing]
        self.server_configs[server_id] = config

    def get_server_config(self, server_id: str) -> Optional[Tuple[str, ServerConfig]]:
        """Configured ``(display_id, config)`` for any spelling of ``server_id``."""
        norm = normalize_server_id(server_id)
        for display_id, config in self.server_configs.items():
            if normalize_server_id(display_id) == norm:
                return display_id, config
        return None

    def resolve_target(self, path_or_id: str, extra_args: Sequence[str] = ()) -> ServerTarget:
        """Classify a path, package or configured id without connecting."""
        return classify_server_path(
            path_or_id,
            known_ids=self.server_configs.keys(),
            extra_args=extra_args,
            python_executable=self.python_executable,
        )

    # Lifecycle

    async def connect(self, server_id: str, spawn_spec: SpawnSpec) -> Connection:
        """Connect to a server and discover its tools, retrying with backoff.

        A connect for a server whose retry series is already running waits for
        that series instead of starting another one.

        Raises ``ConnectionError`` once every attempt has failed, or when the
        series was abandoned by a ``disconnect`` issued while it was running.
        """
        norm = normalize_server_id(server_id)
        existing = self._connections.get(norm)
        if existing is not None and existing.connected:
            logger.info(f"Already connected to server: {norm}")
            return existing

        in_flight = self._pending_connects.get(norm)
        if in_flight is not None:
            logger.info(f"Joining pending connection to server: {norm}")
            return await asyncio.shield(in_flight)

        series: "asyncio.Future[Connection]" = asyncio.get_running_loop().create_future()
        # Joiners may not exist; mark the outcome as retrieved either way
        series.add_done_callback(lambda f: f.cancelled() or f.exception())
        self._pending_connects[norm] = series
        try:
            record = await self._run_connect(server_id, norm, spawn_spec, series)
            series.set_result(record)
            return record
        except Exception as e:
            series.set_exception(e)
            raise
        finally:
            if self._pending_connects.get(norm) is series:
                del self._pending_connects[norm]
            if not series.done():
                series.cancel()

    async def _run_connect(
        self, server_id: str, norm: str, spawn_spec: SpawnSpec, series: "asyncio.Future[Connection]"
    ) -> Connection:
        existing = self._connections.get(norm)
        failures = 0

        def still_wanted() -> bool:
            return self._pending_connects.get(norm) is series

        def count_failure(attempt: int, delay: float, error: Exception) -> None:
            nonlocal failures
            failures = attempt
            record = self._connections.get(norm)
            if record is not None:
                record.reconnect_attempts = attempt

        async def attempt() -> Tuple[Any, List[ToolDescriptor]]:
            handle = await self.client.connect(spawn_spec)
            try:
                tools = await self.client.list_tools(handle, norm)
            except Exception:
                await self._close_handle(norm, handle)
                raise
            return handle, tools

        if existing is not None and existing.handle is not None:
            await self._close_handle(norm, existing.handle)
            existing.handle = None

        logger.info(f"Connecting to server: id={server_id}, normalized={norm}, command={spawn_spec.describe()}")
        try:
            handle, tools = await self.error_handler.retry_with_backoff(
                attempt,
                max_retries=self.max_reconnect_attempts,
                base_delay=self.reconnect_base_delay,
                should_continue=still_wanted,
                on_retry=count_failure,
                label=f"connect {norm}",
            )
        except Exception as e:
            record = self._connections.get(norm)
            if record is not None:
                record.connected = False
                record.tools = []
            self.error_handler.handle_error(norm, e, "connect")
            if not still_wanted():
                raise ConnectionError(f"Connection to server {norm} was abandoned: {e}") from e
            if isinstance(e, ConnectionError):
                raise
            raise ConnectionError(f"Failed to connect to server {norm}: {e}") from e

        if not still_wanted():
            # Disconnected while the handshake was in flight
            await self._close_handle(norm, handle)
            raise ConnectionError(f"Connection to server {norm} was abandoned")

        record = Connection(
            id=server_id,
            normalized_id=norm,
            spawn_spec=spawn_spec,
            handle=handle,
            tools=list(tools),
            connected=True,
            reconnect_attempts=failures,
        )
        self._connections[norm] = record
        self.error_handler.reset_error_tracking(norm)
        logger.info(f"Connected to server {norm} with tools: {[t.name for t in record.tools]}")
        return record

    async def connect_by_path_or_package(self, path_or_id: str, extra_args: Sequence[str] = ()) -> Connection:
        """Connect to a configured id, a script path or an npm package."""
        target = self.resolve_target(path_or_id, extra_args)

        if target.kind is ServerKind.KNOWN_ID:
            display_id, config = self.get_server_config(path_or_id)
            if not config.enabled:
                raise ConfigurationError(f'Server "{display_id}" is disabled in configuration')
            spec = config.to_spawn_spec()
            if extra_args:
                spec = SpawnSpec(command=spec.command, args=[*spec.args, *extra_args], env=spec.env)
            return await self.connect(display_id, spec)

        logger.info(f"Resolved {path_or_id!r} as {target.kind.value} server {target.server_id}")
        return await self.connect(target.server_id, target.spawn_spec)

    async def reconnect(self, server_id: str) -> Connection:
        """Close and re-open a known connection, refreshing its tools wholesale."""
        norm = normalize_server_id(server_id)
        record = self._connections.get(norm)
        if record is None:
            raise ServerNotFoundError(server_id)

        logger.info(f"Reconnecting to server: {norm}")
        if record.handle is not None:
            await self._close_handle(norm, record.handle)
            record.handle = None
        record.connected = False
        record.tools = []
        return await self.connect(record.id, record.spawn_spec)

    async def disconnect(self, server_id: str) -> bool:
        """Close and forget a server. Unknown ids are a no-op success."""
        norm = normalize_server_id(server_id)
        abandoned = self._pending_connects.pop(norm, None) is not None
        record = self._connections.pop(norm, None)

        if record is None:
            if abandoned:
                logger.info(f"Abandoned pending connection to server: {norm}")
            else:
                logger.debug(f"Disconnect of unknown server {norm} ignored")
            return True

        if record.handle is not None:
            await self._close_handle(norm, record.handle)
        logger.info(f"Disconnected from server: {norm}")
        return True

    async def disconnect_all(self) -> None:
        """Disconnect from all servers."""
        for norm in list(self._pending_connects.keys()) + list(self._connections.keys()):
            await self.disconnect(norm)

    # Queries

    def is_connected(self, server_id: str) -> bool:
        record = self._connections.get(normalize_server_id(server_id))
        return record is not None and record.connected

    def get_connection(self, server_id: str) -> Optional[Connection]:
        return self._connections.get(normalize_server_id(server_id))

    def list_connections(self) -> List[Connection]:
        return list(self._connections.values())

    def get_tools(self, server_id: str) -> List[ToolDescriptor]:
        record = self._connections.get(normalize_server_id(server_id))
        if record is None or not record.connected:
            return []
        return list(record.tools)

    def get_all_tools(self) -> List[ToolDescriptor]:
        """Tools of every connected server, deduplicated by name (first seen wins)."""
        seen: Dict[str, ToolDescriptor] = {}
        for record in self._connections.values():
            if not record.connected:
                continue
            for tool in record.tools:
                if tool.name in seen:
                    logger.debug(
                        f"Tool {tool.name} from {record.normalized_id} shadowed by {seen[tool.name].server_id}"
                    )
                    continue
                seen[tool.name] = tool
        return list(seen.values())

    def find_tool(self, name: str) -> Optional[Tuple[Connection, ToolDescriptor]]:
        for record in self._connections.values():
            if not record.connected:
                continue
            for tool in record.tools:
                if tool.name == name:
                    return record, tool
        return None

    # Execution

    async def call_tool(self, server_id: str, name: str, arguments: Dict[str, Any]) -> ToolCallOutcome:
        """Route a tool call to its server. Transport errors propagate."""
        norm = normalize_server_id(server_id)
        record = self._connections.get(norm)
        if record is None:
            raise ServerNotFoundError(server_id)
        if not record.connected or record.handle is None:
            raise ConnectionError(f"Server {norm} is not connected")
        if self.error_handler.should_circuit_break(norm):
            raise ConnectionError(f"Server {norm} is failing too often; reconnect it before calling tools")

        logger.info(f"Calling tool {name} on server {norm}")
        logger.debug(f"Tool {name} arguments: {arguments}")
        try:
            return await self.client.call_tool(record.handle, name, arguments)
        except Exception as e:
            self.error_handler.handle_error(norm, e, f"call_tool {name}")
            raise

    async def _close_handle(self, norm: str, handle: Any) -> None:
        try:
            await self.client.close(handle)
        except Exception as e:
            logger.error(f"Error closing connection for {norm}: {e}")
