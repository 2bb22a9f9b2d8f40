"""Tool server API endpoints"""

import logging

from fastapi import APIRouter, Depends, HTTPException

from ..models.config import ServerConfig
from ..services.config_manager import ServerConfigManager
from ..services.connection_registry import Connection, ConnectionRegistry
from ..services.server_paths import (
    ServerKind,
    describe_server,
    display_name,
    normalize_server_id,
    target_to_config,
)
from .dependencies import get_config_manager, get_registry, raise_http_error
from .models import (
    ConnectServerRequest,
    ServerActionResponse,
    ServerIdRequest,
    ServerInfo,
    ToolInfo,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/servers", tags=["servers"])


def _server_info(
    server_id: str,
    registry: ConnectionRegistry,
    config: ServerConfig | None = None,
    message: str | None = None,
) -> ServerInfo:
    enabled = config.enabled if config is not None else True
    connected = registry.is_connected(server_id) and enabled
    tools = registry.get_tools(server_id) if connected else []
    return ServerInfo(
        id=server_id,
        name=display_name(server_id),
        description=describe_server(server_id, config),
        enabled=enabled,
        connected=connected,
        tools=[ToolInfo.from_descriptor(t) for t in tools],
        message=message,
    )


@router.get("", response_model=list[ServerInfo], operation_id="list_servers")
async def list_servers(
    registry: ConnectionRegistry = Depends(get_registry),
    config_manager: ServerConfigManager = Depends(get_config_manager),
) -> list[ServerInfo]:
    """List configured servers plus any connected ad-hoc ones."""
    servers = [
        _server_info(server_id, registry, config)
        for server_id, config in config_manager.servers.items()
    ]
    configured = {normalize_server_id(s) for s in config_manager.servers}
    servers.extend(
        _server_info(connection.id, registry)
        for connection in registry.list_connections()
        if connection.normalized_id not in configured
    )
    return servers


@router.post("/connect", response_model=ServerActionResponse, operation_id="connect_server")
async def connect_server(
    request: ConnectServerRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config_manager: ServerConfigManager = Depends(get_config_manager),
) -> ServerActionResponse:
    """Connect a configured server by id, or a new server by script path or package."""
    logger.info(f"Connect request received: serverId={request.server_id}, serverPath={request.server_path}")
    try:
        if request.server_path:
            target = registry.resolve_target(request.server_path, request.args)
        else:
            entry = config_manager.get(request.server_id)
            if entry is None:
                raise HTTPException(
                    status_code=404, detail=f'Server "{request.server_id}" not found in configuration'
                )
            server_id, config = entry
            if not config.enabled:
                raise HTTPException(
                    status_code=400, detail=f'Server "{server_id}" is disabled in configuration'
                )
            target = registry.resolve_target(server_id, request.args)

        if target.kind is ServerKind.KNOWN_ID:
            server_id, config = config_manager.get(target.reference) or registry.get_server_config(target.reference)
            already = registry.is_connected(server_id)
            connection = await registry.connect_by_path_or_package(server_id, request.args)
            return _action_response(connection, registry, config, "Already connected" if already else None)

        server_id = request.server_id or target.server_id
        is_new = config_manager.get(server_id) is None
        already = registry.is_connected(server_id)
        connection = await registry.connect(server_id, target.spawn_spec)

        config = target_to_config(target)
        if is_new:
            await config_manager.add_server(server_id, config)
            registry.configure(server_id, config)

        response = _action_response(connection, registry, config, "Already connected" if already else None)
        response.is_new_server = is_new
        return response
    except Exception as e:
        raise_http_error(e, "Failed to connect to server")


@router.post("/disconnect", response_model=ServerActionResponse, operation_id="disconnect_server")
async def disconnect_server(
    request: ServerIdRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config_manager: ServerConfigManager = Depends(get_config_manager),
) -> ServerActionResponse:
    """Disconnect a server; disconnecting an idle server is a no-op success."""
    entry = config_manager.get(request.server_id)
    if entry is None and registry.get_connection(request.server_id) is None:
        raise HTTPException(status_code=404, detail=f'Server "{request.server_id}" not found in configuration')

    server_id, config = entry if entry is not None else (request.server_id, None)
    was_connected = registry.is_connected(server_id)
    try:
        await registry.disconnect(server_id)
    except Exception as e:
        raise_http_error(e, "Failed to disconnect from server")

    server = _server_info(server_id, registry, config, None if was_connected else "Already disconnected")
    return ServerActionResponse(success=True, server_id=server_id, server=server)


@router.post("/reconnect", response_model=ServerActionResponse, operation_id="reconnect_server")
async def reconnect_server(
    request: ServerIdRequest,
    registry: ConnectionRegistry = Depends(get_registry),
    config_manager: ServerConfigManager = Depends(get_config_manager),
) -> ServerActionResponse:
    """Close and re-open a server connection, refreshing its tools."""
    entry = config_manager.get(request.server_id)
    try:
        connection = await registry.reconnect(request.server_id)
    except Exception as e:
        raise_http_error(e, "Failed to reconnect to server")
    return _action_response(connection, registry, entry[1] if entry else None)


def _action_response(
    connection: Connection,
    registry: ConnectionRegistry,
    config: ServerConfig | None,
    message: str | None = None,
) -> ServerActionResponse:
    server = _server_info(connection.id, registry, config, message)
    return ServerActionResponse(success=True, server_id=connection.id, server=server)
