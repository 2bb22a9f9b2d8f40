"""Service lookup from app state and error mapping for the API routers."""

from typing import Any, NoReturn

from fastapi import HTTPException, Request

from ..services.approval_gate import ApprovalGate
from ..services.config_manager import ServerConfigManager
from ..services.connection_registry import ConnectionRegistry
from ..services.conversation import ConversationStore
from ..services.error_handler import (
    ConfigurationError,
    ConnectionError,
    MCPError,
    ServerNotFoundError,
)
from ..services.orchestrator import ToolExecutionOrchestrator


def _service(request: Request, name: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(status_code=500, detail=f"{name} not initialized")
    return service


async def get_registry(request: Request) -> ConnectionRegistry:
    return _service(request, "registry")


async def get_config_manager(request: Request) -> ServerConfigManager:
    return _service(request, "config_manager")


async def get_approval_gate(request: Request) -> ApprovalGate:
    return _service(request, "approval_gate")


async def get_orchestrator(request: Request) -> ToolExecutionOrchestrator:
    return _service(request, "orchestrator")


async def get_conversations(request: Request) -> ConversationStore:
    return _service(request, "conversations")


def raise_http_error(error: Exception, action: str) -> NoReturn:
    """Translate a service error into the matching HTTP status."""
    if isinstance(error, HTTPException):
        raise error
    if isinstance(error, ConfigurationError):
        raise HTTPException(status_code=400, detail=error.message) from error
    if isinstance(error, ServerNotFoundError):
        raise HTTPException(status_code=404, detail=error.message) from error
    if isinstance(error, ConnectionError):
        raise HTTPException(status_code=502, detail=f"{action}: {error.message}") from error
    if isinstance(error, MCPError):
        raise HTTPException(status_code=500, detail=f"{action}: {error.message}") from error
    raise HTTPException(status_code=500, detail=f"{action}: {str(error)}") from error
