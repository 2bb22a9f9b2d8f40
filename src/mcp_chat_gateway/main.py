# FastAPI application entry point
# Defines the app factory, service wiring and core routes

import asyncio
import logging
from contextlib import asynccontextmanager
from logging.handlers import RotatingFileHandler
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import FastAPI
from pydantic import BaseModel

from . import __version__
from .api import approvals, chat, servers
from .config import Settings, get_settings
from .services.approval_gate import ApprovalGate, ApprovalMode
from .services.config_manager import ServerConfigManager
from .services.connection_registry import ConnectionRegistry
from .services.conversation import ConversationStore
from .services.error_handler import ErrorHandler
from .services.llm_client import LanguageModel, create_language_model
from .services.orchestrator import ToolExecutionOrchestrator
from .services.response_parser import ResponseParser
from .services.schema_compiler import SchemaCompiler
from .services.tool_server_client import StdioToolServerClient, ToolServerClient

_log_formatter = '%(asctime)s - %(name)s - %(levelname)s - %(message)s'

logger = logging.getLogger(__name__)


def configure_logging(level: str = "INFO", log_dir: Optional[str] = "run") -> None:
    """Console logging plus a rotating file under ``log_dir`` when it is writable."""
    logging.basicConfig(level=getattr(logging, level.upper(), logging.INFO), format=_log_formatter)
    if not log_dir:
        return
    root = logging.getLogger()
    if any(isinstance(h, RotatingFileHandler) for h in root.handlers):
        return
    try:
        run_dir = Path(log_dir)
        run_dir.mkdir(parents=True, exist_ok=True)
        file_handler = RotatingFileHandler(run_dir / 'gateway.log', maxBytes=2_000_000, backupCount=3)
        file_handler.setLevel(logging.DEBUG)
        file_handler.setFormatter(logging.Formatter(_log_formatter))
        root.addHandler(file_handler)
    except OSError as e:
        # Continue with console logging only
        logger.warning(f"File logging disabled: {e}")


class HealthResponse(BaseModel):
    """Health check response model."""

    status: str
    message: str
    connected_servers: int = 0
    pending_approvals: int = 0


def build_services(
    settings: Settings,
    client: Optional[ToolServerClient] = None,
    language_model: Optional[LanguageModel] = None,
) -> Dict[str, Any]:
    """Construct every service the API needs, keyed by its ``app.state`` name."""
    config_manager = ServerConfigManager(settings.servers_config_path)
    registry_config = config_manager.load()

    error_handler = ErrorHandler()
    registry = ConnectionRegistry(
        client or StdioToolServerClient(),
        error_handler=error_handler,
        server_configs=registry_config.mcp_servers,
        max_reconnect_attempts=settings.reconnect_max_attempts,
        reconnect_base_delay=settings.reconnect_base_delay,
    )
    approval_gate = ApprovalGate(
        mode=ApprovalMode(settings.approval_mode),
        timeout=settings.approval_timeout,
    )
    conversations = ConversationStore()
    model = language_model or create_language_model(settings.llm_config())
    orchestrator = ToolExecutionOrchestrator(
        registry=registry,
        approval_gate=approval_gate,
        parser=ResponseParser(
            narrative_mentions=settings.narrative_mentions,
            narrative_known_tools_only=settings.narrative_known_tools_only,
        ),
        compiler=SchemaCompiler(),
        language_model=model,
        conversations=conversations,
        max_tool_calls_per_turn=settings.max_tool_calls_per_turn,
    )
    return {
        "settings": settings,
        "config_manager": config_manager,
        "error_handler": error_handler,
        "registry": registry,
        "approval_gate": approval_gate,
        "conversations": conversations,
        "language_model": model,
        "orchestrator": orchestrator,
    }


async def connect_enabled_servers(registry: ConnectionRegistry, config_manager: ServerConfigManager) -> Dict[str, list]:
    """Connect every enabled configured server, one at a time."""
    results: Dict[str, list] = {"successful": [], "failed": [], "skipped": []}
    for server_id, config in config_manager.servers.items():
        if not config.enabled:
            results["skipped"].append(server_id)
            continue
        try:
            await registry.connect(server_id, config.to_spawn_spec())
            results["successful"].append(server_id)
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.warning(f"Autoconnect failed for {server_id}: {e}")
            results["failed"].append(server_id)
    return results


def create_app(
    settings: Optional[Settings] = None,
    client: Optional[ToolServerClient] = None,
    language_model: Optional[LanguageModel] = None,
) -> FastAPI:
    """Build the FastAPI application; ``client`` and ``language_model`` override the defaults."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        """Manage application lifecycle"""
        app_settings = settings or get_settings()
        logger.info("Initializing MCP chat gateway services...")
        services = build_services(app_settings, client=client, language_model=language_model)
        for name, service in services.items():
            setattr(app.state, name, service)

        startup_task = None
        if app_settings.autoconnect:
            async def _background_startup():
                try:
                    results = await connect_enabled_servers(services["registry"], services["config_manager"])
                    logger.info(
                        "Background startup: connected %d, failed %d, skipped %d",
                        len(results["successful"]), len(results["failed"]), len(results["skipped"]),
                    )
                except asyncio.CancelledError:
                    logger.info("Background startup task cancelled")
                    raise

            logger.info("Spawning background server connection task...")
            startup_task = asyncio.create_task(_background_startup(), name="gateway_autoconnect")
        app.state.startup_task = startup_task

        logger.info("Lifespan startup phase completed successfully")
        yield

        # Shutdown
        logger.info("Shutting down MCP chat gateway...")
        if startup_task is not None:
            startup_task.cancel()
            await asyncio.gather(startup_task, return_exceptions=True)

        services["approval_gate"].cancel_all()
        logger.info("Disconnecting all MCP servers...")
        await services["registry"].disconnect_all()
        await services["language_model"].close()
        logger.info("Shutdown complete")

    app = FastAPI(
        title="MCP Chat Gateway",
        description="Chat front-end over an LLM with approval-gated MCP tool execution",
        version=__version__,
        lifespan=lifespan,
    )

    app.include_router(servers.router)
    app.include_router(chat.router)
    app.include_router(approvals.router)

    @app.get("/", operation_id="root")
    async def root() -> dict[str, str]:
        """Root endpoint."""
        return {"message": "Welcome to MCP Chat Gateway"}

    @app.get("/health", response_model=HealthResponse, operation_id="health")
    async def health() -> HealthResponse:
        """Health check endpoint."""
        registry = getattr(app.state, "registry", None)
        gate = getattr(app.state, "approval_gate", None)
        return HealthResponse(
            status="healthy",
            message="Service is running",
            connected_servers=sum(1 for c in registry.list_connections() if c.connected) if registry else 0,
            pending_approvals=len(gate.list_pending()) if gate else 0,
        )

    return app


app = create_app()
