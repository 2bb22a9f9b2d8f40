# Services package
# Connection registry, response parsing, approval gating and tool execution

from .approval_gate import ApprovalGate, ApprovalMode
from .config_manager import ServerConfigManager
from .connection_registry import Connection, ConnectionRegistry
from .conversation import Conversation, ConversationStore
from .orchestrator import ToolExecutionOrchestrator
from .response_parser import ParsedResponse, ResponseParser
from .schema_compiler import SchemaCompiler, ToolValidator, ValidationResult
from .server_paths import classify_server_path, derive_server_id, normalize_server_id
from .tool_server_client import StdioToolServerClient, ToolCallOutcome, ToolServerClient

__all__ = [
    "ApprovalGate",
    "ApprovalMode",
    "Connection",
    "ConnectionRegistry",
    "Conversation",
    "ConversationStore",
    "ParsedResponse",
    "ResponseParser",
    "SchemaCompiler",
    "ServerConfigManager",
    "StdioToolServerClient",
    "ToolCallOutcome",
    "ToolExecutionOrchestrator",
    "ToolServerClient",
    "ToolValidator",
    "ValidationResult",
    "classify_server_path",
    "derive_server_id",
    "normalize_server_id",
]
