# Domain models
# Tools, conversations and server configuration

from .config import ServerConfig, ServerRegistryConfig, SpawnSpec
from .conversation import ChatResponse, ConversationMessage, Role
from .tool import (
    PendingApproval,
    ToolCall,
    ToolCallSource,
    ToolCallStatus,
    ToolDescriptor,
)

__all__ = [
    "ChatResponse",
    "ConversationMessage",
    "PendingApproval",
    "Role",
    "ServerConfig",
    "ServerRegistryConfig",
    "SpawnSpec",
    "ToolCall",
    "ToolCallSource",
    "ToolCallStatus",
    "ToolDescriptor",
]
