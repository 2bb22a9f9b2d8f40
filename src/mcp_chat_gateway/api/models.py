# API request/response models
# Pydantic models for API endpoint data validation, camelCase on the wire

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

from ..models.conversation import ChatResponse, ConversationMessage
from ..models.tool import PendingApproval, ToolCall, ToolDescriptor


class APIModel(BaseModel):
    """Base for wire models: camelCase aliases, snake_case attributes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ToolInfo(APIModel):
    """Tool as shown to the UI."""

    name: str
    description: str | None = None
    input_schema: dict[str, Any] = Field(default_factory=dict)

    @classmethod
    def from_descriptor(cls, tool: ToolDescriptor) -> "ToolInfo":
        return cls(name=tool.name, description=tool.description, input_schema=tool.input_schema)


class ServerInfo(APIModel):
    """Configured or connected tool server."""

    id: str
    name: str
    description: str = ""
    enabled: bool = True
    connected: bool = False
    tools: list[ToolInfo] = Field(default_factory=list)
    message: str | None = None


class ConnectServerRequest(APIModel):
    """Request model for connecting a server by configured id or by path/package."""

    server_id: str | None = Field(None, description="Id from the server registry file")
    server_path: str | None = Field(None, description="Script path or npm package")
    args: list[str] = Field(default_factory=list, description="Extra arguments for the server process")

    @model_validator(mode="after")
    def require_id_or_path(self) -> "ConnectServerRequest":
        if not (self.server_id or "").strip() and not (self.server_path or "").strip():
            raise ValueError("Either Server ID or Server Path is required")
        return self


class ServerIdRequest(APIModel):
    """Request model naming one server."""

    server_id: str = Field(..., min_length=1)


class ServerActionResponse(APIModel):
    """Response model for connect/disconnect/reconnect."""

    success: bool
    server_id: str
    server: ServerInfo
    is_new_server: bool = False


class ChatRequest(APIModel):
    """Request model for one chat turn."""

    message: str = Field(..., min_length=1)
    session_id: str | None = None

    @field_validator("message")
    @classmethod
    def validate_message(cls, v: str) -> str:
        """Ensure message is not blank."""
        if not v.strip():
            raise ValueError("Message is required")
        return v


class ToolCallInfo(APIModel):
    """Tool call as rendered in the transcript."""

    id: str
    name: str
    args: dict[str, Any] = Field(default_factory=dict)
    status: str
    result: Any = None
    error: str | None = None
    server_id: str | None = None
    source: str

    @classmethod
    def from_call(cls, call: ToolCall) -> "ToolCallInfo":
        return cls(
            id=call.id,
            name=call.name,
            args=call.arguments,
            status=call.status.value,
            result=call.result,
            error=call.error,
            server_id=call.server_id,
            source=call.source.value,
        )


class ChatReply(APIModel):
    """Response model for a chat turn."""

    id: str
    role: str = "assistant"
    content: str
    timestamp: datetime
    tool_calls: list[ToolCallInfo] = Field(default_factory=list)

    @classmethod
    def from_response(cls, response: ChatResponse) -> "ChatReply":
        return cls(
            id=response.id,
            role=response.role,
            content=response.content,
            timestamp=response.timestamp,
            tool_calls=[ToolCallInfo.from_call(c) for c in response.tool_calls],
        )


class MessageInfo(APIModel):
    id: str
    role: str
    content: str
    timestamp: datetime
    tool_call_id: str | None = None
    tool_name: str | None = None

    @classmethod
    def from_message(cls, message: ConversationMessage) -> "MessageInfo":
        return cls(
            id=message.id,
            role=message.role.value,
            content=message.content,
            timestamp=message.timestamp,
            tool_call_id=message.tool_call_id,
            tool_name=message.tool_name,
        )


class HistoryResponse(APIModel):
    success: bool = True
    history: list[MessageInfo] = Field(default_factory=list)


class MessageResponse(APIModel):
    """Generic success/message response."""

    success: bool = True
    message: str | None = None


class ApprovalCallbackRequest(APIModel):
    has_ui_callback: bool = False


class PendingApprovalInfo(APIModel):
    id: str
    tool_name: str
    args: Any = None
    created_at: datetime

    @classmethod
    def from_pending(cls, approval: PendingApproval) -> "PendingApprovalInfo":
        return cls(
            id=approval.id,
            tool_name=approval.tool_name,
            args=approval.args,
            created_at=approval.created_at,
        )


class ApproveToolRequest(APIModel):
    id: str = Field(..., min_length=1, description="Approval request id")
    approved: bool = False
