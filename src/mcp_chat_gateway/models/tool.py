# Tool domain models
# Tool descriptors, tool call records and pending approval requests

import uuid
from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, Field, field_validator


class ToolDescriptor(BaseModel):
    """A tool advertised by a connected MCP server."""

    model_config = {"frozen": True}

    name: str = Field(..., min_length=1, description="Tool name, unique within its server")
    description: str | None = Field(default=None, description="Human-readable description")
    input_schema: dict[str, Any] = Field(
        default_factory=dict, description="JSON Schema describing the tool arguments"
    )
    server_id: str = Field(default="", description="Normalized id of the owning server")

    @classmethod
    def from_mcp(cls, tool: Any, server_id: str) -> "ToolDescriptor":
        """Build a descriptor from an MCP SDK tool object (or anything shaped like one)."""
        schema = getattr(tool, "inputSchema", None)
        if schema is None and isinstance(tool, dict):
            schema = tool.get("inputSchema") or tool.get("input_schema")
        name = tool.get("name") if isinstance(tool, dict) else getattr(tool, "name", "")
        description = (
            tool.get("description") if isinstance(tool, dict) else getattr(tool, "description", None)
        )
        return cls(
            name=name,
            description=description,
            input_schema=dict(schema or {}),
            server_id=server_id,
        )


class ToolCallStatus(str, Enum):
    """Lifecycle of a single tool invocation."""

    PENDING = "pending"
    APPROVED = "approved"
    REJECTED = "rejected"
    RUNNING = "running"
    SUCCESS = "success"
    ERROR = "error"

    @property
    def is_terminal(self) -> bool:
        return self in (ToolCallStatus.REJECTED, ToolCallStatus.SUCCESS, ToolCallStatus.ERROR)


# Allowed forward transitions; terminal states have none
_TRANSITIONS: dict[ToolCallStatus, set[ToolCallStatus]] = {
    ToolCallStatus.PENDING: {ToolCallStatus.APPROVED, ToolCallStatus.REJECTED, ToolCallStatus.ERROR},
    ToolCallStatus.APPROVED: {ToolCallStatus.RUNNING, ToolCallStatus.ERROR},
    ToolCallStatus.RUNNING: {ToolCallStatus.SUCCESS, ToolCallStatus.ERROR},
    ToolCallStatus.REJECTED: set(),
    ToolCallStatus.SUCCESS: set(),
    ToolCallStatus.ERROR: set(),
}


class ToolCallSource(str, Enum):
    """Where a tool call record came from."""

    STRUCTURED = "structured"
    CALL_BLOCK = "call_block"
    SHORTHAND = "shorthand"
    NARRATIVE = "narrative"
    CODE_BLOCK = "code_block"


class ToolCall(BaseModel):
    """A request to invoke one named tool with a mapping of arguments."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    name: str = Field(..., min_length=1)
    arguments: dict[str, Any] = Field(default_factory=dict)
    status: ToolCallStatus = ToolCallStatus.PENDING
    result: Any = None
    error: str | None = None
    server_id: str | None = None
    source: ToolCallSource = ToolCallSource.STRUCTURED

    @field_validator("arguments", mode="before")
    @classmethod
    def coerce_arguments(cls, v: Any) -> Any:
        """Treat a missing argument payload as an empty mapping."""
        return {} if v is None else v

    def advance(self, status: ToolCallStatus) -> "ToolCall":
        """Move the call forward; raises ValueError on an illegal transition."""
        if status not in _TRANSITIONS[self.status]:
            raise ValueError(
                f"Illegal tool call transition {self.status.value} -> {status.value} for {self.name}"
            )
        self.status = status
        return self

    def fail(self, message: str, result: Any = None) -> "ToolCall":
        """Terminate the call as an error with a captured message."""
        self.advance(ToolCallStatus.ERROR)
        self.error = message
        self.result = result if result is not None else {"success": False, "error": message}
        return self


class PendingApproval(BaseModel):
    """An approval request waiting for an external decision."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    tool_name: str
    args: Any = None
    created_at: datetime = Field(default_factory=datetime.now)
