# Conversation models
# Role-tagged messages exchanged with the language model

import uuid
from datetime import datetime
from enum import Enum
from typing import Literal

from pydantic import BaseModel, Field

from .tool import ToolCall


class Role(str, Enum):
    """Message roles in a conversation transcript."""

    USER = "user"
    ASSISTANT = "assistant"
    TOOL_RESULT = "tool-result"
    SYSTEM = "system"


class ConversationMessage(BaseModel):
    """One entry of an append-only conversation."""

    model_config = {"frozen": True}

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Role
    content: str
    timestamp: datetime = Field(default_factory=datetime.now)
    tool_call_id: str | None = None
    tool_name: str | None = None


class ChatResponse(BaseModel):
    """Assistant reply for one user message, with every tool call it produced."""

    id: str = Field(default_factory=lambda: uuid.uuid4().hex)
    role: Literal["assistant"] = "assistant"
    content: str = ""
    timestamp: datetime = Field(default_factory=datetime.now)
    tool_calls: list[ToolCall] = Field(default_factory=list)
