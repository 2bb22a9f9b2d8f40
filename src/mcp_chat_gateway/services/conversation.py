"""Per-session conversation transcripts."""

import asyncio
import logging
from typing import Dict, List, Optional, Tuple

from ..models.conversation import ConversationMessage, Role

logger = logging.getLogger(__name__)

DEFAULT_SESSION = "default"


class Conversation:
    """Append-only transcript for one chat session.

    ``lock`` serializes chat turns of the session; callers only ever add user
    turns, everything else is appended by the orchestrator.
    """

    def __init__(self, session_id: str = DEFAULT_SESSION):
        self.session_id = session_id
        self.lock = asyncio.Lock()
        self._messages: List[ConversationMessage] = []

    @property
    def messages(self) -> Tuple[ConversationMessage, ...]:
        return tuple(self._messages)

    def __len__(self) -> int:
        return len(self._messages)

    def append(
        self,
        role: Role,
        content: str,
        tool_call_id: Optional[str] = None,
        tool_name: Optional[str] = None,
    ) -> ConversationMessage:
        message = ConversationMessage(
            role=role, content=content, tool_call_id=tool_call_id, tool_name=tool_name
        )
        self._messages.append(message)
        return message

    def add_user(self, content: str) -> ConversationMessage:
        return self.append(Role.USER, content)

    def add_assistant(self, content: str) -> ConversationMessage:
        return self.append(Role.ASSISTANT, content)

    def add_tool_result(self, tool_call_id: str, tool_name: str, content: str) -> ConversationMessage:
        return self.append(Role.TOOL_RESULT, content, tool_call_id=tool_call_id, tool_name=tool_name)

    def add_system(self, content: str, tool_call_id: Optional[str] = None) -> ConversationMessage:
        return self.append(Role.SYSTEM, content, tool_call_id=tool_call_id)

    def clear(self) -> None:
        self._messages = []


class ConversationStore:
    """Conversations keyed by session id, created on first use."""

    def __init__(self):
        self._conversations: Dict[str, Conversation] = {}

    def get(self, session_id: Optional[str] = None) -> Conversation:
        session_id = session_id or DEFAULT_SESSION
        conversation = self._conversations.get(session_id)
        if conversation is None:
            conversation = Conversation(session_id)
            self._conversations[session_id] = conversation
            logger.debug(f"Started conversation {session_id}")
        return conversation

    def history(self, session_id: Optional[str] = None) -> List[ConversationMessage]:
        return list(self.get(session_id).messages)

    def reset(self, session_id: Optional[str] = None) -> None:
        self.get(session_id).clear()
        logger.info(f"Conversation {session_id or DEFAULT_SESSION} reset")
