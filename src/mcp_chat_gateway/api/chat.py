"""Chat and conversation API endpoints"""

import logging

from fastapi import APIRouter, Depends

from ..services.conversation import ConversationStore
from ..services.orchestrator import ToolExecutionOrchestrator
from .dependencies import get_conversations, get_orchestrator, raise_http_error
from .models import ChatReply, ChatRequest, HistoryResponse, MessageInfo, MessageResponse

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api", tags=["chat"])


@router.post("/chat", response_model=ChatReply, operation_id="chat")
async def chat(
    request: ChatRequest,
    orchestrator: ToolExecutionOrchestrator = Depends(get_orchestrator),
) -> ChatReply:
    """Send one user message and return the assistant reply with its tool calls.

    Tool failures never fail the request; they show up as tool calls with
    status ``error`` or ``rejected``.
    """
    logger.info(f"Processing user message for session {request.session_id or 'default'}")
    try:
        response = await orchestrator.chat(request.message, request.session_id)
    except Exception as e:
        logger.exception(f"Error in chat endpoint: {e}")
        raise_http_error(e, "Chat failed")
    return ChatReply.from_response(response)


@router.get("/conversation/history", response_model=HistoryResponse, operation_id="conversation_history")
async def conversation_history(
    session_id: str | None = None,
    conversations: ConversationStore = Depends(get_conversations),
) -> HistoryResponse:
    """Full transcript of a session."""
    return HistoryResponse(
        history=[MessageInfo.from_message(m) for m in conversations.history(session_id)]
    )


@router.post("/conversation/reset", response_model=MessageResponse, operation_id="reset_conversation")
async def reset_conversation(
    session_id: str | None = None,
    conversations: ConversationStore = Depends(get_conversations),
) -> MessageResponse:
    """Clear a session's transcript."""
    conversations.reset(session_id)
    return MessageResponse(message="Conversation history has been reset")
