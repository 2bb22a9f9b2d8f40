"""Human-in-the-loop approval endpoints polled by the UI"""

from fastapi import APIRouter, Depends, HTTPException

from ..services.approval_gate import ApprovalGate, ApprovalMode
from .dependencies import get_approval_gate
from .models import (
    ApprovalCallbackRequest,
    ApproveToolRequest,
    MessageResponse,
    PendingApprovalInfo,
)

router = APIRouter(prefix="/api", tags=["approvals"])


@router.post("/set-approval-callback", response_model=MessageResponse, operation_id="set_approval_callback")
async def set_approval_callback(
    request: ApprovalCallbackRequest,
    gate: ApprovalGate = Depends(get_approval_gate),
) -> MessageResponse:
    """Route approvals to the UI (external mode) or back to auto-approval."""
    if request.has_ui_callback:
        gate.set_mode(ApprovalMode.EXTERNAL)
        return MessageResponse(message="Approval callback set")
    gate.set_mode(ApprovalMode.AUTO)
    return MessageResponse(message="Approval callback cleared")


@router.get("/pending-approvals", response_model=list[PendingApprovalInfo], operation_id="pending_approvals")
async def pending_approvals(gate: ApprovalGate = Depends(get_approval_gate)) -> list[PendingApprovalInfo]:
    return [PendingApprovalInfo.from_pending(p) for p in gate.list_pending()]


@router.post("/approve-tool", response_model=MessageResponse, operation_id="approve_tool")
async def approve_tool(
    request: ApproveToolRequest,
    gate: ApprovalGate = Depends(get_approval_gate),
) -> MessageResponse:
    """Resolve a pending approval. Unknown or already resolved ids are 404."""
    if not gate.resolve(request.id, request.approved):
        raise HTTPException(status_code=404, detail="Approval request not found")
    return MessageResponse(message="Tool call approved" if request.approved else "Tool call rejected")
