"""Approval gate deciding whether a tool call may execute.

In ``auto`` mode every request is approved immediately. In ``external`` mode
a ``PendingApproval`` is stored together with a future; the request resolves
when someone calls ``resolve`` (the REST endpoint, the console prompt or a
registered decision callback) or, failing that, as rejected once the timeout
expires.
"""

import asyncio
import inspect
import logging
from dataclasses import dataclass
from enum import Enum
from typing import Any, Awaitable, Callable, Dict, List, Optional, Union

from ..models.tool import PendingApproval
from .error_handler import ApprovalTimeoutError

logger = logging.getLogger(__name__)

DEFAULT_APPROVAL_TIMEOUT = 30.0

DecisionCallback = Callable[[PendingApproval], Union[None, bool, Awaitable[Optional[bool]]]]


class ApprovalMode(str, Enum):
    AUTO = "auto"
    EXTERNAL = "external"


@dataclass
class _PendingEntry:
    approval: PendingApproval
    future: "asyncio.Future[bool]"
    mode: ApprovalMode


class ApprovalGate:
    """Pending-request table keyed by approval id."""

    def __init__(
        self,
        mode: ApprovalMode = ApprovalMode.AUTO,
        timeout: float = DEFAULT_APPROVAL_TIMEOUT,
        decision_callback: Optional[DecisionCallback] = None,
    ):
        self.mode = ApprovalMode(mode)
        self.timeout = timeout
        self.decision_callback = decision_callback
        self._pending: Dict[str, _PendingEntry] = {}

    def set_mode(self, mode: Union[ApprovalMode, str]) -> None:
        """Switch mode for future requests; pending ones keep theirs."""
        self.mode = ApprovalMode(mode)
        logger.info(f"Approval mode set to {self.mode.value}")

    def set_decision_callback(self, callback: Optional[DecisionCallback]) -> None:
        self.decision_callback = callback

    async def request_approval(self, tool_name: str, args: Any) -> bool:
        if self.mode is ApprovalMode.AUTO:
            logger.info(f"Auto-approving tool execution: {tool_name}")
            logger.debug(f"Auto-approved {tool_name} with args: {args}")
            return True

        approval = PendingApproval(tool_name=tool_name, args=args)
        future: asyncio.Future[bool] = asyncio.get_running_loop().create_future()
        self._pending[approval.id] = _PendingEntry(approval, future, self.mode)
        logger.info(f"Waiting for approval {approval.id} of tool {tool_name}")

        callback_task = None
        if self.decision_callback is not None:
            callback_task = asyncio.create_task(self._run_callback(approval))

        try:
            return await asyncio.wait_for(asyncio.shield(future), timeout=self.timeout)
        except asyncio.TimeoutError:
            if self.resolve(approval.id, False):
                error = ApprovalTimeoutError(tool_name, self.timeout, details={"approval_id": approval.id})
                logger.warning(f"{error.message}; treating as rejected")
                return False
            # A decision landed in the same tick as the timeout
            return future.result()
        except asyncio.CancelledError:
            entry = self._pending.pop(approval.id, None)
            if entry is not None:
                entry.future.cancel()
            raise
        finally:
            if callback_task is not None and not callback_task.done():
                callback_task.cancel()

    async def _run_callback(self, approval: PendingApproval) -> None:
        try:
            decision = self.decision_callback(approval)
            if inspect.isawaitable(decision):
                decision = await decision
        except asyncio.CancelledError:
            raise
        except Exception as e:
            logger.error(f"Approval callback failed for {approval.tool_name}: {e}")
            return
        if decision is not None:
            self.resolve(approval.id, bool(decision))

    def resolve(self, approval_id: str, approved: bool) -> bool:
        """Resolve a pending request; returns False if it was unknown or already resolved."""
        entry = self._pending.pop(approval_id, None)
        if entry is None:
            logger.debug(f"Ignoring decision for unknown approval {approval_id}")
            return False
        if entry.future.done():
            return False
        entry.future.set_result(bool(approved))
        logger.info(
            f"Tool call to {entry.approval.tool_name} {'approved' if approved else 'rejected'} "
            f"({approval_id})"
        )
        return True

    def get_pending(self, approval_id: str) -> Optional[PendingApproval]:
        entry = self._pending.get(approval_id)
        return entry.approval if entry else None

    def list_pending(self) -> List[PendingApproval]:
        return [entry.approval for entry in self._pending.values()]

    def cancel_all(self) -> int:
        """Reject everything still pending (used at shutdown)."""
        ids = list(self._pending.keys())
        resolved = sum(1 for approval_id in ids if self.resolve(approval_id, False))
        if resolved:
            logger.info(f"Rejected {resolved} pending approvals")
        return resolved
