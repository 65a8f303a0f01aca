"""Human/operator approval for tool calls in restricted workspaces."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Protocol
from uuid import uuid4

from loguru import logger

from ..models import ToolCall
from ..workspace.models import WorkspaceReference


class ApprovalDecision(str, Enum):
    GRANTED = "granted"
    DENIED = "denied"


class ApprovalGate(Protocol):
    async def request_approval(
        self, call: ToolCall, workspace: WorkspaceReference
    ) -> ApprovalDecision:
        ...


@dataclass
class ApprovalRequest:
    call: ToolCall
    workspace: WorkspaceReference
    id: str = field(default_factory=lambda: str(uuid4()))
    created_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    future: asyncio.Future | None = None


class PendingApprovalGate:
    """Approval gate that parks requests until an operator decides.

    ``request_approval`` suspends until ``resolve`` is called for the
    request (or the timeout elapses, which counts as a denial).
    """

    def __init__(self, timeout: float | None = None):
        self.timeout = timeout
        self._requests: dict[str, ApprovalRequest] = {}

    def pending(self) -> list[ApprovalRequest]:
        return list(self._requests.values())

    async def request_approval(
        self, call: ToolCall, workspace: WorkspaceReference
    ) -> ApprovalDecision:
        request = ApprovalRequest(
            call=call,
            workspace=workspace,
            future=asyncio.get_running_loop().create_future(),
        )
        self._requests[request.id] = request
        logger.info(
            f"Approval requested for '{call.name}' in workspace {workspace.uri} "
            f"(request {request.id})"
        )
        try:
            return await asyncio.wait_for(request.future, self.timeout)
        except asyncio.TimeoutError:
            logger.warning(f"Approval request {request.id} timed out; denying")
            return ApprovalDecision.DENIED
        finally:
            self._requests.pop(request.id, None)

    def resolve(self, request_id: str, granted: bool) -> bool:
        request = self._requests.get(request_id)
        if request is None or request.future is None or request.future.done():
            return False
        decision = ApprovalDecision.GRANTED if granted else ApprovalDecision.DENIED
        request.future.set_result(decision)
        logger.info(f"Approval request {request_id} {decision.value}")
        return True
