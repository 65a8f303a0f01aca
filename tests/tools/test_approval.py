"""Tests for PendingApprovalGate."""

import asyncio

import pytest

from assistant_core.models import ToolCall
from assistant_core.tools.approval import ApprovalDecision, PendingApprovalGate
from assistant_core.workspace.models import (
    HostType,
    TrustLevel,
    WorkspaceReference,
    WorkspaceURI,
)


@pytest.fixture
def restricted():
    return WorkspaceReference(
        uri=WorkspaceURI(host="assistant-server", path="/srv/shared"),
        host_type=HostType.SERVER,
        root_path="/srv/shared",
        trust_level=TrustLevel.RESTRICTED,
    )


@pytest.mark.asyncio
async def test_request_waits_for_operator(restricted):
    gate = PendingApprovalGate()
    task = asyncio.create_task(gate.request_approval(ToolCall(name="read_file"), restricted))
    while not gate.pending():
        await asyncio.sleep(0)

    request = gate.pending()[0]
    assert request.call.name == "read_file"
    assert gate.resolve(request.id, granted=True)

    assert await task == ApprovalDecision.GRANTED
    assert gate.pending() == []


@pytest.mark.asyncio
async def test_timeout_counts_as_denial(restricted):
    gate = PendingApprovalGate(timeout=0.01)
    decision = await gate.request_approval(ToolCall(name="read_file"), restricted)
    assert decision == ApprovalDecision.DENIED


def test_resolve_unknown_request():
    assert PendingApprovalGate().resolve("nope", granted=True) is False
