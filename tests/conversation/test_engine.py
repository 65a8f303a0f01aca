"""Tests for AssistantEngine wiring."""

import os

import pytest

from assistant_core.config import CoreConfig, StorageConfig
from assistant_core.context.token_counter import TokenCounter
from assistant_core.conversation.events import TurnEventType
from assistant_core.engine import AssistantEngine
from assistant_core.errors import SessionNotFoundError
from assistant_core.workspace.models import (
    CustomToolReference,
    ToolDefinition,
    TrustLevel,
    WorkspaceStatus,
)

from tests.fakes import FakeProvider


@pytest.fixture
def engine(store, sessions_root):
    config = CoreConfig(storage=StorageConfig(sessions_root=sessions_root))
    return AssistantEngine(
        config=config,
        store=store,
        provider=FakeProvider(["Hi!"]),
        token_counter=TokenCounter(model=None),
    )


def run_tests_tool():
    return CustomToolReference(definition=ToolDefinition(id="run_tests", name="run_tests"))


@pytest.mark.asyncio
async def test_session_runtime_exposes_builtin_tools(engine):
    runtime = await engine.create_session(title="demo")

    assert "read_file" in runtime.tool_snapshot.names()
    assert "create_memory" in runtime.tool_snapshot.names()
    assert engine.get_runtime(runtime.session.id) is runtime


@pytest.mark.asyncio
async def test_sessions_do_not_share_per_session_state(engine):
    a = await engine.create_session()
    b = await engine.create_session()

    assert a.loop_detector is not b.loop_detector
    assert a.job_queue is not b.job_queue
    assert a.loop.history is not b.loop.history


@pytest.mark.asyncio
async def test_turn_uses_tag_generator(engine):
    runtime = await engine.create_session()

    events = [e async for e in runtime.loop.run_turn("hello")]

    assert events[-1].type == TurnEventType.TURN_COMPLETED
    assert engine.provider.complete_calls


@pytest.mark.asyncio
async def test_client_disconnect_marks_workspaces_missing(engine):
    runtime = await engine.create_session()

    async def send(message):
        pass

    await engine.connections.connect("laptop", send)
    workspace = await engine.attach_client_workspace(
        runtime.session.id, "laptop", "/home/dev/app", [run_tests_tool()]
    )
    assert "run_tests" in runtime.tool_snapshot.names()

    await engine.connections.disconnect("laptop")
    assert workspace.status == WorkspaceStatus.MISSING
    assert "run_tests" not in runtime.tool_snapshot.names()

    await engine.connections.connect("laptop", send)
    assert workspace.status == WorkspaceStatus.ACTIVE
    assert "run_tests" in runtime.tool_snapshot.names()


@pytest.mark.asyncio
async def test_client_workspace_attached_while_offline_is_missing(engine):
    runtime = await engine.create_session()
    workspace = await engine.attach_client_workspace(
        runtime.session.id, "desktop", "/src", [run_tests_tool()]
    )
    assert workspace.status == WorkspaceStatus.MISSING


@pytest.mark.asyncio
async def test_attach_directory_defaults_to_restricted(engine, sessions_root):
    runtime = await engine.create_session()
    shared = os.path.join(os.path.dirname(sessions_root), "shared")

    workspace = await engine.attach_directory(runtime.session.id, shared, ["read_file"])

    assert workspace.trust_level == TrustLevel.RESTRICTED
    assert workspace.uri.is_server
    assert workspace.id in runtime.session.attached_workspace_ids


@pytest.mark.asyncio
async def test_delete_session(engine):
    runtime = await engine.create_session()
    await engine.delete_session(runtime.session.id)

    with pytest.raises(SessionNotFoundError):
        engine.get_runtime(runtime.session.id)
