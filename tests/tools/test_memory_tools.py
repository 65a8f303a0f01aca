"""Tests for memory and note tools."""

import pytest

from assistant_core.models import Memory, Note
from assistant_core.tools.base import ToolContext
from assistant_core.tools.memory_tools import (
    CreateMemoryEdgeTool,
    CreateMemoryTool,
    EditMemoryTool,
    EditNoteTool,
    SearchMemoriesTool,
)
from assistant_core.workspace.models import HostType, WorkspaceReference, WorkspaceURI

from tests.fakes import FakeEmbedder


@pytest.fixture
def workspace():
    return WorkspaceReference(
        uri=WorkspaceURI.for_session("s1"),
        host_type=HostType.SERVER_SESSION,
        root_path="/tmp/s1",
    )


@pytest.fixture
def context(store, workspace):
    return ToolContext(
        session_id="s1", workspace=workspace, store=store, embedder=FakeEmbedder()
    )


@pytest.mark.asyncio
async def test_create_memory_stores_embedding(context, store):
    result = await CreateMemoryTool().execute(
        {"title": "Deploy", "content": "Deploys go through staging", "tags": ["Ops"]},
        context,
    )
    assert result.success
    memory_id = result.output.rsplit(" ", 1)[-1]
    stored = await store.get_memory(memory_id)
    assert stored.tags == {"ops"}
    assert stored.embedding == pytest.approx([1.0, 0.0])


@pytest.mark.asyncio
async def test_create_memory_survives_embedding_failure(store, workspace):
    context = ToolContext(
        session_id="s1",
        workspace=workspace,
        store=store,
        embedder=FakeEmbedder(error=RuntimeError("no model")),
    )
    result = await CreateMemoryTool().execute({"content": "still saved"}, context)
    assert result.success
    assert [m.content for m in await store.search_by_keyword("saved")] == ["still saved"]


@pytest.mark.asyncio
async def test_create_memory_without_store(workspace):
    context = ToolContext(session_id="s1", workspace=workspace)
    result = await CreateMemoryTool().execute({"content": "x"}, context)
    assert not result.success


@pytest.mark.asyncio
async def test_create_edge_validates(context, store):
    await store.upsert(Memory(id="a", content="x"))
    await store.upsert(Memory(id="b", content="y"))
    tool = CreateMemoryEdgeTool()

    ok = await tool.execute(
        {"source_id": "a", "target_id": "b", "relationship": "depends_on", "weight": 0.5},
        context,
    )
    bad_weight = await tool.execute(
        {"source_id": "a", "target_id": "b", "relationship": "r", "weight": 3}, context
    )
    missing = await tool.execute(
        {"source_id": "a", "target_id": "zzz", "relationship": "r"}, context
    )

    assert ok.success
    assert ok.output == "Linked a -[depends_on]-> b"
    assert not bad_weight.success
    assert not missing.success
    assert "zzz" in missing.error


@pytest.mark.asyncio
async def test_search_memories(context, store):
    await store.upsert(Memory(id="m1", title="Stack", content="We use postgres"))
    found = await SearchMemoriesTool().execute({"query": "postgres"}, context)
    none = await SearchMemoriesTool().execute({"query": "oracle"}, context)

    assert found.output == "[m1] Stack: We use postgres"
    assert none.output == "No memories found."


@pytest.mark.asyncio
async def test_search_memories_lists_tags_without_bullet(context, store):
    await store.upsert(Memory(id="m2", content="Deploys use canary", tags=["ops", "deploy"]))
    found = await SearchMemoriesTool().execute({"query": "canary"}, context)
    assert found.output == "[m2] m2 [deploy, ops]: Deploys use canary"


@pytest.mark.asyncio
async def test_edit_memory_title_only(context, store):
    await store.upsert(Memory(id="m1", title="Old", content="Content"))
    result = await EditMemoryTool().execute({"memory_id": "m1", "title": " New "}, context)

    assert result.success
    assert result.output == "Memory 'New' updated"
    stored = await store.get_memory("m1")
    assert stored.title == "New"
    assert stored.content == "Content"


@pytest.mark.asyncio
async def test_edit_memory_content_is_re_embedded(store, workspace):
    embedder = FakeEmbedder({"Deploys use canary": [0.0, 1.0]})
    context = ToolContext(session_id="s1", workspace=workspace, store=store, embedder=embedder)
    await store.upsert(
        Memory(id="m1", title="Deploy", content="Deploys use staging", embedding=[1.0, 0.0])
    )

    result = await EditMemoryTool().execute(
        {"memory_id": "m1", "content": "Deploys use canary", "tags": ["ops"]}, context
    )

    assert result.success
    stored = await store.get_memory("m1")
    assert stored.content == "Deploys use canary"
    assert stored.tags == {"ops"}
    assert stored.embedding == pytest.approx([0.0, 1.0])
    assert embedder.calls == ["Deploys use canary"]
    assert [m.id for m in await store.search_by_keyword("canary")] == ["m1"]


@pytest.mark.asyncio
async def test_edit_memory_drops_stale_vector_when_embedding_fails(store, workspace):
    context = ToolContext(
        session_id="s1",
        workspace=workspace,
        store=store,
        embedder=FakeEmbedder(error=RuntimeError("no model")),
    )
    await store.upsert(Memory(id="m1", content="old", embedding=[1.0, 0.0]))

    result = await EditMemoryTool().execute({"memory_id": "m1", "content": "new"}, context)

    assert result.success
    assert (await store.get_memory("m1")).embedding is None


@pytest.mark.asyncio
async def test_edit_memory_line_edits(context, store):
    await store.upsert(Memory(id="m1", content="Line 1\nLine 2\nLine 3"))
    tool = EditMemoryTool()

    replaced = await tool.execute(
        {"memory_id": "m1", "content": "Modified Line 2", "line_index": 1}, context
    )
    appended = await tool.execute(
        {"memory_id": "m1", "content": "Line 4", "line_index": -1}, context
    )
    out_of_range = await tool.execute(
        {"memory_id": "m1", "content": "x", "line_index": 9}, context
    )

    assert replaced.success and appended.success
    assert not out_of_range.success
    assert "out of range" in out_of_range.error
    stored = await store.get_memory("m1")
    assert stored.content == "Line 1\nModified Line 2\nLine 3\nLine 4"


@pytest.mark.asyncio
async def test_edit_memory_unknown_id_and_no_changes(context, store):
    await store.upsert(Memory(id="m1", title="Same", content="Content"))
    tool = EditMemoryTool()

    missing = await tool.execute({"memory_id": "nope", "content": "x"}, context)
    unchanged = await tool.execute({"memory_id": "m1", "content": "Content"}, context)

    assert not missing.success
    assert missing.error == "Memory not found: nope"
    assert unchanged.success
    assert unchanged.output == "No changes made to memory 'Same'"


@pytest.mark.asyncio
async def test_edit_note(context, store):
    await store.save_note(Note(name="todo", content="old"))
    await store.save_note(Note(name="rules", content="fixed", is_readonly=True))
    tool = EditNoteTool()

    edited = await tool.execute({"name": "todo", "content": "new"}, context)
    readonly = await tool.execute({"name": "rules", "content": "changed"}, context)
    missing = await tool.execute({"name": "ghost", "content": "x"}, context)

    assert edited.success
    assert (await store.get_note_by_name("todo")).content == "new"
    assert not readonly.success
    assert (await store.get_note_by_name("rules")).content == "fixed"
    assert not missing.success
