"""Tests for SQLiteMemoryStore."""

import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from assistant_core.errors import MemoryNotFoundError, StoreNotInitializedError
from assistant_core.memory.sqlite_store import SQLiteMemoryStore
from assistant_core.models import Memory, MemoryEdge, Note


@pytest.mark.asyncio
async def test_tables_exist(store):
    async with store._db.execute(
        "SELECT name FROM sqlite_master WHERE type='table' ORDER BY name"
    ) as cursor:
        names = {row[0] for row in await cursor.fetchall()}
    assert {"memories", "memory_edges", "notes", "memories_fts"} <= names


@pytest.mark.asyncio
async def test_uninitialized_store_raises():
    store = SQLiteMemoryStore(db_path=":memory:")
    with pytest.raises(StoreNotInitializedError):
        await store.get_memory("x")


# ---------------------------------------------------------------------------
# Memories
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_upsert_roundtrip_keeps_embedding_and_tags(store):
    await store.upsert(
        Memory(id="m1", title="T", content="body", tags=["B", "a"], embedding=[0.5, 0.25])
    )
    loaded = await store.get_memory("m1")
    assert loaded.tags == {"a", "b"}
    assert loaded.embedding == pytest.approx([0.5, 0.25])


@pytest.mark.asyncio
async def test_upsert_update_preserves_created_at(store):
    created = datetime(2025, 1, 1, tzinfo=timezone.utc)
    await store.upsert(Memory(id="m1", content="v1", created_at=created, updated_at=created))
    await store.upsert(Memory(id="m1", content="v2"))

    loaded = await store.get_memory("m1")
    assert loaded.content == "v2"
    assert loaded.created_at == created
    assert loaded.updated_at > created


@pytest.mark.asyncio
async def test_keyword_search_tracks_updates(store):
    await store.upsert(Memory(id="m1", content="kubernetes cluster notes"))
    assert [m.id for m in await store.search_by_keyword("kubernetes")] == ["m1"]

    await store.upsert(Memory(id="m1", content="nomad cluster notes"))
    assert await store.search_by_keyword("kubernetes") == []
    assert [m.id for m in await store.search_by_keyword("nomad")] == ["m1"]


@pytest.mark.asyncio
async def test_keyword_search_treats_operators_literally(store):
    await store.upsert(Memory(id="m1", content="plain text"))
    assert await store.search_by_keyword('NOT "AND* (') == []
    assert await store.search_by_keyword("   ") == []


@pytest.mark.asyncio
async def test_vector_search_orders_and_filters(store):
    await store.upsert(Memory(id="close", content="a", embedding=[1.0, 0.1]))
    await store.upsert(Memory(id="medium", content="b", embedding=[0.6, 0.8]))
    await store.upsert(Memory(id="far", content="c", embedding=[0.0, 1.0]))
    await store.upsert(Memory(id="other-dim", content="d", embedding=[1.0, 0.0, 0.0]))
    await store.upsert(Memory(id="no-vector", content="e"))

    results = await store.search_by_vector([1.0, 0.0], limit=10, min_similarity=0.4)

    assert [m.id for m, _ in results] == ["close", "medium"]
    assert results[1][1] == pytest.approx(0.6)


@pytest.mark.asyncio
async def test_vector_search_respects_limit(store):
    for i in range(5):
        await store.upsert(Memory(id=f"m{i}", content="x", embedding=[1.0, 0.0]))
    results = await store.search_by_vector([1.0, 0.0], limit=2, min_similarity=0.0)
    # Equal similarity falls back to id order
    assert [m.id for m, _ in results] == ["m0", "m1"]


@pytest.mark.asyncio
async def test_tag_search(store):
    await store.upsert(Memory(id="py", content="x", tags=["python", "tools"]))
    await store.upsert(Memory(id="rs", content="y", tags=["rust"]))

    assert [m.id for m in await store.search_by_tags(["PYTHON"])] == ["py"]
    assert {m.id for m in await store.search_by_tags(["python", "rust"])} == {"py", "rs"}
    assert await store.search_by_tags([]) == []


@pytest.mark.asyncio
async def test_concurrent_upserts_of_same_id_are_serialized(store):
    await asyncio.gather(
        *(store.upsert(Memory(id="same", content=f"v{i}")) for i in range(10))
    )
    async with store._db.execute("SELECT COUNT(*) FROM memories") as cursor:
        (count,) = await cursor.fetchone()
    assert count == 1


# ---------------------------------------------------------------------------
# Pruning
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_prune_without_filters_does_nothing(store):
    await store.upsert(Memory(id="m1", content="x"))
    assert await store.prune_memories(dry_run=False) == []
    assert await store.get_memory("m1") is not None


@pytest.mark.asyncio
async def test_prune_dry_run_then_delete(store):
    old = datetime.now(timezone.utc) - timedelta(days=400)
    await store.upsert(Memory(id="old", content="stale", created_at=old, updated_at=old))
    await store.upsert(Memory(id="new", content="fresh"))
    await store.save_edge(MemoryEdge(source_id="old", target_id="new", relationship="precedes"))
    cutoff = datetime.now(timezone.utc) - timedelta(days=30)

    preview = await store.prune_memories(older_than=cutoff)
    assert [m.id for m in preview] == ["old"]
    assert await store.get_memory("old") is not None

    deleted = await store.prune_memories(older_than=cutoff, dry_run=False)
    assert [m.id for m in deleted] == ["old"]
    assert await store.get_memory("old") is None
    assert await store.get_edges("new") == []
    assert await store.search_by_keyword("stale") == []


# ---------------------------------------------------------------------------
# Edges
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_edges_require_existing_endpoints(store):
    await store.upsert(Memory(id="a", content="x"))
    with pytest.raises(MemoryNotFoundError):
        await store.save_edge(MemoryEdge(source_id="a", target_id="missing", relationship="r"))


@pytest.mark.asyncio
async def test_edge_upsert_updates_weight(store):
    await store.upsert(Memory(id="a", content="x"))
    await store.upsert(Memory(id="b", content="y"))
    await store.save_edge(MemoryEdge(source_id="a", target_id="b", relationship="r", weight=0.2))
    await store.save_edge(MemoryEdge(source_id="a", target_id="b", relationship="r", weight=0.9))

    edges = await store.get_edges("b")
    assert len(edges) == 1
    assert edges[0].weight == pytest.approx(0.9)


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_save_note_upserts_by_name(store):
    first = await store.save_note(Note(name="persona", content="v1"))
    second = await store.save_note(Note(name="persona", content="v2", always_append=True))

    assert second.id == first.id
    assert second.content == "v2"
    assert [n.name for n in await store.fetch_notes(always_append=True)] == ["persona"]


@pytest.mark.asyncio
async def test_search_notes_by_term_or_tag(store):
    await store.save_note(Note(name="deploy", description="Release process"))
    await store.save_note(Note(name="style", tags=["python"]))
    await store.save_note(Note(name="misc"))

    assert [n.name for n in await store.search_notes(["release"], [])] == ["deploy"]
    assert [n.name for n in await store.search_notes([], ["python"])] == ["style"]
    assert await store.search_notes([], []) == []
