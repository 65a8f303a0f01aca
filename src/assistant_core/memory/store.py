"""Storage contract consumed by context assembly and the memory tools."""

from __future__ import annotations

from datetime import datetime
from typing import Protocol

from ..models import Memory, MemoryEdge, Note


class MemoryStore(Protocol):
    async def search_by_keyword(self, query: str, limit: int = 20) -> list[Memory]:
        ...

    async def search_by_vector(
        self, vector: list[float], limit: int, min_similarity: float
    ) -> list[tuple[Memory, float]]:
        ...

    async def search_by_tags(self, tags: list[str], limit: int = 20) -> list[Memory]:
        ...

    async def upsert(self, memory: Memory) -> Memory:
        ...

    async def get_memory(self, memory_id: str) -> Memory | None:
        ...

    async def save_edge(self, edge: MemoryEdge) -> MemoryEdge:
        ...

    async def get_edges(self, memory_id: str) -> list[MemoryEdge]:
        ...

    async def fetch_notes(self, always_append: bool | None = None) -> list[Note]:
        ...

    async def search_notes(self, terms: list[str], tags: list[str]) -> list[Note]:
        ...

    async def save_note(self, note: Note) -> Note:
        ...

    async def get_note_by_name(self, name: str) -> Note | None:
        ...

    async def prune_memories(
        self,
        *,
        older_than: datetime | None = None,
        query: str | None = None,
        dry_run: bool = True,
    ) -> list[Memory]:
        ...
