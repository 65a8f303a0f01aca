"""SQLite storage backend for memories, memory edges and notes.

Uses aiosqlite for async access, WAL mode for concurrent readers, an FTS5
index for keyword recall, and numpy for brute-force vector similarity.
Writes to the same memory or note are serialized with a per-row lock.
"""

from __future__ import annotations

import asyncio
import json
import weakref
from datetime import datetime, timezone
from pathlib import Path

import aiosqlite
import numpy as np
from loguru import logger

from ..errors import MemoryNotFoundError, StoreNotInitializedError
from ..models import Memory, MemoryEdge, Note
from .embedding import cosine_similarities, deserialize_embedding, serialize_embedding


def _to_iso(value: datetime) -> str:
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return value.isoformat()


def _from_iso(value: str | None) -> datetime:
    if not value:
        return datetime.now(timezone.utc)
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _sanitize_fts_query(query: str) -> str:
    """Quote each word so FTS5 operators in user text are treated literally."""
    words = [w.replace('"', '""') for w in query.split() if w.strip()]
    return " OR ".join(f'"{w}"' for w in words)


class SQLiteMemoryStore:
    """SQLite-backed ``MemoryStore``.

    Provides async CRUD for memories, edges and notes plus the three recall
    paths (keyword, vector, tags) used by context assembly.
    """

    def __init__(self, db_path: str = "./data/assistant.db"):
        """Initialize SQLite store.

        Args:
            db_path: Path to SQLite database file
        """
        self.db_path = db_path
        self._db: aiosqlite.Connection | None = None
        self._row_locks: weakref.WeakValueDictionary[str, asyncio.Lock] = (
            weakref.WeakValueDictionary()
        )
        logger.info(f"SQLiteMemoryStore initialized with db_path: {db_path}")

    async def initialize(self) -> None:
        """Create tables, FTS index and triggers if they don't exist."""
        Path(self.db_path).parent.mkdir(parents=True, exist_ok=True)

        self._db = await aiosqlite.connect(self.db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.execute("PRAGMA journal_mode=WAL")

        await self._create_tables()
        await self._db.commit()
        logger.info("SQLite memory database initialized successfully")

    async def close(self) -> None:
        """Close database connection."""
        if self._db:
            await self._db.close()
            self._db = None
            logger.info("SQLite database connection closed")

    def _conn(self) -> aiosqlite.Connection:
        if not self._db:
            raise StoreNotInitializedError()
        return self._db

    def _lock_for(self, key: str) -> asyncio.Lock:
        lock = self._row_locks.get(key)
        if lock is None:
            lock = asyncio.Lock()
            self._row_locks[key] = lock
        return lock

    async def _create_tables(self) -> None:
        db = self._conn()

        await db.execute("""
            CREATE TABLE IF NOT EXISTS memories (
                id TEXT PRIMARY KEY,
                title TEXT NOT NULL DEFAULT '',
                content TEXT NOT NULL,
                tags TEXT NOT NULL DEFAULT '[]',
                embedding BLOB,
                created_at TEXT NOT NULL,
                updated_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS memory_edges (
                source_id TEXT NOT NULL,
                target_id TEXT NOT NULL,
                relationship TEXT NOT NULL,
                weight REAL NOT NULL DEFAULT 1.0,
                created_at TEXT NOT NULL,
                PRIMARY KEY (source_id, target_id, relationship)
            )
        """)

        await db.execute("""
            CREATE TABLE IF NOT EXISTS notes (
                id TEXT PRIMARY KEY,
                name TEXT NOT NULL UNIQUE,
                description TEXT NOT NULL DEFAULT '',
                content TEXT NOT NULL DEFAULT '',
                tags TEXT NOT NULL DEFAULT '[]',
                is_readonly INTEGER NOT NULL DEFAULT 0,
                always_append INTEGER NOT NULL DEFAULT 0,
                updated_at TEXT NOT NULL
            )
        """)

        await db.execute("""
            CREATE VIRTUAL TABLE IF NOT EXISTS memories_fts
            USING fts5(title, content, content=memories, content_rowid=rowid)
        """)

        # Triggers to keep FTS5 in sync with memories
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS memories_ai AFTER INSERT ON memories BEGIN
                INSERT INTO memories_fts(rowid, title, content)
                VALUES (new.rowid, new.title, new.content);
            END
        """)
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS memories_ad AFTER DELETE ON memories BEGIN
                INSERT INTO memories_fts(memories_fts, rowid, title, content)
                VALUES ('delete', old.rowid, old.title, old.content);
            END
        """)
        await db.execute("""
            CREATE TRIGGER IF NOT EXISTS memories_au AFTER UPDATE ON memories BEGIN
                INSERT INTO memories_fts(memories_fts, rowid, title, content)
                VALUES ('delete', old.rowid, old.title, old.content);
                INSERT INTO memories_fts(rowid, title, content)
                VALUES (new.rowid, new.title, new.content);
            END
        """)

        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_memories_updated ON memories(updated_at)"
        )
        await db.execute(
            "CREATE INDEX IF NOT EXISTS idx_edges_target ON memory_edges(target_id)"
        )
        logger.debug("Memory tables created successfully")

    @staticmethod
    def _row_to_memory(row: aiosqlite.Row) -> Memory:
        embedding = row["embedding"]
        return Memory(
            id=row["id"],
            title=row["title"],
            content=row["content"],
            tags=json.loads(row["tags"] or "[]"),
            embedding=deserialize_embedding(embedding) if embedding else None,
            created_at=_from_iso(row["created_at"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    @staticmethod
    def _row_to_note(row: aiosqlite.Row) -> Note:
        return Note(
            id=row["id"],
            name=row["name"],
            description=row["description"],
            content=row["content"],
            tags=json.loads(row["tags"] or "[]"),
            is_readonly=bool(row["is_readonly"]),
            always_append=bool(row["always_append"]),
            updated_at=_from_iso(row["updated_at"]),
        )

    # ------------------------------------------------------------------
    # Memories
    # ------------------------------------------------------------------

    async def upsert(self, memory: Memory) -> Memory:
        """Insert or update a memory; ``created_at`` survives updates."""
        db = self._conn()
        async with self._lock_for(f"memory:{memory.id}"):
            existing = await self.get_memory(memory.id)
            now = datetime.now(timezone.utc)
            stored = memory.model_copy(
                update={
                    "created_at": existing.created_at if existing else memory.created_at,
                    "updated_at": now if existing else memory.updated_at,
                }
            )
            await db.execute(
                """
                INSERT INTO memories (id, title, content, tags, embedding,
                                      created_at, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(id) DO UPDATE SET
                    title = excluded.title,
                    content = excluded.content,
                    tags = excluded.tags,
                    embedding = excluded.embedding,
                    updated_at = excluded.updated_at
                """,
                (
                    stored.id,
                    stored.title,
                    stored.content,
                    json.dumps(sorted(stored.tags)),
                    serialize_embedding(stored.embedding) if stored.embedding else None,
                    _to_iso(stored.created_at),
                    _to_iso(stored.updated_at),
                ),
            )
            await db.commit()
        logger.debug(f"Upserted memory {stored.id} ({'update' if existing else 'insert'})")
        return stored

    async def get_memory(self, memory_id: str) -> Memory | None:
        db = self._conn()
        async with db.execute("SELECT * FROM memories WHERE id = ?", (memory_id,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_memory(row) if row else None

    async def search_by_keyword(self, query: str, limit: int = 20) -> list[Memory]:
        """Full-text search over memory titles and content."""
        db = self._conn()
        fts_query = _sanitize_fts_query(query)
        if not fts_query:
            return []

        sql = """
            SELECT m.*
            FROM memories_fts fts
            JOIN memories m ON m.rowid = fts.rowid
            WHERE memories_fts MATCH ?
            ORDER BY rank
            LIMIT ?
        """
        try:
            async with db.execute(sql, (fts_query, limit)) as cursor:
                rows = await cursor.fetchall()
        except aiosqlite.OperationalError as e:
            logger.warning(f"FTS search failed for query '{query}': {e}")
            return []
        return [self._row_to_memory(row) for row in rows]

    async def search_by_vector(
        self, vector: list[float], limit: int, min_similarity: float
    ) -> list[tuple[Memory, float]]:
        """Cosine-similarity search over all stored embeddings.

        Returns:
            (memory, similarity) pairs at or above ``min_similarity``,
            most similar first, at most ``limit`` entries
        """
        db = self._conn()
        if not vector or limit <= 0:
            return []

        async with db.execute(
            "SELECT * FROM memories WHERE embedding IS NOT NULL"
        ) as cursor:
            rows = await cursor.fetchall()

        candidates = [self._row_to_memory(row) for row in rows]
        candidates = [m for m in candidates if len(m.embedding or []) == len(vector)]
        if not candidates:
            return []

        matrix = np.asarray([m.embedding for m in candidates], dtype=float)
        scores = cosine_similarities(vector, matrix)
        ranked = sorted(
            (
                (memory, float(score))
                for memory, score in zip(candidates, scores)
                if score >= min_similarity
            ),
            key=lambda pair: (-pair[1], pair[0].id),
        )
        return ranked[:limit]

    async def search_by_tags(self, tags: list[str], limit: int = 20) -> list[Memory]:
        db = self._conn()
        normalized = sorted({t.strip().lower() for t in tags if t.strip()})
        if not normalized:
            return []

        placeholders = ", ".join("?" for _ in normalized)
        sql = f"""
            SELECT DISTINCT m.*
            FROM memories m, json_each(m.tags) t
            WHERE t.value IN ({placeholders})
            ORDER BY m.updated_at DESC
            LIMIT ?
        """
        async with db.execute(sql, (*normalized, limit)) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_memory(row) for row in rows]

    async def prune_memories(
        self,
        *,
        older_than: datetime | None = None,
        query: str | None = None,
        dry_run: bool = True,
    ) -> list[Memory]:
        """Delete memories matching the filters, along with their edges.

        Args:
            older_than: Only memories last updated before this time
            query: Only memories matching this keyword query
            dry_run: When True, report candidates without deleting

        Returns:
            The memories that were (or would be) deleted
        """
        db = self._conn()
        if older_than is None and not query:
            logger.warning("prune_memories called without filters; nothing pruned")
            return []

        if query:
            candidates = await self.search_by_keyword(query, limit=10_000)
        else:
            async with db.execute("SELECT * FROM memories") as cursor:
                candidates = [self._row_to_memory(row) for row in await cursor.fetchall()]

        if older_than is not None:
            cutoff = older_than if older_than.tzinfo else older_than.replace(tzinfo=timezone.utc)
            candidates = [m for m in candidates if m.updated_at < cutoff]

        if dry_run or not candidates:
            logger.info(f"Prune dry run: {len(candidates)} memories would be deleted")
            return candidates

        ids = [m.id for m in candidates]
        placeholders = ", ".join("?" for _ in ids)
        await db.execute(f"DELETE FROM memories WHERE id IN ({placeholders})", ids)
        await db.execute(
            f"DELETE FROM memory_edges WHERE source_id IN ({placeholders}) "
            f"OR target_id IN ({placeholders})",
            ids + ids,
        )
        await db.commit()
        logger.info(f"Pruned {len(ids)} memories")
        return candidates

    # ------------------------------------------------------------------
    # Edges
    # ------------------------------------------------------------------

    async def save_edge(self, edge: MemoryEdge) -> MemoryEdge:
        """Save a directed edge; both endpoints must already exist."""
        db = self._conn()
        for memory_id in (edge.source_id, edge.target_id):
            if await self.get_memory(memory_id) is None:
                raise MemoryNotFoundError(memory_id)

        await db.execute(
            """
            INSERT INTO memory_edges (source_id, target_id, relationship, weight, created_at)
            VALUES (?, ?, ?, ?, ?)
            ON CONFLICT(source_id, target_id, relationship) DO UPDATE SET
                weight = excluded.weight
            """,
            (
                edge.source_id,
                edge.target_id,
                edge.relationship,
                edge.weight,
                _to_iso(edge.created_at),
            ),
        )
        await db.commit()
        return edge

    async def get_edges(self, memory_id: str) -> list[MemoryEdge]:
        """Edges where the memory is either endpoint."""
        db = self._conn()
        async with db.execute(
            "SELECT * FROM memory_edges WHERE source_id = ? OR target_id = ? "
            "ORDER BY weight DESC",
            (memory_id, memory_id),
        ) as cursor:
            rows = await cursor.fetchall()
        return [
            MemoryEdge(
                source_id=row["source_id"],
                target_id=row["target_id"],
                relationship=row["relationship"],
                weight=row["weight"],
                created_at=_from_iso(row["created_at"]),
            )
            for row in rows
        ]

    # ------------------------------------------------------------------
    # Notes
    # ------------------------------------------------------------------

    async def save_note(self, note: Note) -> Note:
        db = self._conn()
        async with self._lock_for(f"note:{note.name}"):
            await db.execute(
                """
                INSERT INTO notes (id, name, description, content, tags,
                                   is_readonly, always_append, updated_at)
                VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT(name) DO UPDATE SET
                    description = excluded.description,
                    content = excluded.content,
                    tags = excluded.tags,
                    is_readonly = excluded.is_readonly,
                    always_append = excluded.always_append,
                    updated_at = excluded.updated_at
                """,
                (
                    note.id,
                    note.name,
                    note.description,
                    note.content,
                    json.dumps(sorted(note.tags)),
                    int(note.is_readonly),
                    int(note.always_append),
                    _to_iso(note.updated_at),
                ),
            )
            await db.commit()
        return await self.get_note_by_name(note.name) or note

    async def get_note_by_name(self, name: str) -> Note | None:
        db = self._conn()
        async with db.execute("SELECT * FROM notes WHERE name = ?", (name,)) as cursor:
            row = await cursor.fetchone()
        return self._row_to_note(row) if row else None

    async def fetch_notes(self, always_append: bool | None = None) -> list[Note]:
        db = self._conn()
        if always_append is None:
            sql, params = "SELECT * FROM notes ORDER BY name", ()
        else:
            sql = "SELECT * FROM notes WHERE always_append = ? ORDER BY name"
            params = (int(always_append),)
        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_note(row) for row in rows]

    async def search_notes(self, terms: list[str], tags: list[str]) -> list[Note]:
        """Notes whose name or description contains a term, or sharing a tag."""
        db = self._conn()
        conditions: list[str] = []
        params: list[str] = []
        for term in terms:
            pattern = f"%{term.lower()}%"
            conditions.append("(lower(n.name) LIKE ? OR lower(n.description) LIKE ?)")
            params.extend([pattern, pattern])

        normalized_tags = sorted({t.strip().lower() for t in tags if t.strip()})
        if normalized_tags:
            placeholders = ", ".join("?" for _ in normalized_tags)
            conditions.append(
                f"EXISTS (SELECT 1 FROM json_each(n.tags) t WHERE t.value IN ({placeholders}))"
            )
            params.extend(normalized_tags)

        if not conditions:
            return []

        sql = f"SELECT * FROM notes n WHERE {' OR '.join(conditions)} ORDER BY n.name"
        async with db.execute(sql, params) as cursor:
            rows = await cursor.fetchall()
        return [self._row_to_note(row) for row in rows]
