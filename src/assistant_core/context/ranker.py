"""Merging and ranking of recalled memories."""

from __future__ import annotations

import math
from datetime import datetime, timezone

from ..config import RecallConfig
from ..memory.embedding import cosine_similarity
from ..models import Memory, ScoredMemory


class MemoryRanker:
    """Combines keyword, semantic and tag recall into one ranked list.

    Scoring:
    - base: vector similarity when known, otherwise the cosine similarity
      to the query vector (if both exist) or ``keyword_score``
    - tag boost: added when a memory's tags intersect the generated tags
    - time decay: multiplied by ``2 ** (-age_days / half_life_days)``
    """

    def __init__(self, config: RecallConfig | None = None):
        self.config = config or RecallConfig()

    def decay(self, memory: Memory, now: datetime | None = None) -> float:
        now = now or datetime.now(timezone.utc)
        updated = memory.updated_at
        if updated.tzinfo is None:
            updated = updated.replace(tzinfo=timezone.utc)
        age_days = max(0.0, (now - updated).total_seconds() / 86400.0)
        return math.pow(2.0, -age_days / self.config.decay_half_life_days)

    def rank(
        self,
        keyword: list[Memory],
        semantic: list[tuple[Memory, float]],
        tagged: list[Memory],
        generated_tags: list[str],
        limit: int,
        query_vector: list[float] | None = None,
        now: datetime | None = None,
    ) -> list[ScoredMemory]:
        """Merge the three recall paths by memory id and rank them.

        Args:
            keyword: Keyword (full-text) matches
            semantic: (memory, similarity) pairs from vector search
            tagged: Memories sharing at least one generated tag
            generated_tags: Tags derived from the query
            limit: Maximum number of results
            query_vector: Query embedding, used to score tag-only hits
            now: Reference time for decay

        Returns:
            Distinct memories, best first, at most ``limit``
        """
        if limit <= 0:
            return []

        by_id: dict[str, Memory] = {}
        base: dict[str, float] = {}
        similarity: dict[str, float] = {}

        for memory, score in semantic:
            by_id.setdefault(memory.id, memory)
            similarity[memory.id] = max(score, similarity.get(memory.id, score))
            base[memory.id] = similarity[memory.id]

        for memory in keyword:
            if memory.id not in by_id:
                by_id[memory.id] = memory
                base[memory.id] = self.config.keyword_score

        for memory in tagged:
            if memory.id in by_id:
                continue
            by_id[memory.id] = memory
            if query_vector and memory.embedding:
                base[memory.id] = cosine_similarity(query_vector, memory.embedding)
            else:
                base[memory.id] = self.config.keyword_score

        tag_set = {t.lower() for t in generated_tags}
        scored = []
        for memory_id, memory in by_id.items():
            score = base[memory_id]
            if tag_set and memory.tags & tag_set:
                score += self.config.tag_boost
            score *= self.decay(memory, now)
            scored.append(
                ScoredMemory(
                    memory=memory, score=score, similarity=similarity.get(memory_id)
                )
            )

        scored.sort(key=lambda s: (-s.score, s.memory.id))
        return scored[:limit]
