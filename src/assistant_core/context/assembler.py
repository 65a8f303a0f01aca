"""Context assembly.

Recalls relevant memories and notes for a query, then builds the prompt
sections and composes them within the token budget.
"""

from __future__ import annotations

import asyncio
import re
import time
from dataclasses import dataclass, field
from typing import Awaitable, Callable

from loguru import logger

from ..config import BudgetConfig, RecallConfig
from ..memory.embedding import EmbeddingProvider
from ..memory.store import MemoryStore
from ..models import Memory, Message, Note, Role, ScoredMemory
from ..workspace.models import ToolDefinition
from .ranker import MemoryRanker
from .sections import CompressionStrategy, ContextSection, Preserve, SectionKind
from .token_budget import ComposedPrompt, TokenBudget

TagGenerator = Callable[[str], Awaitable[list[str]]]
ProgressCallback = Callable[[str], None]

_WORD_RE = re.compile(r"\w{3,}", re.UNICODE)


@dataclass
class ContextData:
    """Recall output for one generation.

    ``generated_tags`` and the raw per-path result lists are diagnostics and
    are never injected into the prompt.
    """

    notes: list[Note] = field(default_factory=list)
    memories: list[ScoredMemory] = field(default_factory=list)
    generated_tags: list[str] = field(default_factory=list)
    semantic_results: list[tuple[Memory, float]] = field(default_factory=list)
    tag_results: list[Memory] = field(default_factory=list)
    keyword_results: list[Memory] = field(default_factory=list)
    augmented_query: str = ""
    execution_time: float = 0.0


class ContextAssembler:
    """Gathers recall context and composes the final prompt.

    Recall paths (keyword, vector, tags) run concurrently and each one
    degrades to an empty result on failure, so a broken embedding model or
    utility model only lowers recall quality for the turn.
    """

    def __init__(
        self,
        store: MemoryStore,
        token_budget: TokenBudget,
        embedder: EmbeddingProvider | None = None,
        recall_config: RecallConfig | None = None,
        budget_config: BudgetConfig | None = None,
    ):
        self.store = store
        self.token_budget = token_budget
        self.embedder = embedder
        self.recall_config = recall_config or RecallConfig()
        self.budget_config = budget_config or BudgetConfig()
        self.ranker = MemoryRanker(self.recall_config)

    async def gather_context(
        self,
        query: str,
        history: list[Message] | None = None,
        limit: int | None = None,
        tag_generator: TagGenerator | None = None,
        on_progress: ProgressCallback | None = None,
    ) -> ContextData:
        """Recall notes and memories relevant to ``query``.

        Args:
            query: Raw user query; an empty query recalls notes only
            history: Prior conversation, used to augment tag generation
            limit: Maximum merged memories (defaults to config)
            tag_generator: Auxiliary model call extracting search tags
            on_progress: Optional callback receiving stage names

        Returns:
            ContextData with merged, deduplicated memories
        """
        started = time.monotonic()
        limit = self.recall_config.limit if limit is None else limit
        progress = on_progress or (lambda stage: None)

        progress("augmenting")
        augmented = self._augment_query(query, history or [])
        data = ContextData(augmented_query=augmented)

        if not query.strip():
            data.notes = await self._gather_notes([], [])
            data.execution_time = time.monotonic() - started
            return data

        if tag_generator is not None:
            progress("tagging")
            data.generated_tags = await self._generate_tags(augmented, tag_generator)

        progress("searching")
        keyword, (semantic, query_vector), tagged, notes = await asyncio.gather(
            self._recall("keyword", self.store.search_by_keyword(query), []),
            self._recall("semantic", self._semantic_search(query, limit), ([], None)),
            self._recall("tags", self.store.search_by_tags(data.generated_tags), []),
            self._gather_notes(self._terms(query), data.generated_tags),
        )

        progress("ranking")
        data.keyword_results = keyword
        data.semantic_results = semantic
        data.tag_results = tagged
        data.notes = notes
        data.memories = self.ranker.rank(
            keyword=keyword,
            semantic=semantic,
            tagged=tagged,
            generated_tags=data.generated_tags,
            limit=limit,
            query_vector=query_vector,
        )
        data.execution_time = time.monotonic() - started

        logger.info(
            f"Found {len(data.memories)} relevant memories "
            f"(keyword={len(keyword)}, semantic={len(semantic)}, "
            f"tags={len(tagged)}) and {len(notes)} notes "
            f"in {data.execution_time * 1000:.0f}ms"
        )
        return data

    def _augment_query(self, query: str, history: list[Message]) -> str:
        recent = [
            m.content
            for m in history
            if m.role in (Role.USER, Role.ASSISTANT) and m.content.strip()
        ][-self.recall_config.history_messages_for_tags :]
        if not recent:
            return query
        augmented = " ".join([*recent, query]).strip()
        logger.debug(f"Augmented query for search: {augmented}")
        return augmented

    async def _generate_tags(self, text: str, tag_generator: TagGenerator) -> list[str]:
        try:
            tags = await tag_generator(text)
        except Exception as e:
            logger.warning(f"Tag generation failed, continuing without tags: {e}")
            return []
        cleaned = []
        for tag in tags or []:
            tag = str(tag).strip().lower()
            if tag and tag not in cleaned:
                cleaned.append(tag)
        logger.debug(f"Generated tags: {cleaned}")
        return cleaned

    async def _semantic_search(
        self, query: str, limit: int
    ) -> tuple[list[tuple[Memory, float]], list[float] | None]:
        if self.embedder is None:
            return [], None
        vector = await self.embedder.embed(query)
        results = await self.store.search_by_vector(
            vector,
            limit=limit * self.recall_config.semantic_multiplier,
            min_similarity=self.recall_config.min_similarity,
        )
        return results, vector

    @staticmethod
    async def _recall(name: str, coro: Awaitable, fallback):
        try:
            return await coro
        except Exception as e:
            logger.warning(f"{name} recall failed, degrading to empty result: {e}")
            return fallback

    async def _gather_notes(self, terms: list[str], tags: list[str]) -> list[Note]:
        try:
            notes = await self.store.fetch_notes(always_append=True)
            if terms or tags:
                notes += await self.store.search_notes(terms, tags)
        except Exception as e:
            logger.warning(f"Note lookup failed: {e}")
            return []

        seen: set[str] = set()
        unique = []
        for note in notes:
            if note.id not in seen:
                seen.add(note.id)
                unique.append(note)
        return unique

    @staticmethod
    def _terms(query: str) -> list[str]:
        terms: list[str] = []
        for word in _WORD_RE.findall(query.lower()):
            if word not in terms:
                terms.append(word)
        return terms[:8]

    def build_sections(
        self,
        query: str,
        history: list[Message],
        context: ContextData,
        tools: list[ToolDefinition],
        system_instructions: str,
    ) -> list[ContextSection]:
        """Build this turn's prompt sections in declaration order."""
        priorities = self.budget_config.priorities

        def priority(kind: SectionKind) -> int:
            return priorities.get(kind, 0)

        return [
            ContextSection(
                kind=SectionKind.SYSTEM_INSTRUCTIONS,
                priority=priority(SectionKind.SYSTEM_INSTRUCTIONS),
                items=[system_instructions],
                strategy=CompressionStrategy.keep(),
            ),
            ContextSection(
                kind=SectionKind.NOTES,
                priority=priority(SectionKind.NOTES),
                items=[note.format_for_context() for note in context.notes],
                strategy=CompressionStrategy.summarize(fallback=Preserve.HEAD),
                title="Notes",
                item_separator="\n\n",
            ),
            ContextSection(
                kind=SectionKind.MEMORIES,
                priority=priority(SectionKind.MEMORIES),
                items=[s.memory.format_for_context() for s in context.memories],
                strategy=CompressionStrategy.truncate(Preserve.HEAD),
                title="Relevant memories",
            ),
            ContextSection(
                kind=SectionKind.TOOLS,
                priority=priority(SectionKind.TOOLS),
                items=[tool.format_for_context() for tool in tools],
                strategy=CompressionStrategy.truncate(Preserve.HEAD),
                title="Available tools",
            ),
            ContextSection(
                kind=SectionKind.HISTORY,
                priority=priority(SectionKind.HISTORY),
                items=[
                    m.format_for_context() for m in history if m.role != Role.SYSTEM
                ],
                strategy=CompressionStrategy.truncate(Preserve.TAIL),
                title="Conversation so far",
            ),
            ContextSection(
                kind=SectionKind.USER_QUERY,
                priority=priority(SectionKind.USER_QUERY),
                items=[f"user: {query}"] if query.strip() else [],
                strategy=CompressionStrategy.keep(),
            ),
        ]

    async def build_prompt(
        self,
        query: str,
        history: list[Message],
        context: ContextData,
        tools: list[ToolDefinition],
        system_instructions: str,
        capacity: int | None = None,
    ) -> ComposedPrompt:
        """Compose the prompt for one generation within the token budget."""
        sections = self.build_sections(query, history, context, tools, system_instructions)
        capacity = self.budget_config.prompt_capacity if capacity is None else capacity
        return await self.token_budget.compose(sections, capacity)
