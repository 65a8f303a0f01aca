"""Token budget allocation across prioritized prompt sections.

Sections are allocated greedily in priority order (declaration order breaks
ties) and each applies its own compression strategy when its natural
rendering does not fit what is left. The composed text never exceeds the
requested capacity as measured by the same ``TokenCounter``.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from typing import Protocol

from loguru import logger

from .sections import ContextSection, Preserve, SectionKind, StrategyType
from .token_counter import TokenCounter


class SectionSummarizer(Protocol):
    async def summarize(self, text: str, target_tokens: int) -> str:
        ...


class SectionOutcome(str, Enum):
    FULL = "full"
    TRUNCATED = "truncated"
    SUMMARIZED = "summarized"
    OMITTED = "omitted"


@dataclass
class RenderedSection:
    kind: SectionKind
    priority: int
    text: str
    tokens: int
    outcome: SectionOutcome
    preserve: Preserve = Preserve.HEAD
    shrinkable: bool = True  # false for keep sections


@dataclass
class ComposedPrompt:
    """Result of composing sections within a capacity."""

    text: str
    sections: list[RenderedSection] = field(default_factory=list)
    total_tokens: int = 0
    capacity: int = 0

    def section_text(self, kind: SectionKind) -> str:
        for section in self.sections:
            if section.kind == kind:
                return section.text
        return ""

    def outcome(self, kind: SectionKind) -> SectionOutcome | None:
        for section in self.sections:
            if section.kind == kind:
                return section.outcome
        return None

    def to_messages(self) -> list[dict]:
        """Split into a system message and a user message for chat providers."""
        conversational = (SectionKind.HISTORY, SectionKind.USER_QUERY)
        system = "\n\n".join(
            s.text for s in self.sections if s.text and s.kind not in conversational
        )
        user = "\n\n".join(
            s.text
            for kind in conversational
            for s in self.sections
            if s.kind == kind and s.text
        )
        messages = []
        if system:
            messages.append({"role": "system", "content": system})
        if user:
            messages.append({"role": "user", "content": user})
        return messages


class TokenBudget:
    """Composes prompt sections into a single text bounded by a token capacity."""

    def __init__(
        self,
        token_counter: TokenCounter,
        summarizer: SectionSummarizer | None = None,
        separator: str = "\n\n",
    ):
        """Initialize the budget.

        Args:
            token_counter: Counter used for every size measurement
            summarizer: Auxiliary model used by ``summarize`` sections
            separator: Text placed between rendered sections
        """
        self.token_counter = token_counter
        self.summarizer = summarizer
        self.separator = separator

    async def compose(
        self, sections: list[ContextSection], capacity: int
    ) -> ComposedPrompt:
        """Allocate ``capacity`` tokens across ``sections``.

        Args:
            sections: Sections in declaration order
            capacity: Maximum token count of the composed text

        Returns:
            ComposedPrompt whose ``total_tokens`` is at most ``capacity``
        """
        if capacity <= 0:
            return ComposedPrompt(text="", capacity=capacity)

        ordered = [
            section
            for _, section in sorted(
                enumerate(sections), key=lambda pair: (-pair[1].priority, pair[0])
            )
        ]
        separator_cost = self.token_counter.count(self.separator)

        remaining = capacity
        placed_any = False
        rendered: list[RenderedSection] = []
        for section in ordered:
            if section.is_empty:
                continue
            full = section.render()

            overhead = separator_cost if placed_any else 0
            text, outcome = await self._allocate(section, full, remaining - overhead)
            tokens = self.token_counter.count(text)
            if text:
                remaining -= tokens + overhead
                placed_any = True
            rendered.append(
                RenderedSection(
                    kind=section.kind,
                    priority=section.priority,
                    text=text,
                    tokens=tokens,
                    outcome=outcome,
                    preserve=section.strategy.preserve,
                    shrinkable=section.strategy.type != StrategyType.KEEP,
                )
            )

        self._enforce_capacity(rendered, capacity)

        text = self.separator.join(r.text for r in rendered if r.text)
        total = self.token_counter.count(text)
        logger.debug(
            f"Composed prompt: {total}/{capacity} tokens, "
            + ", ".join(f"{r.kind.value}={r.outcome.value}" for r in rendered)
        )
        return ComposedPrompt(
            text=text, sections=rendered, total_tokens=total, capacity=capacity
        )

    async def _allocate(
        self, section: ContextSection, full: str, available: int
    ) -> tuple[str, SectionOutcome]:
        if available <= 0:
            return "", SectionOutcome.OMITTED

        if self.token_counter.count(full) <= available:
            return full, SectionOutcome.FULL

        strategy = section.strategy
        if strategy.type == StrategyType.KEEP:
            return "", SectionOutcome.OMITTED

        if strategy.type == StrategyType.SUMMARIZE:
            summary = await self._summarize(section, full, available)
            if summary:
                return summary, SectionOutcome.SUMMARIZED

        text = self._truncate_section(section, section.items, available, strategy.preserve)
        if not text:
            return "", SectionOutcome.OMITTED
        return text, SectionOutcome.TRUNCATED

    async def _summarize(
        self, section: ContextSection, full: str, available: int
    ) -> str | None:
        if self.summarizer is None:
            return None
        try:
            summary = await self.summarizer.summarize(full, available)
        except Exception as e:
            logger.warning(
                f"Summarization of {section.kind.value} failed, truncating instead: {e}"
            )
            return None

        summary = (summary or "").strip()
        if not summary:
            return None
        return self._truncate_section(section, [summary], available, Preserve.HEAD) or None

    def _truncate_section(
        self,
        section: ContextSection,
        items: list[str],
        available: int,
        preserve: Preserve,
    ) -> str:
        header = section.header()
        budget = available - (self.token_counter.count(header + "\n") if header else 0)
        while budget > 0:
            kept = self.fit_items(items, budget, preserve, section.item_separator)
            if not kept:
                return ""
            text = section.render(kept)
            overshoot = self.token_counter.count(text) - available
            if overshoot <= 0:
                return text
            budget -= overshoot
        return ""

    def _enforce_capacity(self, rendered: list[RenderedSection], capacity: int) -> None:
        """Shrink the lowest-priority sections until the joined text fits.

        Token counts are not strictly additive across concatenation, so the
        joined output is re-measured rather than trusting per-section sums.
        """
        while True:
            joined = self.separator.join(r.text for r in rendered if r.text)
            overflow = self.token_counter.count(joined) - capacity
            if overflow <= 0:
                return

            victim = next(r for r in reversed(rendered) if r.text)
            target = victim.tokens - overflow
            shrunk = ""
            if victim.shrinkable and target > 0:
                shrunk = self.fit_text(victim.text, target, victim.preserve)
            shrunk_tokens = self.token_counter.count(shrunk)
            if not shrunk or shrunk_tokens >= victim.tokens:
                logger.debug(f"Dropping {victim.kind.value} section to fit capacity")
                victim.text, victim.tokens = "", 0
                victim.outcome = SectionOutcome.OMITTED
            else:
                victim.text, victim.tokens = shrunk, shrunk_tokens
                victim.outcome = SectionOutcome.TRUNCATED

    def fit_items(
        self,
        items: list[str],
        max_tokens: int,
        preserve: Preserve = Preserve.HEAD,
        separator: str = "\n",
    ) -> list[str]:
        """Keep whole items from the preserved end, clipping the boundary item.

        Args:
            items: Items in chronological order
            max_tokens: Maximum token budget
            preserve: Which end of the list survives
            separator: Separator counted between kept items

        Returns:
            Kept items, still in chronological order
        """
        if max_tokens <= 0:
            return []

        separator_cost = self.token_counter.count(separator)
        sequence = items if preserve == Preserve.HEAD else list(reversed(items))
        kept: list[str] = []
        used = 0
        for item in sequence:
            if not item:
                continue
            joiner = separator_cost if kept else 0
            cost = self.token_counter.count(item) + joiner
            if used + cost <= max_tokens:
                kept.append(item)
                used += cost
                continue
            partial = self.fit_text(item, max_tokens - used - joiner, preserve)
            if partial:
                kept.append(partial)
            break

        if preserve == Preserve.TAIL:
            kept.reverse()
        return kept

    def fit_text(
        self, text: str, max_tokens: int, preserve: Preserve = Preserve.HEAD
    ) -> str:
        """Clip text to fit within a token budget.

        Args:
            text: Text to fit
            max_tokens: Maximum token budget
            preserve: Keep the beginning (HEAD) or the end (TAIL)

        Returns:
            Fitted text, possibly empty
        """
        if not text.strip() or max_tokens <= 0:
            return ""

        current_tokens = self.token_counter.count(text)
        if current_tokens <= max_tokens:
            return text

        def clip(value: str, length: int) -> str:
            if preserve == Preserve.HEAD:
                return value[:length]
            return value[len(value) - length:]

        # Estimate character ratio, then shrink by 10% until it fits
        char_ratio = len(text) / max(current_tokens, 1)
        fitted = clip(text, int(max_tokens * char_ratio * 0.9))
        fitted_tokens = self.token_counter.count(fitted)
        while fitted_tokens > max_tokens and fitted:
            fitted = clip(fitted, int(len(fitted) * 0.9))
            fitted_tokens = self.token_counter.count(fitted)

        logger.debug(
            f"Fitted text from {current_tokens} to {fitted_tokens} tokens "
            f"(budget: {max_tokens}, preserve: {preserve.value})"
        )
        return fitted
