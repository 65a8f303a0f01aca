"""Prompt sections and their compression strategies."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum


class SectionKind(str, Enum):
    SYSTEM_INSTRUCTIONS = "system_instructions"
    NOTES = "notes"
    MEMORIES = "memories"
    TOOLS = "tools"
    HISTORY = "history"
    USER_QUERY = "user_query"


class StrategyType(str, Enum):
    KEEP = "keep"
    TRUNCATE = "truncate"
    SUMMARIZE = "summarize"


class Preserve(str, Enum):
    HEAD = "head"  # keep the earliest content
    TAIL = "tail"  # keep the latest content


@dataclass(frozen=True)
class CompressionStrategy:
    """How a section shrinks when it does not fit its share of the budget.

    ``preserve`` is the truncation side; for ``summarize`` it is the side
    used when summarization is unavailable or fails.
    """

    type: StrategyType
    preserve: Preserve = Preserve.HEAD

    @classmethod
    def keep(cls) -> "CompressionStrategy":
        return cls(StrategyType.KEEP)

    @classmethod
    def truncate(cls, preserve: Preserve = Preserve.HEAD) -> "CompressionStrategy":
        return cls(StrategyType.TRUNCATE, preserve)

    @classmethod
    def summarize(cls, fallback: Preserve = Preserve.HEAD) -> "CompressionStrategy":
        return cls(StrategyType.SUMMARIZE, fallback)


@dataclass
class ContextSection:
    """One prioritized block of prompt content, rebuilt every turn."""

    kind: SectionKind
    priority: int
    items: list[str] = field(default_factory=list)
    strategy: CompressionStrategy = field(default_factory=CompressionStrategy.keep)
    title: str | None = None
    item_separator: str = "\n"

    def header(self) -> str:
        return f"[{self.title}]" if self.title else ""

    def render(self, items: list[str] | None = None) -> str:
        items = self.items if items is None else items
        body = self.item_separator.join(item for item in items if item)
        if not body:
            return ""
        header = self.header()
        return f"{header}\n{body}" if header else body

    @property
    def is_empty(self) -> bool:
        return not any(self.items)
