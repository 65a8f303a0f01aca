"""Auxiliary model calls: tag generation and section summarization."""

from __future__ import annotations

import json
import re

from .provider import ModelProvider

_TAG_PROMPT = (
    "Extract 3 to 6 short search tags (single lowercase words or short phrases) "
    "that capture the topics of the following text. Reply with a JSON array of "
    "strings only.\n\nText:\n{text}"
)

_SUMMARY_PROMPT = (
    "Summarize the following content in at most {target} tokens. Keep names, "
    "identifiers, numbers and instructions exactly as written. Reply with the "
    "summary only.\n\n{text}"
)


def parse_tags(reply: str) -> list[str]:
    """Parse a JSON array of tags, falling back to comma/newline splitting."""
    reply = reply.strip()
    match = re.search(r"\[.*\]", reply, re.DOTALL)
    if match:
        try:
            values = json.loads(match.group(0))
            if isinstance(values, list):
                return [str(v).strip().lower() for v in values if str(v).strip()]
        except json.JSONDecodeError:
            pass
    parts = re.split(r"[,\n]", reply)
    return [p.strip(" -*#\"'").lower() for p in parts if p.strip(" -*#\"'")]


class TagGenerator:
    """Callable tag generator backed by the utility model."""

    def __init__(self, provider: ModelProvider, max_tags: int = 6):
        self.provider = provider
        self.max_tags = max_tags

    async def __call__(self, text: str) -> list[str]:
        reply = await self.provider.complete(_TAG_PROMPT.format(text=text), max_tokens=64)
        return parse_tags(reply)[: self.max_tags]


class ModelSummarizer:
    """``SectionSummarizer`` backed by the utility model."""

    def __init__(self, provider: ModelProvider):
        self.provider = provider

    async def summarize(self, text: str, target_tokens: int) -> str:
        return await self.provider.complete(
            _SUMMARY_PROMPT.format(target=target_tokens, text=text),
            max_tokens=max(16, target_tokens),
        )
