"""Model provider contract and stream accumulation."""

from __future__ import annotations

import json
import re
from dataclasses import dataclass
from typing import AsyncIterator, Protocol

from loguru import logger

from ..context.token_budget import ComposedPrompt
from ..models import Message, Role, ToolCall
from ..workspace.models import ToolDefinition

_TEXT_TOOL_CALL_RE = re.compile(r"<tool_call>\s*(.*?)\s*</tool_call>", re.DOTALL)


@dataclass
class ToolCallDelta:
    """Fragment of a streamed tool call; fragments share an ``index``."""

    index: int = 0
    id: str | None = None
    name: str | None = None
    arguments: str = ""


@dataclass
class StreamDelta:
    content: str | None = None
    tool_call: ToolCallDelta | None = None
    done: bool = False


class ModelProvider(Protocol):
    def stream_completion(
        self, prompt: ComposedPrompt, tools: list[ToolDefinition]
    ) -> AsyncIterator[StreamDelta]:
        """Stream a completion as deltas, ending with ``done=True``."""
        ...

    async def complete(self, prompt: str, max_tokens: int | None = None) -> str:
        """Non-streaming call on the cheaper utility model."""
        ...


class StreamAccumulator:
    """Builds content and tool calls from a delta stream.

    Native tool-call deltas are merged by index. When the model emits no
    native calls, ``<tool_call>{"name": ..., "arguments": {...}}</tool_call>``
    blocks in the text are parsed instead and stripped from the content.
    """

    def __init__(self):
        self._content: list[str] = []
        self._calls: dict[int, ToolCallDelta] = {}
        self.done = False

    def feed(self, delta: StreamDelta) -> None:
        if delta.content:
            self._content.append(delta.content)
        if delta.tool_call is not None:
            fragment = delta.tool_call
            entry = self._calls.setdefault(fragment.index, ToolCallDelta(index=fragment.index))
            if fragment.id:
                entry.id = fragment.id
            if fragment.name:
                entry.name = (entry.name or "") + fragment.name
            entry.arguments += fragment.arguments or ""
        if delta.done:
            self.done = True

    @property
    def raw_content(self) -> str:
        return "".join(self._content)

    @property
    def content(self) -> str:
        """Content with parsed text tool-call blocks removed."""
        text = self.raw_content
        if self._calls:
            return text
        return _TEXT_TOOL_CALL_RE.sub("", text).strip() if self._text_calls() else text

    def tool_calls(self) -> list[ToolCall]:
        if self._calls:
            return [
                self._build_call(entry.name or "", entry.arguments, entry.id)
                for _, entry in sorted(self._calls.items())
                if entry.name
            ]
        return self._text_calls()

    def _text_calls(self) -> list[ToolCall]:
        calls = []
        for block in _TEXT_TOOL_CALL_RE.findall(self.raw_content):
            try:
                payload = json.loads(block)
            except json.JSONDecodeError:
                logger.debug(f"Ignoring unparsable tool call block: {block[:80]}")
                continue
            if not isinstance(payload, dict) or not payload.get("name"):
                continue
            arguments = payload.get("arguments", {})
            calls.append(
                self._build_call(
                    str(payload["name"]),
                    arguments if isinstance(arguments, str) else json.dumps(arguments),
                    None,
                )
            )
        return calls

    @staticmethod
    def _build_call(name: str, raw_arguments: str, call_id: str | None) -> ToolCall:
        extra = {"id": call_id} if call_id else {}
        if not raw_arguments.strip():
            return ToolCall(name=name, arguments={}, **extra)
        try:
            arguments = json.loads(raw_arguments)
        except json.JSONDecodeError:
            return ToolCall(name=name, malformed_arguments=raw_arguments, **extra)
        if not isinstance(arguments, dict):
            return ToolCall(name=name, malformed_arguments=raw_arguments, **extra)
        return ToolCall(name=name, arguments=arguments, **extra)

    def to_message(self, truncated: bool = False) -> Message:
        return Message(
            role=Role.ASSISTANT,
            content=self.content,
            tool_calls=[] if truncated else self.tool_calls(),
            is_truncated=truncated,
        )
