"""Fakes for the embedding model and the chat model."""

import json

from assistant_core.llm.provider import StreamDelta, ToolCallDelta
from assistant_core.models import ToolCall


class FakeEmbedder:
    """Returns fixed vectors per text; unknown texts get ``default``."""

    def __init__(self, vectors=None, default=None, error=None):
        self.vectors = vectors or {}
        self.default = default or [1.0, 0.0]
        self.error = error
        self.calls = []

    async def embed(self, text):
        self.calls.append(text)
        if self.error is not None:
            raise self.error
        return list(self.vectors.get(text, self.default))


class FakeProvider:
    """Scripted chat model.

    Each script entry is one generation: a string (plain answer), a list of
    ``ToolCall`` (native tool calls), or a list of ``StreamDelta``.
    When the script runs out the last entry is repeated.
    """

    def __init__(self, script=None, complete_reply='["general"]'):
        self.script = list(script or ["ok"])
        self.complete_reply = complete_reply
        self.prompts = []
        self.tool_lists = []
        self.complete_calls = []

    def _next(self):
        if len(self.script) > 1:
            return self.script.pop(0)
        return self.script[0]

    async def stream_completion(self, prompt, tools):
        self.prompts.append(prompt)
        self.tool_lists.append([t.id for t in tools])
        entry = self._next()
        if isinstance(entry, str):
            yield StreamDelta(content=entry)
        elif entry and isinstance(entry[0], ToolCall):
            for index, call in enumerate(entry):
                yield StreamDelta(
                    tool_call=ToolCallDelta(
                        index=index,
                        id=call.id,
                        name=call.name,
                        arguments=json.dumps(call.arguments),
                    )
                )
        else:
            for delta in entry:
                yield delta
        yield StreamDelta(done=True)

    async def complete(self, prompt, max_tokens=None):
        self.complete_calls.append(prompt)
        return self.complete_reply


