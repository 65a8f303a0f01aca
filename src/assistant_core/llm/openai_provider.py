"""OpenAI-compatible model provider."""

from __future__ import annotations

from typing import AsyncIterator

from loguru import logger
from openai import AsyncOpenAI

from ..config import ModelConfig
from ..context.token_budget import ComposedPrompt
from ..workspace.models import ToolDefinition
from .provider import StreamDelta, ToolCallDelta


def tool_schema(definition: ToolDefinition) -> dict:
    """Function-calling schema for one tool definition."""
    return {
        "type": "function",
        "function": {
            "name": definition.id,
            "description": definition.description,
            "parameters": definition.parameters_schema,
        },
    }


class OpenAIChatProvider:
    """Streams chat completions from any OpenAI-compatible endpoint."""

    def __init__(self, config: ModelConfig | None = None, client: AsyncOpenAI | None = None):
        """
        Args:
            config: Endpoint, key and model names
            client: Pre-built client (tests inject a fake here)
        """
        self.config = config or ModelConfig()
        self._client = client or AsyncOpenAI(
            base_url=self.config.base_url, api_key=self.config.api_key
        )
        logger.debug(
            f"OpenAI client initialized (base_url: {self.config.base_url}, "
            f"model: {self.config.model})"
        )

    async def stream_completion(
        self, prompt: ComposedPrompt, tools: list[ToolDefinition]
    ) -> AsyncIterator[StreamDelta]:
        kwargs = {}
        if tools:
            kwargs["tools"] = [tool_schema(t) for t in tools]

        stream = await self._client.chat.completions.create(
            model=self.config.model,
            messages=prompt.to_messages(),
            temperature=self.config.temperature,
            stream=True,
            **kwargs,
        )
        async for chunk in stream:
            if not chunk.choices:
                continue
            delta = chunk.choices[0].delta
            if delta.content:
                yield StreamDelta(content=delta.content)
            for fragment in delta.tool_calls or []:
                function = fragment.function
                yield StreamDelta(
                    tool_call=ToolCallDelta(
                        index=fragment.index,
                        id=fragment.id,
                        name=function.name if function else None,
                        arguments=(function.arguments or "") if function else "",
                    )
                )
        yield StreamDelta(done=True)

    async def complete(self, prompt: str, max_tokens: int | None = None) -> str:
        kwargs = {"max_tokens": max_tokens} if max_tokens else {}
        response = await self._client.chat.completions.create(
            model=self.config.utility_model or self.config.model,
            messages=[{"role": "user", "content": prompt}],
            temperature=0.0,
            **kwargs,
        )
        if not response.choices:
            return ""
        return response.choices[0].message.content or ""
